"""
Asynchronous ledger facade.

Every operation returns an asyncio.Future straight away. Arguments are
checked before anything is scheduled, so a bad key or a negative amount
raises InvalidArgumentError at the call site. Store work runs as a task on
the event loop, and blocking drivers hand it on to their worker pool.
"""

from __future__ import annotations

import asyncio
import uuid
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Generic, TypeVar

from posledger.core.exceptions import StoreUnavailableError
from posledger.core.logging import get_logger
from posledger.core.types import KeyType, LedgerRow, V, ValueCodec, parse_key

if TYPE_CHECKING:
    from posledger.storage.base import LedgerTable

logger = get_logger("ledger")

R = TypeVar("R")


class Ledger(Generic[V]):
    """
    Non-blocking access to a ledger table.

    Example:
        >>> ledger = Ledger(store.open_table("balances", DecimalCodec()))
        >>> await ledger.set(account_id, Decimal("100.00"))
        >>> await ledger.take(account_id, Decimal("30.00"))
        True
        >>> await ledger.get(account_id)
        Decimal('70.00')

    The returned futures can also be given callbacks with
    ``add_done_callback`` instead of being awaited. All methods must be
    called from a running event loop.
    """

    def __init__(self, table: LedgerTable[V]) -> None:
        """
        Initialize ledger with a table.

        Args:
            table: The ledger table (InMemory, SQL, Redis)
        """
        self._table = table
        self._pending: set[asyncio.Task[Any]] = set()

    @property
    def table(self) -> LedgerTable[V]:
        return self._table

    @property
    def codec(self) -> ValueCodec[V]:
        return self._table.codec

    @property
    def name(self) -> str:
        return self._table.table

    def get(self, key: KeyType) -> asyncio.Future[V | None]:
        """
        Get the value stored for key.

        Returns:
            Future resolving to the value, or None if the key has no row
        """
        account = parse_key(key)
        return self._schedule("get", account, self._table.get, account)

    def get_row(self, key: KeyType) -> asyncio.Future[LedgerRow[V] | None]:
        """Get the row stored for key, or None."""
        account = parse_key(key)

        async def fetch_row() -> LedgerRow[V] | None:
            value = await self._table.get(account)
            return None if value is None else LedgerRow(account, value)

        return self._schedule("get", account, fetch_row)

    def set(self, key: KeyType, amount: Any) -> asyncio.Future[None]:
        """
        Set the value for key, replacing any previous value.

        A zero amount is written like any other, creating a zero row if needed.

        Raises:
            InvalidArgumentError: If the key or amount is invalid (immediately)
        """
        account = parse_key(key)
        value = self.codec.validate(amount)
        return self._schedule("set", account, self._table.set, account, value)

    def add(self, key: KeyType, amount: Any) -> asyncio.Future[None]:
        """
        Add amount to the value for key.

        Raises:
            InvalidArgumentError: If the key or amount is invalid (immediately)
        """
        account = parse_key(key)
        value = self.codec.validate(amount)
        if self.codec.is_zero(value):
            return self._completed(None)
        return self._schedule("add", account, self._table.add, account, value)

    def take(self, key: KeyType, amount: Any) -> asyncio.Future[bool]:
        """
        Try to take amount from the value for key.

        Returns:
            Future resolving to True if taken, False if the balance was
            insufficient or the key has no row

        Raises:
            InvalidArgumentError: If the key or amount is invalid (immediately)
        """
        account = parse_key(key)
        value = self.codec.validate(amount)
        if self.codec.is_zero(value):
            return self._completed(True)
        return self._schedule("take", account, self._table.take, account, value)

    def total(self) -> asyncio.Future[V]:
        """Get the sum of all values in the ledger."""
        return self._schedule("total", None, self._table.total)

    async def drain(self) -> None:
        """Wait for every operation scheduled so far to finish, ignoring failures."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    @property
    def pending(self) -> int:
        """Number of scheduled operations not yet complete."""
        return len(self._pending)

    def _completed(self, result: R) -> asyncio.Future[R]:
        future: asyncio.Future[R] = asyncio.get_running_loop().create_future()
        future.set_result(result)
        return future

    def _schedule(
        self,
        operation: str,
        key: uuid.UUID | None,
        call: Callable[..., Awaitable[R]],
        *args: Any,
    ) -> asyncio.Future[R]:
        loop = asyncio.get_running_loop()
        task = loop.create_task(self._run(operation, key, call, *args))
        # The loop keeps only weak references to tasks
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _run(
        self,
        operation: str,
        key: uuid.UUID | None,
        call: Callable[..., Awaitable[R]],
        *args: Any,
    ) -> R:
        logger.debug(f"{self.name}: {operation} {key or ''}".rstrip())
        try:
            return await call(*args)
        except StoreUnavailableError as exc:
            logger.warning(f"{self.name}: {operation} failed: {exc}")
            raise

    def __repr__(self) -> str:
        return f"Ledger({self._table!r})"
