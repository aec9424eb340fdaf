"""
Abstract ledger store and ledger table.

A LedgerStore is a connection to one backing store. It opens LedgerTables,
each a named relation holding one non-negative value per UUID key. Tables
keep no process-local state besides the schema-ready flag: every read and
write goes to the store.
"""

from __future__ import annotations

import asyncio
import re
import uuid
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, AsyncIterator, Generic

from posledger.core.exceptions import (
    InvalidArgumentError,
    SchemaInitializationError,
    StoreUnavailableError,
)
from posledger.core.logging import get_logger
from posledger.core.types import V, ValueCodec

if TYPE_CHECKING:
    from posledger.core.config import Config

logger = get_logger("storage")

_TABLE_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}$")


def validate_table_name(table: str) -> str:
    """Table names are interpolated into statements, so only identifiers are allowed."""
    if not isinstance(table, str) or not _TABLE_NAME.match(table):
        raise InvalidArgumentError(f"invalid table name: {table!r}", argument="table")
    return table


class LedgerTable(ABC, Generic[V]):
    """
    A table storing a single non-negative value per UUID key.

    Subclasses implement the store primitives on encoded integers. This
    class handles the one-time schema creation, amount encoding and the
    mapping of driver errors to StoreUnavailableError.

    Lifecycle: a table starts uninitialized and becomes ready after the first
    successful create-if-not-exists. A failed creation leaves it
    uninitialized, so the next operation tries again.
    """

    #: Driver exceptions that mean the store is unreachable or a query failed
    store_errors: tuple[type[BaseException], ...] = (OSError,)

    def __init__(self, table: str, codec: ValueCodec[V]) -> None:
        self.table = validate_table_name(table)
        self.codec = codec
        self._ready = False
        self._schema_lock = asyncio.Lock()

    @property
    def ready(self) -> bool:
        """True once the schema has been confirmed present."""
        return self._ready

    # -- store primitives -------------------------------------------------

    @abstractmethod
    async def _create_schema(self) -> None:
        """Create the table if it does not exist. Must be idempotent."""
        ...

    @abstractmethod
    async def _fetch(self, key: str) -> int | None:
        """Return the stored integer for key, or None if there is no row."""
        ...

    @abstractmethod
    async def _upsert_set(self, key: str, units: int) -> None:
        """Insert or overwrite the row in one statement."""
        ...

    @abstractmethod
    async def _upsert_add(self, key: str, units: int) -> None:
        """Insert or increment the row in one statement."""
        ...

    @abstractmethod
    async def _guarded_take(self, key: str, units: int) -> bool:
        """Decrement only if value >= units, in one statement. Returns whether it applied."""
        ...

    @abstractmethod
    async def _sum(self) -> int:
        """Sum of all stored values, 0 when the table is empty."""
        ...

    # -- public operations ------------------------------------------------

    async def ensure_schema(self) -> None:
        """Create the backing table on first use."""
        if self._ready:
            return
        async with self._schema_lock:
            if self._ready:
                return
            try:
                await self._create_schema()
            except self.store_errors as exc:
                logger.error(f"Schema creation failed for ledger table '{self.table}': {exc}")
                raise SchemaInitializationError(
                    f"could not create ledger table '{self.table}': {exc}",
                    table=self.table,
                    operation="create",
                ) from exc
            self._ready = True
            logger.debug(f"Ledger table '{self.table}' ready")

    async def get(self, key: uuid.UUID) -> V | None:
        """Return the stored value for key, or None if the key has no row."""
        await self.ensure_schema()
        async with self._store_call("get"):
            column = await self._fetch(str(key))
        if column is None:
            return None
        return self.codec.decode(column)

    async def set(self, key: uuid.UUID, amount: V) -> None:
        """Overwrite the value for key, creating the row if needed."""
        units = self.codec.encode(self.codec.validate(amount))
        await self.ensure_schema()
        async with self._store_call("set"):
            await self._upsert_set(str(key), units)

    async def add(self, key: uuid.UUID, amount: V) -> None:
        """Atomically add amount to the value for key, creating the row if needed."""
        units = self.codec.encode(self.codec.validate(amount))
        await self.ensure_schema()
        async with self._store_call("add"):
            await self._upsert_add(str(key), units)

    async def take(self, key: uuid.UUID, amount: V) -> bool:
        """
        Atomically subtract amount from the value for key.

        Returns:
            True if the value was decremented, False if the key is absent or
            the value is smaller than amount (nothing is changed). Taking
            zero always succeeds without touching the store.
        """
        units = self.codec.encode(self.codec.validate(amount))
        if units == 0:
            return True
        await self.ensure_schema()
        async with self._store_call("take"):
            return await self._guarded_take(str(key), units)

    async def total(self) -> V:
        """Sum of all values in the table."""
        await self.ensure_schema()
        async with self._store_call("total"):
            units = await self._sum()
        if not units:
            return self.codec.empty
        return self.codec.decode(units)

    @asynccontextmanager
    async def _store_call(self, operation: str) -> AsyncIterator[None]:
        try:
            yield
        except self.store_errors as exc:
            raise StoreUnavailableError(
                f"{operation} failed on ledger table '{self.table}': {exc}",
                table=self.table,
                operation=operation,
            ) from exc

    def __repr__(self) -> str:
        return f"{type(self).__name__}(table={self.table!r}, codec={self.codec!r})"


class LedgerStore(ABC):
    """
    A connection to one backing store.

    Owns whatever is shared between tables (connection provider, worker
    pool, client) and opens LedgerTables by name.
    """

    @classmethod
    @abstractmethod
    def from_config(cls, config: Config) -> LedgerStore:
        """Build the store from configuration."""
        ...

    @abstractmethod
    def open_table(self, table: str, codec: ValueCodec[Any]) -> LedgerTable[Any]:
        """Return a table accessor. No store interaction happens until first use."""
        ...

    async def health_check(self) -> bool:
        """
        Check if the store is reachable.

        Returns:
            True if healthy
        """
        return True

    async def close(self) -> None:
        """Release shared resources."""
        return None


# Ledger backend registry for dependency injection
_LEDGER_BACKENDS: dict[str, type[LedgerStore]] = {}


def register_ledger_backend(name: str, store_class: type[LedgerStore]) -> None:
    """Register a ledger backend by name."""
    _LEDGER_BACKENDS[name] = store_class


def get_ledger_backend(name: str) -> type[LedgerStore] | None:
    """Get a registered ledger backend by name."""
    return _LEDGER_BACKENDS.get(name)


def list_ledger_backends() -> list[str]:
    """List all registered ledger backend names."""
    return list(_LEDGER_BACKENDS.keys())
