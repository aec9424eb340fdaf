"""PosLedger - main entry point: one backing store, many ledgers."""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from posledger.core.config import Config
from posledger.core.exceptions import InvalidArgumentError
from posledger.core.logging import configure_logging, get_logger
from posledger.core.types import DecimalCodec, IntegerCodec, ValueCodec
from posledger.ledger import Ledger
from posledger.storage import LedgerStore, get_store


class PosLedger:
    """
    Ledger provider.

    Builds the configured backing store once and hands out Ledger facades
    by table name. Every ledger shares the store's connection provider,
    worker pool and client.

    Example:
        >>> async with PosLedger(Config(backend="sqlite", sqlite_path="ledger.db")) as pl:
        ...     balances = pl.decimal_ledger("balances")
        ...     await balances.add(account_id, Decimal("50.00"))
    """

    def __init__(
        self,
        config: Config | None = None,
        store: LedgerStore | None = None,
        configure_logs: bool = True,
    ) -> None:
        """
        Initialize the provider.

        Args:
            config: Configuration (or loaded from POSLEDGER_* env vars)
            store: Pre-built store; the config's backend settings are then ignored
            configure_logs: Configure the posledger logger at config.log_level
        """
        self._config = config or Config.from_env()

        if configure_logs:
            configure_logging(level=self._config.log_level)
        self._logger = get_logger("client")

        self._store = store or get_store(self._config)
        self._ledgers: dict[str, Ledger[Any]] = {}
        self._logger.info(f"Initialized posledger ({type(self._store).__name__})")

    @property
    def config(self) -> Config:
        return self._config

    @property
    def store(self) -> LedgerStore:
        return self._store

    def ledger(self, table: str, codec: ValueCodec[Any]) -> Ledger[Any]:
        """
        Get the ledger for a table.

        Repeated calls with the same table name return the same ledger; a
        different codec for an existing name is rejected.
        """
        existing = self._ledgers.get(table)
        if existing is not None:
            if repr(existing.codec) != repr(codec):
                raise InvalidArgumentError(
                    f"ledger '{table}' already opened with {existing.codec!r}, not {codec!r}",
                    argument="codec",
                )
            return existing

        ledger: Ledger[Any] = Ledger(self._store.open_table(table, codec))
        self._ledgers[table] = ledger
        return ledger

    def decimal_ledger(self, table: str, scale: int | None = None) -> Ledger[Decimal]:
        """Get a ledger of Decimal amounts (scale defaults to config.decimal_scale)."""
        if scale is None:
            scale = self._config.decimal_scale
        return self.ledger(table, DecimalCodec(scale))

    def integer_ledger(self, table: str) -> Ledger[int]:
        """Get a ledger of whole-number amounts."""
        return self.ledger(table, IntegerCodec())

    async def health_check(self) -> bool:
        """Check that the backing store is reachable."""
        return await self._store.health_check()

    async def close(self) -> None:
        """Wait for scheduled operations, then release the store."""
        for ledger in self._ledgers.values():
            await ledger.drain()
        await self._store.close()
        self._logger.debug("posledger closed")

    async def __aenter__(self) -> PosLedger:
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit - clean up resources."""
        await self.close()
