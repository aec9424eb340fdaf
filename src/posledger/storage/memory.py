"""
In-Memory Ledger Backend.

Default backend that keeps all rows in memory.
Suitable for development and testing, but not for production.
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Any

from posledger.core.types import MAX_UNITS, V, ValueCodec
from posledger.storage.base import LedgerStore, LedgerTable, register_ledger_backend

if TYPE_CHECKING:
    from posledger.core.config import Config


class InMemoryStore(LedgerStore):
    """
    In-memory ledger store.

    Tables opened from the same store share rows, the same way two
    processes pointed at one database do. Data is lost when the process ends.
    """

    def __init__(self) -> None:
        self._tables: dict[str, dict[str, int]] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config: Config) -> InMemoryStore:
        return cls()

    def open_table(self, table: str, codec: ValueCodec[Any]) -> InMemoryLedgerTable[Any]:
        return InMemoryLedgerTable(self, table, codec)

    def create(self, table: str) -> None:
        with self._lock:
            self._tables.setdefault(table, {})

    def rows(self, table: str) -> dict[str, int]:
        """Direct access to a table's rows. Callers must hold ``lock``."""
        return self._tables[table]

    @property
    def lock(self) -> threading.Lock:
        return self._lock


class InMemoryLedgerTable(LedgerTable[V]):
    """
    Ledger table backed by an InMemoryStore.

    Each primitive runs its check and its write under the store lock, which
    is held for that single primitive only.
    """

    store_errors = (OSError, OverflowError)

    def __init__(self, store: InMemoryStore, table: str, codec: ValueCodec[V]) -> None:
        super().__init__(table, codec)
        self._store = store

    async def _create_schema(self) -> None:
        self._store.create(self.table)

    async def _fetch(self, key: str) -> int | None:
        with self._store.lock:
            return self._store.rows(self.table).get(key)

    async def _upsert_set(self, key: str, units: int) -> None:
        with self._store.lock:
            self._store.rows(self.table)[key] = units

    async def _upsert_add(self, key: str, units: int) -> None:
        with self._store.lock:
            rows = self._store.rows(self.table)
            value = rows.get(key, 0) + units
            # Same 64-bit limit as the database and Redis backends
            if value > MAX_UNITS:
                raise OverflowError(f"value for {key} would exceed {MAX_UNITS}")
            rows[key] = value

    async def _guarded_take(self, key: str, units: int) -> bool:
        with self._store.lock:
            rows = self._store.rows(self.table)
            current = rows.get(key)
            if current is None or current < units:
                return False
            rows[key] = current - units
            return True

    async def _sum(self) -> int:
        with self._store.lock:
            return sum(self._store.rows(self.table).values())


# Register as default backend
register_ledger_backend("memory", InMemoryStore)
