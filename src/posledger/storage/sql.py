"""
SQL Ledger Backend.

Stores each ledger table as a relation of (uuid, value) rows in SQLite or
PostgreSQL. Every update is a single statement: upserts for set/add and a
guarded UPDATE for take, so concurrent callers and processes never race
between a check and a write.

Drivers are blocking, so statements run on a bounded thread pool and the
event loop only awaits their completion.
"""

from __future__ import annotations

import asyncio
import functools
import sqlite3
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Iterator, Protocol, TypeVar

from posledger.core.exceptions import ConfigurationError
from posledger.core.logging import get_logger
from posledger.core.types import V, ValueCodec
from posledger.storage.base import LedgerStore, LedgerTable, register_ledger_backend

if TYPE_CHECKING:
    from posledger.core.config import Config

logger = get_logger("storage.sql")

T = TypeVar("T")


class ConnectionProvider(Protocol):
    """Yields a DB-API connection for the duration of one operation."""

    errors: tuple[type[BaseException], ...]

    def connection(self) -> Any:  # context manager yielding a connection
        ...


class SqliteConnectionProvider:
    """Opens a fresh SQLite connection per operation."""

    errors: tuple[type[BaseException], ...] = (sqlite3.Error, OSError)

    def __init__(self, path: str, timeout: float = 5.0) -> None:
        if not path or path == ":memory:" or path.startswith("file::memory:"):
            # Each operation opens its own connection, which would see an empty database
            raise ConfigurationError("sqlite ledger requires a file path, not an in-memory database")
        self.path = path
        self.timeout = timeout

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        con = sqlite3.connect(self.path, timeout=self.timeout, check_same_thread=False)
        try:
            con.execute("PRAGMA journal_mode=WAL;")
            con.execute(f"PRAGMA busy_timeout={int(self.timeout * 1000)};")
            yield con
        finally:
            con.close()

    def __repr__(self) -> str:
        return f"SqliteConnectionProvider(path={self.path!r})"


class PostgresConnectionProvider:
    """
    Opens a psycopg connection per operation.

    Requires: pip install "psycopg[binary]"
    """

    def __init__(self, dsn: str, connect_timeout: float = 5.0) -> None:
        self.dsn = dsn
        self.connect_timeout = connect_timeout

    @staticmethod
    def _driver():
        try:
            import psycopg
        except ImportError:
            raise ImportError(
                "psycopg package required for the postgres backend. "
                'Install with: pip install "psycopg[binary]"'
            ) from None
        return psycopg

    @property
    def errors(self) -> tuple[type[BaseException], ...]:
        return (self._driver().Error, OSError)

    @contextmanager
    def connection(self) -> Iterator[Any]:
        psycopg = self._driver()
        conn = psycopg.connect(self.dsn, connect_timeout=max(1, int(self.connect_timeout)))
        try:
            yield conn
        finally:
            conn.close()

    def __repr__(self) -> str:
        return "PostgresConnectionProvider(dsn=***)"


@dataclass(frozen=True)
class SqlDialect:
    """Statement templates for one SQL engine. ``{table}`` is the table name."""

    name: str
    placeholder: str
    create_stmt: str
    add_stmt: str
    select_stmt: str = 'SELECT "value" FROM "{table}" WHERE "uuid" = ?'
    set_stmt: str = (
        'INSERT INTO "{table}" ("uuid", "value") VALUES (?, ?) '
        'ON CONFLICT ("uuid") DO UPDATE SET "value" = excluded."value"'
    )
    take_stmt: str = (
        'UPDATE "{table}" SET "value" = "value" - ? WHERE "uuid" = ? AND "value" >= ?'
    )
    total_stmt: str = 'SELECT COALESCE(SUM("value"), 0) AS total FROM "{table}"'
    # Run before create_stmt in the same transaction; takes the table name as parameter
    schema_lock_stmt: str | None = None

    def render(self, template: str, table: str) -> str:
        statement = template.replace("{table}", table)
        if self.placeholder != "?":
            statement = statement.replace("?", self.placeholder)
        return statement


SQLITE = SqlDialect(
    name="sqlite",
    placeholder="?",
    create_stmt=(
        'CREATE TABLE IF NOT EXISTS "{table}" ('
        '"uuid" CHAR(36) NOT NULL PRIMARY KEY, '
        '"value" INTEGER NOT NULL CHECK ("value" >= 0 AND typeof("value") = \'integer\'))'
    ),
    add_stmt=(
        'INSERT INTO "{table}" ("uuid", "value") VALUES (?, ?) '
        'ON CONFLICT ("uuid") DO UPDATE SET "value" = "value" + excluded."value"'
    ),
)

POSTGRES = SqlDialect(
    name="postgres",
    placeholder="%s",
    create_stmt=(
        'CREATE TABLE IF NOT EXISTS "{table}" ('
        '"uuid" CHAR(36) NOT NULL PRIMARY KEY, '
        '"value" BIGINT NOT NULL CHECK ("value" >= 0))'
    ),
    # Postgres needs the existing row qualified by table name
    add_stmt=(
        'INSERT INTO "{table}" ("uuid", "value") VALUES (?, ?) '
        'ON CONFLICT ("uuid") DO UPDATE SET "value" = "{table}"."value" + excluded."value"'
    ),
    # Concurrent CREATE TABLE IF NOT EXISTS can collide in pg_type; serialize per table
    schema_lock_stmt="SELECT pg_advisory_xact_lock(hashtext(?))",
)


class SqlStore(LedgerStore):
    """
    SQL ledger store.

    Holds the connection provider and the worker pool shared by every table
    opened from it.
    """

    dialect: SqlDialect = SQLITE

    def __init__(
        self,
        provider: ConnectionProvider,
        dialect: SqlDialect | None = None,
        max_workers: int = 8,
    ) -> None:
        self.provider = provider
        if dialect is not None:
            self.dialect = dialect
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix=f"posledger-{self.dialect.name}"
        )

    @classmethod
    def from_config(cls, config: Config) -> SqlStore:
        if config.backend == "postgres":
            return PostgresStore.from_config(config)
        return SqliteStore.from_config(config)

    def open_table(self, table: str, codec: ValueCodec[Any]) -> SqlLedgerTable[Any]:
        return SqlLedgerTable(self, table, codec)

    async def run(self, fn: Callable[..., T], *args: Any) -> T:
        """Run a blocking call on the worker pool."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, functools.partial(fn, *args))

    def execute(self, statement: str, params: tuple[Any, ...] = (), fetch: bool = False) -> Any:
        """
        Run one statement on its own connection and transaction.

        Blocking; call through ``run``. Returns the first row when ``fetch``
        is set, otherwise the affected row count.
        """
        return self.transaction([(statement, params)], fetch)

    def transaction(
        self, steps: list[tuple[str, tuple[Any, ...]]], fetch: bool = False
    ) -> Any:
        """Run statements in order on one connection and transaction; result is from the last."""
        with self.provider.connection() as conn:
            cur = conn.cursor()
            try:
                for statement, params in steps:
                    cur.execute(statement, params)
                result = cur.fetchone() if fetch else cur.rowcount
                conn.commit()
                return result
            except BaseException:
                conn.rollback()
                raise
            finally:
                cur.close()

    async def health_check(self) -> bool:
        """Check that a connection can be opened and queried."""
        try:
            await self.run(self.execute, "SELECT 1", (), True)
            return True
        except self.provider.errors as exc:
            logger.warning(f"{self.dialect.name} health check failed: {exc}")
            return False

    async def close(self) -> None:
        """Shut down the worker pool after in-flight statements finish."""
        await asyncio.to_thread(self._executor.shutdown, True)


class SqliteStore(SqlStore):
    """SQLite-backed ledger store."""

    dialect = SQLITE

    @classmethod
    def from_config(cls, config: Config) -> SqliteStore:
        provider = SqliteConnectionProvider(config.sqlite_path, timeout=config.connect_timeout)
        return cls(provider, max_workers=config.max_workers)


class PostgresStore(SqlStore):
    """PostgreSQL-backed ledger store."""

    dialect = POSTGRES

    @classmethod
    def from_config(cls, config: Config) -> PostgresStore:
        if not config.postgres_dsn:
            raise ConfigurationError("postgres_dsn is required for the postgres backend")
        provider = PostgresConnectionProvider(
            config.postgres_dsn, connect_timeout=config.connect_timeout
        )
        logger.info(f"Using PostgreSQL ledger store at {config.masked_dsn()}")
        return cls(provider, max_workers=config.max_workers)


class SqlLedgerTable(LedgerTable[V]):
    """Ledger table stored in a SQL relation."""

    def __init__(self, store: SqlStore, table: str, codec: ValueCodec[V]) -> None:
        super().__init__(table, codec)
        self._store = store
        self.store_errors = store.provider.errors
        self._dialect = store.dialect

    def _stmt(self, template: str) -> str:
        return self._dialect.render(template, self.table)

    async def _create_schema(self) -> None:
        steps: list[tuple[str, tuple[Any, ...]]] = [(self._stmt(self._dialect.create_stmt), ())]
        if self._dialect.schema_lock_stmt:
            steps.insert(0, (self._stmt(self._dialect.schema_lock_stmt), (self.table,)))
        await self._store.run(self._store.transaction, steps)

    async def _fetch(self, key: str) -> int | None:
        row = await self._store.run(
            self._store.execute, self._stmt(self._dialect.select_stmt), (key,), True
        )
        return None if row is None else int(row[0])

    async def _upsert_set(self, key: str, units: int) -> None:
        await self._store.run(
            self._store.execute, self._stmt(self._dialect.set_stmt), (key, units)
        )

    async def _upsert_add(self, key: str, units: int) -> None:
        await self._store.run(
            self._store.execute, self._stmt(self._dialect.add_stmt), (key, units)
        )

    async def _guarded_take(self, key: str, units: int) -> bool:
        affected = await self._store.run(
            self._store.execute, self._stmt(self._dialect.take_stmt), (units, key, units)
        )
        return affected == 1

    async def _sum(self) -> int:
        row = await self._store.run(
            self._store.execute, self._stmt(self._dialect.total_stmt), (), True
        )
        return int(row[0]) if row is not None else 0


register_ledger_backend("sqlite", SqliteStore)
register_ledger_backend("postgres", PostgresStore)
