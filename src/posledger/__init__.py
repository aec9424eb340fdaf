"""
posledger - concurrency-safe non-negative balances keyed by UUID.

Usage:
    >>> from posledger import PosLedger, Config
    >>> from decimal import Decimal
    >>>
    >>> async with PosLedger(Config(backend="sqlite", sqlite_path="ledger.db")) as pl:
    ...     balances = pl.decimal_ledger("balances")
    ...     await balances.set(account_id, Decimal("100.00"))
    ...     await balances.take(account_id, Decimal("30.00"))
    ...     await balances.get(account_id)
    True
    Decimal('70.00')
"""

from posledger.client import PosLedger
from posledger.core.config import Config
from posledger.core.exceptions import (
    ConfigurationError,
    InvalidArgumentError,
    PosLedgerError,
    SchemaInitializationError,
    StoreUnavailableError,
)
from posledger.core.logging import configure_logging, get_logger
from posledger.core.types import DecimalCodec, IntegerCodec, LedgerRow, ValueCodec
from posledger.ledger import Ledger
from posledger.storage import (
    InMemoryStore,
    LedgerStore,
    LedgerTable,
    PostgresStore,
    RedisStore,
    SqliteStore,
    SqlStore,
    get_store,
)

__version__ = "0.1.0"

__all__ = [
    "PosLedger",
    "Ledger",
    "Config",
    # Types
    "LedgerRow",
    "ValueCodec",
    "DecimalCodec",
    "IntegerCodec",
    # Storage
    "LedgerStore",
    "LedgerTable",
    "InMemoryStore",
    "SqlStore",
    "SqliteStore",
    "PostgresStore",
    "RedisStore",
    "get_store",
    # Exceptions
    "PosLedgerError",
    "ConfigurationError",
    "InvalidArgumentError",
    "StoreUnavailableError",
    "SchemaInitializationError",
    # Logging
    "configure_logging",
    "get_logger",
]
