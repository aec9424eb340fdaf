"""
Exception hierarchy for posledger.

All library-specific exceptions inherit from PosLedgerError for easy catching.
"""

from __future__ import annotations

from typing import Any


class PosLedgerError(Exception):
    """
    Base exception for all posledger errors.

    Catch this to handle any ledger-related exception.

    Example:
        >>> try:
        ...     await ledger.add(account_id, Decimal("10.00"))
        ... except PosLedgerError as e:
        ...     print(f"Ledger error: {e}")
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(PosLedgerError):
    """
    Configuration is missing or invalid.

    Raised when:
    - Required configuration values are not provided
    - Configuration values fail validation
    - An unknown ledger backend is requested
    """

    pass


class InvalidArgumentError(PosLedgerError, ValueError):
    """
    An argument was rejected before any store interaction.

    Raised when:
    - An amount is negative
    - An amount has more fractional digits than the table can store
    - A key is not a UUID
    - A table name is not a plain identifier
    """

    def __init__(
        self,
        message: str,
        argument: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.argument = argument


class StoreUnavailableError(PosLedgerError):
    """
    The backing store could not be reached or a statement failed.

    Raised when:
    - A connection cannot be acquired (refused, timed out)
    - A query fails at the driver level

    Never retried internally; retry policy belongs to the caller.
    """

    def __init__(
        self,
        message: str,
        table: str | None = None,
        operation: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.table = table
        self.operation = operation


class SchemaInitializationError(StoreUnavailableError):
    """
    The idempotent create-if-not-exists step failed.

    The table stays uninitialized and creation is attempted again by the
    next operation.
    """

    pass
