"""
Type definitions for posledger.

Ledger rows and the value codecs that bind a numeric type to the integer
column every backend stores.
"""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, localcontext
from typing import Any, Generic, TypeAlias, TypeVar

from posledger.core.exceptions import InvalidArgumentError

V = TypeVar("V")

# Type alias for flexible key input
KeyType: TypeAlias = uuid.UUID | str

# Largest value a BIGINT column / Redis integer can hold
MAX_UNITS = 2**63 - 1


def parse_key(key: KeyType) -> uuid.UUID:
    """Normalize a ledger key to a UUID, rejecting anything else."""
    if isinstance(key, uuid.UUID):
        return key
    if isinstance(key, str):
        try:
            return uuid.UUID(key)
        except ValueError:
            pass
    raise InvalidArgumentError(f"key must be a UUID, got {key!r}", argument="key")


@dataclass(frozen=True)
class LedgerRow(Generic[V]):
    """A single ledger row: one key and its non-negative value."""

    key: uuid.UUID
    value: V

    def __post_init__(self) -> None:
        if self.value < 0:  # type: ignore[operator]
            raise InvalidArgumentError("ledger value < 0", argument="value")


class ValueCodec(ABC, Generic[V]):
    """
    Binds a numeric value type to the integer column stored by backends.

    Implementations provide validation of caller input, conversion to and
    from the stored integer, and the zero value used for empty aggregates.
    """

    @abstractmethod
    def validate(self, value: Any) -> V:
        """
        Check a caller-supplied amount and return it in canonical form.

        Raises:
            InvalidArgumentError: If the amount is negative, not representable
                exactly, or of an unsupported type.
        """
        ...

    @abstractmethod
    def encode(self, value: V) -> int:
        """Convert a validated value to its stored integer."""
        ...

    @abstractmethod
    def decode(self, column: Any) -> V:
        """Convert a stored integer back to a value."""
        ...

    @property
    @abstractmethod
    def empty(self) -> V:
        """Value reported for an empty aggregate."""
        ...

    def is_zero(self, value: V) -> bool:
        return value == 0

    def _check_range(self, units: int) -> None:
        if units > MAX_UNITS:
            raise InvalidArgumentError(
                "amount exceeds the storable range",
                argument="amount",
                details={"max_units": MAX_UNITS},
            )


class DecimalCodec(ValueCodec[Decimal]):
    """
    Exact decimal amounts stored as integer minor units.

    A scale of 2 stores Decimal("12.34") as 1234. Amounts with more
    fractional digits than the scale are rejected, never rounded.
    """

    def __init__(self, scale: int = 2) -> None:
        if not 0 <= scale <= 18:
            raise InvalidArgumentError("scale must be between 0 and 18", argument="scale")
        self.scale = scale
        self._empty = Decimal(0).scaleb(-scale)

    def validate(self, value: Any) -> Decimal:
        # float and bool are excluded: neither carries an exact decimal value
        if isinstance(value, Decimal):
            amount = value
        elif isinstance(value, (int, str)) and not isinstance(value, bool):
            try:
                amount = Decimal(value)
            except InvalidOperation:
                raise InvalidArgumentError(
                    f"amount is not a decimal number: {value!r}", argument="amount"
                ) from None
        else:
            raise InvalidArgumentError(
                f"amount must be Decimal, int or str, got {type(value).__name__}",
                argument="amount",
            )

        if not amount.is_finite():
            raise InvalidArgumentError("amount must be finite", argument="amount")
        if amount < 0:
            raise InvalidArgumentError("amount < 0", argument="amount")

        self._check_range(self._units(amount))
        return amount

    def _units(self, amount: Decimal) -> int:
        with localcontext() as ctx:
            ctx.prec = 60
            try:
                units = amount.scaleb(self.scale)
            except ArithmeticError:
                raise InvalidArgumentError(
                    "amount exceeds the storable range",
                    argument="amount",
                    details={"max_units": MAX_UNITS},
                ) from None
            if units != units.to_integral_value():
                raise InvalidArgumentError(
                    f"amount has more than {self.scale} fractional digits",
                    argument="amount",
                    details={"amount": str(amount), "scale": self.scale},
                )
            return int(units)

    def encode(self, value: Decimal) -> int:
        return self._units(value)

    def decode(self, column: Any) -> Decimal:
        return Decimal(int(column)).scaleb(-self.scale)

    @property
    def empty(self) -> Decimal:
        return self._empty

    def __repr__(self) -> str:
        return f"DecimalCodec(scale={self.scale})"


class IntegerCodec(ValueCodec[int]):
    """Whole-number amounts stored as-is."""

    def validate(self, value: Any) -> int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise InvalidArgumentError(
                f"amount must be int, got {type(value).__name__}", argument="amount"
            )
        if value < 0:
            raise InvalidArgumentError("amount < 0", argument="amount")
        self._check_range(value)
        return value

    def encode(self, value: int) -> int:
        return int(value)

    def decode(self, column: Any) -> int:
        return int(column)

    @property
    def empty(self) -> int:
        return 0

    def __repr__(self) -> str:
        return "IntegerCodec()"
