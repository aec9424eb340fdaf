"""
Unit tests for the Ledger facade.

Scenario and invariant tests run against every backend in the ``store``
fixture (memory, SQLite and an in-process Redis).
"""

import asyncio
import uuid
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from posledger.core.exceptions import (
    InvalidArgumentError,
    SchemaInitializationError,
    StoreUnavailableError,
)
from posledger.core.types import MAX_UNITS, DecimalCodec, LedgerRow
from posledger.ledger import Ledger
from posledger.storage.memory import InMemoryLedgerTable


class TestLedgerScenarios:
    """End-to-end behaviour of set/add/take/get/total."""

    @pytest.mark.asyncio
    async def test_set_then_take(self, decimal_ledger, u1):
        await decimal_ledger.set(u1, Decimal("100.00"))

        assert await decimal_ledger.take(u1, Decimal("30.00")) is True
        assert await decimal_ledger.get(u1) == Decimal("70.00")

    @pytest.mark.asyncio
    async def test_failed_take_on_fresh_key_creates_no_row(self, decimal_ledger, u2):
        assert await decimal_ledger.take(u2, Decimal("1.00")) is False
        assert await decimal_ledger.get(u2) is None
        assert await decimal_ledger.total() == Decimal("0")

    @pytest.mark.asyncio
    async def test_add_on_top_of_existing_value(self, decimal_ledger, u1, u2):
        await decimal_ledger.set(u1, Decimal("70.00"))
        await decimal_ledger.set(u2, Decimal("5.25"))

        await decimal_ledger.add(u1, Decimal("50.00"))

        assert await decimal_ledger.get(u1) == Decimal("120.00")
        assert await decimal_ledger.total() == Decimal("125.25")

    @pytest.mark.asyncio
    async def test_zero_add_and_take_complete_immediately(self, decimal_ledger, u3):
        added = decimal_ledger.add(u3, Decimal("0"))
        taken = decimal_ledger.take(u3, Decimal("0.00"))

        assert added.done()
        assert taken.done()
        assert decimal_ledger.pending == 0
        assert await added is None
        assert await taken is True
        assert await decimal_ledger.get(u3) is None

    @pytest.mark.asyncio
    async def test_set_zero_creates_row(self, decimal_ledger, u3):
        await decimal_ledger.set(u3, Decimal("0"))

        assert await decimal_ledger.get(u3) == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_set_overwrites(self, decimal_ledger, u1):
        await decimal_ledger.set(u1, Decimal("80.00"))
        await decimal_ledger.set(u1, Decimal("3.10"))

        assert await decimal_ledger.get(u1) == Decimal("3.10")
        assert await decimal_ledger.total() == Decimal("3.10")

    @pytest.mark.asyncio
    async def test_take_more_than_balance_leaves_value_unchanged(self, decimal_ledger, u1):
        await decimal_ledger.set(u1, Decimal("10.00"))

        assert await decimal_ledger.take(u1, Decimal("10.01")) is False
        assert await decimal_ledger.get(u1) == Decimal("10.00")

    @pytest.mark.asyncio
    async def test_take_exact_balance(self, decimal_ledger, u1):
        await decimal_ledger.add(u1, Decimal("12.34"))

        assert await decimal_ledger.take(u1, Decimal("12.34")) is True
        assert await decimal_ledger.get(u1) == Decimal("0.00")
        assert await decimal_ledger.take(u1, Decimal("0.01")) is False

    @pytest.mark.asyncio
    async def test_table_take_of_zero_matches_facade(self, decimal_ledger, u2):
        assert await decimal_ledger.table.take(u2, Decimal("0")) is True
        assert await decimal_ledger.take(u2, Decimal("0")) is True
        assert await decimal_ledger.get(u2) is None

    @pytest.mark.asyncio
    async def test_add_creates_row_and_accumulates(self, decimal_ledger, u1):
        await decimal_ledger.add(u1, Decimal("1.50"))
        await decimal_ledger.add(u1, 2)

        assert await decimal_ledger.get(u1) == Decimal("3.50")

    @pytest.mark.asyncio
    async def test_total_of_empty_table(self, decimal_ledger, integer_ledger):
        assert await decimal_ledger.total() == 0
        total = await integer_ledger.total()
        assert total == 0
        assert isinstance(total, int)

    @pytest.mark.asyncio
    async def test_total_matches_sum_of_rows(self, decimal_ledger):
        keys = [uuid.uuid4() for _ in range(5)]
        amounts = [Decimal("0.01"), Decimal("1.00"), Decimal("99.99"), Decimal("5"), Decimal("0")]
        for key, amount in zip(keys, amounts):
            await decimal_ledger.set(key, amount)

        assert await decimal_ledger.total() == sum(amounts)

    @pytest.mark.asyncio
    async def test_string_keys_are_accepted(self, decimal_ledger, u1):
        await decimal_ledger.set(str(u1), Decimal("4.00"))

        assert await decimal_ledger.get(u1) == Decimal("4.00")
        assert await decimal_ledger.get(str(u1).upper()) == Decimal("4.00")

    @pytest.mark.asyncio
    async def test_get_row(self, decimal_ledger, u1, u2):
        await decimal_ledger.set(u1, Decimal("8.00"))

        assert await decimal_ledger.get_row(u1) == LedgerRow(u1, Decimal("8.00"))
        assert await decimal_ledger.get_row(u2) is None

    @pytest.mark.asyncio
    async def test_integer_ledger(self, integer_ledger, u1):
        await integer_ledger.add(u1, 7)

        assert await integer_ledger.take(u1, 8) is False
        assert await integer_ledger.take(u1, 7) is True
        assert await integer_ledger.get(u1) == 0

    @pytest.mark.asyncio
    async def test_add_beyond_integer_range_fails_without_change(self, integer_ledger, u1):
        await integer_ledger.add(u1, MAX_UNITS)

        with pytest.raises(StoreUnavailableError) as exc_info:
            await integer_ledger.add(u1, 1)

        assert exc_info.value.operation == "add"
        assert await integer_ledger.get(u1) == MAX_UNITS
        assert await integer_ledger.total() == MAX_UNITS

    @pytest.mark.asyncio
    async def test_ledgers_are_independent(self, decimal_ledger, integer_ledger, u1):
        await decimal_ledger.add(u1, Decimal("1.00"))

        assert await integer_ledger.get(u1) is None
        assert await integer_ledger.total() == 0


class TestLedgerConcurrency:
    """Concurrent callers on the same key."""

    @pytest.mark.asyncio
    async def test_concurrent_adds_are_all_applied(self, decimal_ledger, u1):
        await asyncio.gather(*(decimal_ledger.add(u1, Decimal("0.01")) for _ in range(50)))

        assert await decimal_ledger.get(u1) == Decimal("0.50")

    @pytest.mark.asyncio
    async def test_concurrent_takes_never_overdraw(self, decimal_ledger, u1):
        await decimal_ledger.set(u1, Decimal("10"))

        results = await asyncio.gather(
            *(decimal_ledger.take(u1, Decimal("1")) for _ in range(30))
        )

        assert results.count(True) == 10
        assert await decimal_ledger.get(u1) == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_interleaved_adds_and_takes_stay_non_negative(self, integer_ledger, u1):
        ops = []
        for i in range(40):
            if i % 2:
                ops.append(integer_ledger.take(u1, 3))
            else:
                ops.append(integer_ledger.add(u1, 2))
        results = await asyncio.gather(*ops)

        successful_takes = sum(1 for i, r in enumerate(results) if i % 2 and r)
        value = await integer_ledger.get(u1)
        assert value >= 0
        assert value == 20 * 2 - successful_takes * 3

    @pytest.mark.asyncio
    async def test_call_returns_before_store_completes(self, decimal_ledger, u1):
        future = decimal_ledger.add(u1, Decimal("1.00"))

        assert not future.done()
        await future
        assert future.done()

    @pytest.mark.asyncio
    async def test_done_callback(self, decimal_ledger, u1):
        seen = asyncio.Event()
        results = []

        def on_done(future):
            results.append(future.result())
            seen.set()

        decimal_ledger.take(u1, Decimal("1.00")).add_done_callback(on_done)
        await asyncio.wait_for(seen.wait(), timeout=5)

        assert results == [False]

    @pytest.mark.asyncio
    async def test_drain_waits_for_pending(self, decimal_ledger, u1):
        for _ in range(5):
            decimal_ledger.add(u1, Decimal("2.00"))

        await decimal_ledger.drain()

        assert decimal_ledger.pending == 0
        assert await decimal_ledger.get(u1) == Decimal("10.00")


class TestLedgerValidation:
    """Arguments are rejected at the call site."""

    @pytest.fixture
    def mock_table(self):
        table = MagicMock()
        table.codec = DecimalCodec(scale=2)
        table.table = "balances"
        table.get = AsyncMock(return_value=None)
        table.set = AsyncMock(return_value=None)
        table.add = AsyncMock(return_value=None)
        table.take = AsyncMock(return_value=True)
        table.total = AsyncMock(return_value=Decimal("0.00"))
        return table

    @pytest.mark.asyncio
    @pytest.mark.parametrize("operation", ["set", "add", "take"])
    async def test_negative_amount_raises_immediately(self, mock_table, u1, operation):
        ledger = Ledger(mock_table)

        with pytest.raises(InvalidArgumentError, match="amount < 0"):
            getattr(ledger, operation)(u1, Decimal("-0.01"))

        assert ledger.pending == 0
        getattr(mock_table, operation).assert_not_called()

    @pytest.mark.asyncio
    async def test_invalid_key_raises_immediately(self, mock_table):
        ledger = Ledger(mock_table)

        with pytest.raises(InvalidArgumentError) as exc_info:
            ledger.add("not-a-uuid", Decimal("1.00"))

        assert exc_info.value.argument == "key"
        mock_table.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_none_key_is_rejected(self, mock_table):
        ledger = Ledger(mock_table)

        with pytest.raises(InvalidArgumentError):
            ledger.get(None)

    @pytest.mark.asyncio
    async def test_precision_overflow_is_rejected(self, mock_table, u1):
        ledger = Ledger(mock_table)

        with pytest.raises(InvalidArgumentError, match="fractional digits"):
            ledger.add(u1, Decimal("0.001"))

    @pytest.mark.asyncio
    async def test_float_amount_is_rejected(self, mock_table, u1):
        ledger = Ledger(mock_table)

        with pytest.raises(InvalidArgumentError):
            ledger.set(u1, 1.5)

    @pytest.mark.asyncio
    async def test_zero_amount_never_reaches_store(self, mock_table, u1):
        ledger = Ledger(mock_table)

        assert await ledger.add(u1, Decimal("0")) is None
        assert await ledger.take(u1, 0) is True

        mock_table.add.assert_not_called()
        mock_table.take.assert_not_called()

    @pytest.mark.asyncio
    async def test_zero_set_reaches_store(self, mock_table, u1):
        ledger = Ledger(mock_table)

        await ledger.set(u1, Decimal("0"))

        mock_table.set.assert_awaited_once_with(u1, Decimal("0"))

    @pytest.mark.asyncio
    async def test_validated_amount_is_forwarded(self, mock_table, u1):
        ledger = Ledger(mock_table)

        await ledger.take(str(u1), "2.50")

        mock_table.take.assert_awaited_once_with(u1, Decimal("2.50"))

    def test_requires_running_loop(self, mock_table, u1):
        ledger = Ledger(mock_table)

        with pytest.raises(RuntimeError):
            ledger.get(u1)


class BrokenTable(InMemoryLedgerTable):
    """Memory table whose store calls fail on demand."""

    def __init__(self, store, table, codec, schema_failures=0):
        super().__init__(store, table, codec)
        self.schema_failures = schema_failures
        self.fail_queries = False

    async def _create_schema(self):
        if self.schema_failures:
            self.schema_failures -= 1
            raise OSError("connection refused")
        await super()._create_schema()

    async def _fetch(self, key):
        if self.fail_queries:
            raise OSError("connection reset")
        return await super()._fetch(key)


class TestLedgerStoreFailures:
    """Store errors arrive through the future."""

    @pytest.mark.asyncio
    async def test_query_failure_becomes_store_unavailable(self, memory_store, u1):
        table = BrokenTable(memory_store, "balances", DecimalCodec())
        table.fail_queries = True
        ledger = Ledger(table)

        future = ledger.get(u1)
        with pytest.raises(StoreUnavailableError) as exc_info:
            await future

        assert exc_info.value.table == "balances"
        assert exc_info.value.operation == "get"
        assert isinstance(exc_info.value.__cause__, OSError)

    @pytest.mark.asyncio
    async def test_schema_failure_is_retried_by_next_operation(self, memory_store, u1):
        table = BrokenTable(memory_store, "balances", DecimalCodec(), schema_failures=1)
        ledger = Ledger(table)

        with pytest.raises(SchemaInitializationError):
            await ledger.add(u1, Decimal("1.00"))
        assert table.ready is False

        await ledger.add(u1, Decimal("1.00"))
        assert table.ready is True
        assert await ledger.get(u1) == Decimal("1.00")

    @pytest.mark.asyncio
    async def test_schema_failure_is_a_store_failure(self, memory_store):
        table = BrokenTable(memory_store, "balances", DecimalCodec(), schema_failures=1)

        with pytest.raises(StoreUnavailableError):
            await Ledger(table).total()

    @pytest.mark.asyncio
    async def test_insufficient_balance_is_not_an_error(self, memory_store, u1):
        table = BrokenTable(memory_store, "balances", DecimalCodec())

        assert await Ledger(table).take(u1, Decimal("5.00")) is False
