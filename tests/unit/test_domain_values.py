"""
Tests for the pure kernel values: money helpers, drafts, filters,
idempotency keys, the deterministic clock and cancellation tokens.
"""

from dataclasses import FrozenInstanceError
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from ledger_kernel.db.types import ZERO, round_money, to_decimal
from ledger_kernel.domain.cancellation import CancellationToken, check_cancelled
from ledger_kernel.domain.clock import DeterministicClock
from ledger_kernel.domain.dtos import EntryDraft, EntryFilter, LineDraft
from ledger_kernel.exceptions import (
    LedgerKernelError,
    OperationCancelledError,
    UnbalancedEntryError,
)
from ledger_kernel.models.ledger_entry import EntrySource, EntryStatus
from ledger_kernel.utils.idempotency import (
    accrual_key,
    deferred_recognition_key,
    lease_start_key,
    parse_key,
    payment_key,
)


class TestMoney:
    def test_float_goes_through_str(self):
        assert to_decimal(0.1) == Decimal("0.1")

    def test_rejects_garbage(self):
        with pytest.raises(ValueError):
            to_decimal("ten")

    def test_rejects_non_finite(self):
        with pytest.raises(ValueError):
            to_decimal("NaN")

    @pytest.mark.parametrize(
        "raw, expected",
        [("104.515", "104.52"), ("104.514", "104.51"), ("-0.005", "-0.01"), ("3", "3.00")],
    )
    def test_round_money_half_up(self, raw, expected):
        assert round_money(Decimal(raw)) == Decimal(expected)


class TestDrafts:
    def test_line_amounts_are_decimal(self):
        line = LineDraft("1000", debit="12.50")
        assert line.debit == Decimal("12.50")
        assert line.credit == ZERO

    def test_helpers_build_sides(self):
        debit = EntryDraft.debit("1000", 5)
        credit = EntryDraft.credit("4000", 5)
        assert (debit.debit, debit.credit) == (Decimal("5"), ZERO)
        assert (credit.debit, credit.credit) == (ZERO, Decimal("5"))

    def test_draft_is_frozen(self):
        draft = EntryDraft(
            entry_date=date(2025, 5, 1),
            source=EntrySource.MANUAL,
            lines=[EntryDraft.debit("1000", 1), EntryDraft.credit("4000", 1)],
        )
        assert isinstance(draft.lines, tuple)
        with pytest.raises(FrozenInstanceError):
            draft.description = "changed"

    def test_draft_metadata_is_read_only(self):
        draft = EntryDraft(
            entry_date=date(2025, 5, 1),
            source=EntrySource.MANUAL,
            lines=(),
            metadata={"a": 1},
        )
        with pytest.raises(TypeError):
            draft.metadata["a"] = 2

    def test_totals(self):
        draft = EntryDraft(
            entry_date=date(2025, 5, 1),
            source="manual",
            lines=(
                EntryDraft.debit("1000", "60"),
                EntryDraft.debit("1001", "40"),
                EntryDraft.credit("4000", "90"),
            ),
        )
        assert draft.total_debit == Decimal("100")
        assert draft.total_credit == Decimal("90")


class TestEntryFilter:
    def test_defaults_to_posted_only(self):
        assert EntryFilter().statuses == frozenset({EntryStatus.POSTED})

    def test_sources_accept_strings(self):
        criteria = EntryFilter(sources={"payment", EntrySource.REFUND})
        assert criteria.sources == frozenset({EntrySource.PAYMENT, EntrySource.REFUND})

    def test_inverted_range(self):
        with pytest.raises(ValueError):
            EntryFilter(start_date=date(2025, 6, 1), end_date=date(2025, 5, 1))

    def test_unknown_source(self):
        with pytest.raises(ValueError):
            EntryFilter(sources={"bogus"})


class TestIdempotencyKeys:
    def test_shapes(self):
        assert accrual_key("L-17", "2025-05") == "accrual:L-17:2025-05"
        assert lease_start_key("L-17") == "lease_start:L-17"
        assert deferred_recognition_key("L-17", "2025-06") == "deferred:L-17:2025-06"
        assert payment_key("P-9") == "payment:P-9"

    def test_parse(self):
        assert parse_key("accrual:L-17:2025-05") == ("accrual", "L-17", "2025-05")

    @pytest.mark.parametrize("bad", ["accrual", "accrual:", ":L-1"])
    def test_parse_rejects(self, bad):
        with pytest.raises(ValueError):
            parse_key(bad)


class TestDeterministicClock:
    def test_fixed_until_advanced(self):
        clock = DeterministicClock(datetime(2025, 5, 1, 12, tzinfo=timezone.utc))
        assert clock.now() == clock.now()
        clock.advance_days(2)
        assert clock.today() == date(2025, 5, 3)

    def test_set_date_is_noon_utc(self):
        clock = DeterministicClock()
        clock.set_date(date(2025, 8, 31))
        assert clock.now() == datetime(2025, 8, 31, 12, tzinfo=timezone.utc)


class TestCancellation:
    def test_token_raises_once_cancelled(self):
        token = CancellationToken()
        token.raise_if_cancelled("report")
        token.cancel()
        assert token.cancelled
        with pytest.raises(OperationCancelledError) as exc_info:
            token.raise_if_cancelled("report")
        assert exc_info.value.operation == "report"

    def test_check_without_token_is_noop(self):
        check_cancelled(None, "report")


class TestExceptions:
    def test_unbalanced_carries_context(self):
        exc = UnbalancedEntryError(Decimal("100"), Decimal("90"), Decimal("10"))
        assert isinstance(exc, LedgerKernelError)
        assert exc.code == "UNBALANCED_ENTRY"
        assert (exc.debit_total, exc.credit_total, exc.diff) == (
            Decimal("100"),
            Decimal("90"),
            Decimal("10"),
        )
