"""
Payment allocation, deferred-income recognition and negotiated discounts.
"""

from datetime import date, datetime
from decimal import Decimal

import pytest

from ledger_kernel.exceptions import InvalidPaymentError, NoOutstandingBalanceError
from ledger_kernel.models.ledger_entry import EntrySource
from ledger_modules.payments import Payment

ACTOR = "clerk-01"


def _pay(payment_id, amount, on, target=None, debtor="D", method="Cash", **kw):
    return Payment(
        payment_id=payment_id,
        debtor_id=debtor,
        amount=Decimal(amount),
        date=on,
        method=method,
        target_period=target,
        **kw,
    )


@pytest.fixture
def three_months(scheduler, make_agreement):
    """180.00 accrued for May, June and August 2025 (July skipped)."""
    make_agreement()
    for month in (5, 6, 8):
        scheduler.generate_monthly_accruals(month, 2025, ACTOR)


class TestCumulativeBalances:
    def test_targeted_payment_leaves_later_months_open(
        self, three_months, allocator, reporting
    ):
        allocator.allocate_payment(_pay("P-1", "180", date(2025, 5, 10), "2025-05"), ACTOR)

        assert reporting.account_balance("1100-D", as_of=date(2025, 5, 31)) == Decimal("0")
        assert reporting.account_balance("1100-D", as_of=date(2025, 6, 30)) == Decimal("180")
        assert reporting.account_balance("1100-D", as_of=date(2025, 8, 31)) == Decimal("360")

    def test_control_account_includes_subaccounts(self, three_months, reporting):
        assert reporting.account_balance(
            "1100", as_of=date(2025, 8, 31), include_subaccounts=True
        ) == Decimal("540")


class TestAllocation:
    def test_fifo_across_months(self, three_months, allocator, store):
        result = allocator.allocate_payment(_pay("P-1", "250", date(2025, 6, 15)), ACTOR)

        assert [(a.month_key, a.amount) for a in result.allocations] == [
            ("2025-05", Decimal("180.00")),
            ("2025-06", Decimal("70.00")),
        ]
        assert result.amount_settled == Decimal("250.00")
        assert result.amount_deferred == Decimal("0")
        assert len(store.allocations_for_settling(result.entry_id)) == 2

    def test_unaccrued_months_not_settled_early(self, three_months, allocator):
        """A June payment cannot reach August's accrual."""
        result = allocator.allocate_payment(_pay("P-1", "400", date(2025, 6, 15)), ACTOR)
        assert [a.month_key for a in result.allocations] == ["2025-05", "2025-06"]
        assert result.amount_deferred == Decimal("40.00")

    def test_entry_shape(self, three_months, allocator):
        result = allocator.allocate_payment(
            _pay("P-1", "200", date(2025, 5, 10), method="Bank Transfer"), ACTOR
        )
        entry = result.entry
        assert entry.source == EntrySource.PAYMENT.value
        assert entry.idempotency_key == "payment:P-1"
        lines = {(l.account_code, l.debit, l.credit) for l in entry.lines}
        assert ("1001", Decimal("200.00"), Decimal("0")) in lines
        assert ("1100-D", Decimal("0"), Decimal("180.00")) in lines
        assert ("2200", Decimal("0"), Decimal("20.00")) in lines

        meta = entry.metadata_dict
        assert meta["paymentId"] == "P-1"
        assert meta["amountSettled"] == "180.00"
        assert meta["amountDeferred"] == "20.00"
        assert meta["allocations"][0]["monthKey"] == "2025-05"

    def test_unknown_method_lands_in_default_cash(self, three_months, allocator):
        entry = allocator.allocate_payment(
            _pay("P-1", "10", date(2025, 5, 10), method="Carrier Pigeon"), ACTOR
        ).entry
        assert entry.lines[0].account_code == "1000"

    def test_payment_dated_with_a_timestamp(self, three_months, allocator):
        payment = Payment("P-1", "D", Decimal("250"), datetime(2025, 6, 15, 9, 30), "Cash")
        assert payment.date == date(2025, 6, 15)

        result = allocator.allocate_payment(payment, ACTOR)
        assert [a.month_key for a in result.allocations] == ["2025-05", "2025-06"]
        assert result.entry.entry_date == date(2025, 6, 15)

    def test_settled_plus_deferred_equals_amount(self, three_months, allocator):
        result = allocator.allocate_payment(_pay("P-1", "1000", date(2025, 9, 1)), ACTOR)
        assert result.amount_settled + result.amount_deferred == Decimal("1000.00")
        assert result.amount_settled == Decimal("540.00")

    def test_outstanding_periods(self, three_months, allocator):
        allocator.allocate_payment(_pay("P-1", "200", date(2025, 6, 1)), ACTOR)
        periods = allocator.outstanding_periods("D")
        assert [(p.month_key, p.outstanding) for p in periods] == [
            ("2025-06", Decimal("160.00")),
            ("2025-08", Decimal("180.00")),
        ]
        assert allocator.total_outstanding("D") == Decimal("340.00")
        # the June payment is not counted as of May
        assert allocator.total_outstanding("D", as_of=date(2025, 5, 31)) == Decimal("180.00")

    def test_reversed_payment_reopens_month(self, three_months, allocator, engine):
        result = allocator.allocate_payment(_pay("P-1", "180", date(2025, 5, 10), "2025-05"), ACTOR)
        engine.reverse(result.entry_id, "bounced", ACTOR)
        assert allocator.outstanding_periods("D")[0].outstanding == Decimal("180.00")
        again = allocator.allocate_payment(
            _pay("P-1", "180", date(2025, 5, 12), "2025-05"), ACTOR
        )
        assert again.amount_settled == Decimal("180.00")


class TestRejections:
    def test_duplicate_payment_id(self, three_months, allocator, captured_logs):
        allocator.allocate_payment(_pay("P-1", "50", date(2025, 5, 10)), ACTOR)
        with pytest.raises(InvalidPaymentError):
            allocator.allocate_payment(_pay("P-1", "50", date(2025, 5, 10)), ACTOR)
        assert any(r["message"] == "payment_rejected_duplicate" for r in captured_logs())

    def test_targeted_month_with_nothing_owing(self, three_months, allocator, captured_logs):
        allocator.allocate_payment(_pay("P-1", "180", date(2025, 5, 10), "2025-05"), ACTOR)
        with pytest.raises(NoOutstandingBalanceError) as exc_info:
            allocator.allocate_payment(_pay("P-2", "180", date(2025, 5, 11), "2025-05"), ACTOR)
        assert exc_info.value.month_key == "2025-05"
        assert any(
            r["message"] == "payment_rejected_no_outstanding" for r in captured_logs()
        )

    def test_targeted_advance_allowed(self, three_months, allocator):
        result = allocator.allocate_payment(
            _pay("P-1", "180", date(2025, 5, 10), "2025-07", allow_advance=True), ACTOR
        )
        assert result.amount_deferred == Decimal("180.00")
        assert allocator.deferred_balance("D") == Decimal("180")

    def test_sub_cent_amount_rejected_before_posting(self, three_months, allocator, store):
        with pytest.raises(InvalidPaymentError):
            allocator.allocate_payment(_pay("P-x", "100.005", date(2025, 6, 15)), ACTOR)
        assert store.find_effective_by_key("payment:P-x") is None
        assert allocator.total_outstanding("D") == Decimal("540.00")
        assert allocator.deferred_balance("D") == Decimal("0")

    def test_trailing_zero_places_accepted(self, three_months, allocator):
        result = allocator.allocate_payment(_pay("P-1", "100.000", date(2025, 6, 15)), ACTOR)
        assert result.amount_settled == Decimal("100.00")

    @pytest.mark.parametrize(
        "payment",
        [
            _pay("P-1", "0", date(2025, 5, 10)),
            _pay("P-1", "-5", date(2025, 5, 10)),
            _pay("", "5", date(2025, 5, 10)),
            _pay("P-1", "5", date(2025, 5, 10), debtor=""),
            _pay("P-1", "5", date(2025, 5, 10), "May"),
        ],
    )
    def test_bad_input(self, allocator, payment):
        with pytest.raises(InvalidPaymentError):
            allocator.allocate_payment(payment, ACTOR)


class TestDeferredRecognition:
    def test_advance_applied_against_open_accrual(
        self, scheduler, allocator, make_agreement, store
    ):
        make_agreement()
        allocator.allocate_payment(_pay("P-1", "100", date(2025, 4, 20)), ACTOR)
        scheduler.generate_monthly_accruals(5, 2025, ACTOR)

        result = allocator.recognize_deferred_income(5, 2025, ACTOR)
        entry = result.created[0]
        assert entry.source == EntrySource.DEFERRED_INCOME_TRANSFER.value
        assert entry.entry_date == date(2025, 5, 1)
        assert allocator.deferred_balance("D") == Decimal("0")
        assert allocator.total_outstanding("D") == Decimal("80.00")
        assert len(store.allocations_for_settling(entry.id)) == 1

    def test_advance_recognised_without_accrual(self, allocator, make_agreement, selector):
        make_agreement(start=date(2025, 6, 1))
        allocator.allocate_payment(_pay("P-1", "500", date(2025, 5, 20)), ACTOR)

        result = allocator.recognize_deferred_income(6, 2025, ACTOR)
        entry = result.created[0]
        assert entry.idempotency_key == "deferred:L-1:2025-06"
        assert selector.net_debit(["4000"]) == Decimal("-180.00")
        assert allocator.deferred_balance("D") == Decimal("320")

        again = allocator.recognize_deferred_income(6, 2025, ACTOR)
        assert again.skipped_reasons() == {"L-1": "already_recognized"}

    def test_application_waits_for_the_advance(self, three_months, allocator):
        allocator.allocate_payment(
            _pay("P-1", "180", date(2025, 6, 20), "2025-07", allow_advance=True), ACTOR
        )

        entry = allocator.recognize_deferred_income(6, 2025, ACTOR).created[0]
        assert entry.entry_date == date(2025, 6, 20)
        for day in (date(2025, 6, 1), date(2025, 6, 19), date(2025, 6, 20), date(2025, 6, 30)):
            assert allocator.deferred_balance("D", as_of=day) >= Decimal("0")

    def test_recognition_waits_for_the_advance(self, allocator, make_agreement):
        make_agreement(start=date(2025, 6, 1))
        allocator.allocate_payment(_pay("P-1", "500", date(2025, 6, 25)), ACTOR)

        entry = allocator.recognize_deferred_income(6, 2025, ACTOR).created[0]
        assert entry.entry_date == date(2025, 6, 25)
        assert allocator.deferred_balance("D", as_of=date(2025, 6, 24)) == Decimal("0")
        assert allocator.deferred_balance("D", as_of=date(2025, 6, 30)) == Decimal("320")

    def test_nothing_deferred(self, allocator, make_agreement, captured_logs):
        make_agreement()
        result = allocator.recognize_deferred_income(5, 2025, ACTOR)
        assert result.skipped_reasons() == {"L-1": "no_deferred_balance"}
        completed = [r for r in captured_logs() if r["message"] == "deferred_recognition_completed"]
        assert completed[-1]["skipped_count"] == 1

    def test_month_already_settled(self, scheduler, allocator, make_agreement):
        make_agreement()
        scheduler.generate_monthly_accruals(5, 2025, ACTOR)
        allocator.allocate_payment(_pay("P-1", "300", date(2025, 5, 2)), ACTOR)
        result = allocator.recognize_deferred_income(5, 2025, ACTOR)
        assert result.skipped_reasons() == {"L-1": "already_settled"}

    def test_needs_provider(self, session, engine, config):
        from ledger_modules.payments import PaymentAllocator

        with pytest.raises(ValueError):
            PaymentAllocator(session, engine, config).recognize_deferred_income(5, 2025, ACTOR)


class TestNegotiatedDiscount:
    def test_discount_writes_down_month(self, three_months, allocator, selector):
        entry = allocator.negotiate_discount(
            "D", "2025-06", Decimal("30"), "water outage", ACTOR, entry_date=date(2025, 6, 20)
        )
        assert entry.source == EntrySource.NEGOTIATED_PAYMENT.value
        june = [p for p in allocator.outstanding_periods("D") if p.month_key == "2025-06"][0]
        assert june.outstanding == Decimal("150.00")
        assert selector.net_debit(["4000"]) == Decimal("-510.00")

    def test_discount_above_outstanding(self, three_months, allocator):
        with pytest.raises(InvalidPaymentError):
            allocator.negotiate_discount("D", "2025-06", Decimal("181"), "x", ACTOR)

    def test_discount_for_settled_month(self, three_months, allocator):
        with pytest.raises(NoOutstandingBalanceError):
            allocator.negotiate_discount("D", "2025-07", Decimal("10"), "x", ACTOR)

    @pytest.mark.parametrize(
        "month, amount", [("2025-6", "10"), ("2025-06", "0"), ("2025-06", "10.005")]
    )
    def test_discount_bad_input(self, three_months, allocator, month, amount):
        with pytest.raises(InvalidPaymentError):
            allocator.negotiate_discount("D", month, Decimal(amount), "x", ACTOR)
