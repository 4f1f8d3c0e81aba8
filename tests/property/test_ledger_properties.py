"""
Property-based tests over the posting engine, allocator and selector.

Properties:
- Every posted entry-set balances, so the ledger as a whole balances
- A payment is fully accounted for: settled + deferred == amount, and an
  amount finer than a cent is refused before anything is posted
- Reversing an entry-set restores every account it touched
- Cumulative balances are additive across a date split

Function-scoped fixtures are shared across examples, so the database
accumulates rows; each property is stated so that earlier examples cannot
change its outcome.
"""

from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from ledger_kernel.domain.dtos import EntryDraft
from ledger_kernel.exceptions import InvalidPaymentError
from ledger_kernel.models.ledger_entry import EntrySource
from ledger_modules.payments import Payment

ACTOR = "clerk-01"

PROPERTY_SETTINGS = settings(
    max_examples=40,
    deadline=None,
    suppress_health_check=[HealthCheck.function_scoped_fixture, HealthCheck.too_slow],
)

amounts = st.decimals(
    min_value=Decimal("0.01"),
    max_value=Decimal("99999.99"),
    places=2,
    allow_nan=False,
    allow_infinity=False,
)
payment_amounts = st.decimals(
    min_value=Decimal("0.001"),
    max_value=Decimal("99999.999"),
    places=3,
    allow_nan=False,
    allow_infinity=False,
)
debit_codes = st.sampled_from(["1000", "1001", "1008", "5000", "5001", "5003"])
days_2025 = st.dates(min_value=date(2025, 1, 1), max_value=date(2025, 12, 31))


def _draft(debits, entry_date):
    """Debit each ``(code, amount)`` pair and credit the total to other income."""
    total = sum((amount for _, amount in debits), Decimal("0"))
    return EntryDraft(
        entry_date=entry_date,
        source=EntrySource.MANUAL,
        lines=tuple(EntryDraft.debit(code, amount) for code, amount in debits)
        + (EntryDraft.credit("4200", total),),
    )


def _nets(selector):
    return {row.account_code: row.net_debit for row in selector.account_totals()}


@PROPERTY_SETTINGS
@given(
    debits=st.lists(st.tuples(debit_codes, amounts), min_size=1, max_size=5),
    entry_date=days_2025,
)
def test_ledger_stays_balanced(engine, selector, debits, entry_date):
    entry = engine.post(_draft(debits, entry_date), ACTOR)

    assert sum(l.debit for l in entry.lines) == sum(l.credit for l in entry.lines)
    debit_total, credit_total = selector.total_debits_credits()
    assert debit_total == credit_total


@PROPERTY_SETTINGS
@given(amount=payment_amounts)
def test_payment_is_fully_accounted_for(scheduler, allocator, make_agreement, amount):
    debtor = f"D-{uuid4().hex[:8]}"
    make_agreement(lease_id=f"L-{debtor}", debtor_id=debtor)
    scheduler.generate_monthly_accruals(5, 2025, ACTOR)
    scheduler.generate_monthly_accruals(6, 2025, ACTOR)
    owing = allocator.total_outstanding(debtor)
    payment = Payment(f"P-{debtor}", debtor, amount, date(2025, 6, 15), "Cash")

    if amount != amount.quantize(Decimal("0.01")):
        with pytest.raises(InvalidPaymentError):
            allocator.allocate_payment(payment, ACTOR)
        assert allocator.total_outstanding(debtor) == owing
        assert allocator.deferred_balance(debtor) == Decimal("0")
        return

    result = allocator.allocate_payment(payment, ACTOR)

    assert result.amount_settled + result.amount_deferred == amount
    assert result.amount_settled == min(amount, owing)
    assert sum(a.amount for a in result.allocations) == result.amount_settled
    assert allocator.total_outstanding(debtor) == owing - result.amount_settled
    assert allocator.deferred_balance(debtor) == result.amount_deferred


@PROPERTY_SETTINGS
@given(
    debits=st.lists(st.tuples(debit_codes, amounts), min_size=1, max_size=5),
    entry_date=days_2025,
)
def test_reversal_restores_balances(engine, selector, debits, entry_date):
    before = _nets(selector)

    entry = engine.post(_draft(debits, entry_date), ACTOR)
    reversal = engine.reverse(entry.id, "keyed twice", ACTOR)

    assert [(l.account_code, l.debit, l.credit) for l in reversal.lines] == [
        (l.account_code, l.credit, l.debit) for l in entry.lines
    ]
    after = _nets(selector)
    for code in set(before) | set(after):
        assert after.get(code, Decimal("0")) == before.get(code, Decimal("0"))


@PROPERTY_SETTINGS
@given(
    postings=st.lists(st.tuples(amounts, days_2025), min_size=1, max_size=6),
    split=days_2025,
    later=st.integers(min_value=0, max_value=120),
)
def test_balances_are_additive_across_dates(post_simple, selector, postings, split, later):
    for amount, entry_date in postings:
        post_simple(amount, entry_date=entry_date)
    until = split + timedelta(days=later)

    head = selector.net_debit(["1000"], as_of=split)
    tail = selector.net_debit(["1000"], start=split + timedelta(days=1), end=until)

    assert selector.net_debit(["1000"], as_of=until) == head + tail
