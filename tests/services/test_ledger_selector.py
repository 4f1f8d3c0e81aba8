"""
Aggregation queries over posted lines.

Balances are cumulative from inception; voided entries never count and an
original plus its reversal nets to zero.
"""

from datetime import date
from decimal import Decimal

from ledger_kernel.models.ledger_entry import EntrySource

ACTOR = "clerk-01"


class TestAccountTotals:
    def test_sums_per_account(self, selector, post_simple):
        post_simple("100.00")
        post_simple("25.50")
        totals = {t.account_code: t for t in selector.account_totals()}

        assert totals["1000"].debit_total == Decimal("125.50")
        assert totals["1000"].line_count == 2
        assert totals["4200"].credit_total == Decimal("125.50")
        assert totals["4200"].net_debit == Decimal("-125.50")
        assert totals["4200"].account_type == "income"

    def test_as_of_is_cumulative(self, selector, post_simple):
        post_simple("10", entry_date=date(2025, 1, 5))
        post_simple("20", entry_date=date(2025, 5, 5))
        post_simple("40", entry_date=date(2025, 6, 5))

        assert selector.net_debit(["1000"], as_of=date(2025, 5, 31)) == Decimal("30")
        assert selector.net_debit(["1000"], as_of=date(2025, 6, 30)) == Decimal("70")
        assert selector.net_debit(["1000"], start=date(2025, 5, 1), end=date(2025, 5, 31)) == Decimal("20")

    def test_voided_entries_excluded(self, selector, engine, post_simple):
        post_simple("10")
        voided = post_simple("99")
        engine.void(voided.id, "x", ACTOR)
        assert selector.net_debit(["1000"]) == Decimal("10")

    def test_reversal_nets_to_zero(self, selector, engine, post_simple):
        original = post_simple("75")
        engine.reverse(original.id, "r", ACTOR, reversal_date=date(2025, 5, 20))
        assert selector.net_debit(["1000"]) == Decimal("0")
        assert selector.net_debit(["1000"], as_of=date(2025, 5, 19)) == Decimal("75")

    def test_subaccounts_roll_in_when_asked(self, selector, registry, post_simple):
        registry.ensure_subaccount("1100", "D", ACTOR)
        registry.ensure_subaccount("1100", "E", ACTOR)
        post_simple("30", debit_code="1100-D", credit_code="4000")
        post_simple("12", debit_code="1100-E", credit_code="4000")

        assert selector.net_debit(["1100"]) == Decimal("0")
        assert selector.net_debit(["1100"], include_subaccounts=True) == Decimal("42")

    def test_debtor_filter(self, selector, post_simple):
        post_simple("30", debtor_id="D")
        post_simple("12", debtor_id="E")
        assert selector.net_debit(["1000"], debtor_id="D") == Decimal("30")

    def test_cash_basis_keeps_only_cash_entries(self, selector, registry, post_simple):
        registry.ensure_subaccount("1100", "D", ACTOR)
        post_simple("180", debit_code="1100-D", credit_code="4000")
        post_simple("50", debit_code="1000", credit_code="1100-D")

        totals = {
            t.account_code: t
            for t in selector.account_totals(cash_accounts=["1000", "1001"])
        }
        assert set(totals) == {"1000", "1100-D"}
        assert totals["1100-D"].credit_total == Decimal("50")


class TestSourceTotalsAndLines:
    def test_source_totals(self, selector, post_simple):
        post_simple("100", source=EntrySource.OTHER_INCOME)
        post_simple("40", debit_code="5000", credit_code="1000", source=EntrySource.EXPENSE_PAYMENT)

        rows = {r.source: r for r in selector.source_totals(["1000"])}
        assert rows["other_income"].debit_total == Decimal("100")
        assert rows["expense_payment"].credit_total == Decimal("40")

    def test_lines_in_date_then_seq_order(self, selector, post_simple):
        second = post_simple("2", entry_date=date(2025, 5, 9))
        first = post_simple("1", entry_date=date(2025, 5, 1))
        views = selector.lines(["1000"])
        assert [v.entry_id for v in views] == [first.id, second.id]
        assert views[0].debit == Decimal("1")

    def test_ledger_wide_totals_agree(self, selector, post_simple):
        post_simple("10")
        post_simple("15", debit_code="5000", credit_code="1000")
        debits, credits = selector.total_debits_credits()
        assert debits == credits == Decimal("25")
