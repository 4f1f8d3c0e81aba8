"""
Report value objects (``ledger_modules.reporting.models``).

Frozen dataclasses returned by ReportingService.  Pure data: no I/O and
no dependency on the database layer.  All money is ``Decimal``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID


# =========================================================================
# Enums
# =========================================================================


class AccountingBasis(str, Enum):
    """
    ACCRUAL counts every posted entry-set.  CASH counts only entry-sets that
    move a cash account.
    """

    ACCRUAL = "accrual"
    CASH = "cash"

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str):
            normalized = value.strip().lower()
            for member in cls:
                if member.value == normalized:
                    return member
        return None


class StatementKind(str, Enum):
    BALANCE_SHEET = "balance_sheet"
    INCOME_STATEMENT = "income_statement"
    CASH_FLOW = "cash_flow"

    @classmethod
    def _missing_(cls, value):
        # "BalanceSheet", "balance-sheet", "Income Statement"
        if isinstance(value, str):
            normalized = "".join(ch for ch in value.lower() if ch.isalnum())
            for member in cls:
                if member.value.replace("_", "") == normalized:
                    return member
        return None


class AgingBucket(str, Enum):
    CURRENT = "0-30"
    DAYS_31_60 = "31-60"
    DAYS_61_90 = "61-90"
    OVER_90 = "90+"


# =========================================================================
# Common
# =========================================================================


@dataclass(frozen=True)
class ReportMetadata:
    """Parameters a report was produced with."""

    report_type: str
    currency: str
    as_of_date: date
    generated_at: str  # ISO timestamp from the injected clock
    basis: AccountingBasis = AccountingBasis.ACCRUAL
    period_start: date | None = None
    period_end: date | None = None


@dataclass(frozen=True)
class StatementLine:
    """
    One account on a report.

    ``balance`` is on the account's normal side: positive when an asset or
    expense has a debit balance, or a liability, equity or income account
    has a credit balance.
    """

    account_code: str | None
    account_name: str
    account_type: str
    debit_total: Decimal
    credit_total: Decimal
    balance: Decimal


@dataclass(frozen=True)
class StatementSection:
    label: str
    lines: tuple[StatementLine, ...]
    total: Decimal


# =========================================================================
# Trial balance
# =========================================================================


@dataclass(frozen=True)
class TrialBalanceReport:
    metadata: ReportMetadata
    lines: tuple[StatementLine, ...]
    total_debits: Decimal
    total_credits: Decimal
    is_balanced: bool


# =========================================================================
# Balance sheet
# =========================================================================


@dataclass(frozen=True)
class ImbalanceDetected:
    """
    Reported, not raised: the ledger's assets differ from liabilities plus
    equity by more than the tolerance.  Historical data may legitimately
    need investigation, so the statement is still returned.
    """

    assets: Decimal
    liabilities_and_equity: Decimal
    discrepancy: Decimal


@dataclass(frozen=True)
class BalanceSheetReport:
    """
    Point-in-time, cumulative balance sheet.

    ``equity`` includes a synthetic "Current Earnings" line carrying
    cumulative net income, so a balanced ledger satisfies A = L + E.
    """

    metadata: ReportMetadata
    assets: StatementSection
    liabilities: StatementSection
    equity: StatementSection
    current_earnings: Decimal
    total_assets: Decimal
    total_liabilities: Decimal
    total_equity: Decimal
    total_liabilities_and_equity: Decimal
    imbalance: ImbalanceDetected | None = None

    @property
    def is_balanced(self) -> bool:
        return self.imbalance is None


# =========================================================================
# Income statement
# =========================================================================


@dataclass(frozen=True)
class IncomeStatementReport:
    """Revenue - Expenses = Net income, over [period_start, period_end]."""

    metadata: ReportMetadata
    revenue: StatementSection
    expenses: StatementSection
    total_revenue: Decimal
    total_expenses: Decimal
    net_income: Decimal


# =========================================================================
# Cash flow
# =========================================================================


@dataclass(frozen=True)
class CashFlowLine:
    """Cash movement attributed to one entry source."""

    source: str
    inflow: Decimal
    outflow: Decimal

    @property
    def net(self) -> Decimal:
        return self.inflow - self.outflow


@dataclass(frozen=True)
class CashFlowReport:
    """
    Direct-method cash movement across the configured cash accounts.

    ``closing_cash == opening_cash + total_inflows - total_outflows``.
    """

    metadata: ReportMetadata
    opening_cash: Decimal
    by_source: tuple[CashFlowLine, ...]
    total_inflows: Decimal
    total_outflows: Decimal
    net_change: Decimal
    closing_cash: Decimal


# =========================================================================
# General ledger
# =========================================================================


@dataclass(frozen=True)
class GeneralLedgerLine:
    entry_id: UUID
    seq: int
    entry_date: date
    source: str
    description: str
    reference: str | None
    account_code: str
    debit: Decimal
    credit: Decimal
    running_balance: Decimal


@dataclass(frozen=True)
class GeneralLedgerReport:
    """Opening balance, every posted line in the window, closing balance."""

    account_code: str
    account_name: str
    account_type: str
    period_start: date
    period_end: date
    opening_balance: Decimal
    lines: tuple[GeneralLedgerLine, ...]
    total_debits: Decimal
    total_credits: Decimal
    closing_balance: Decimal


# =========================================================================
# Debtor aging
# =========================================================================


@dataclass(frozen=True)
class DebtorAging:
    debtor_id: str
    current: Decimal
    days_31_60: Decimal
    days_61_90: Decimal
    over_90: Decimal

    @property
    def total(self) -> Decimal:
        return self.current + self.days_31_60 + self.days_61_90 + self.over_90


@dataclass(frozen=True)
class AgingReport:
    """Outstanding receivables per debtor, aged by accrual date."""

    metadata: ReportMetadata
    debtors: tuple[DebtorAging, ...]
    totals: DebtorAging
