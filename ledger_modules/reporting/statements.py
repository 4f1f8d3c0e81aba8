"""
Pure report builders.

These functions turn per-account totals from the LedgerSelector into the
report dataclasses in ``models.py``.  No database access, no clock access,
no file I/O: same inputs always produce the same report.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Iterable, Mapping, Sequence
from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID

from ledger_kernel.models.account import AccountType, NormalBalance
from ledger_kernel.selectors.ledger_selector import AccountTotals, LedgerLineView
from ledger_modules.reporting.models import (
    AgingBucket,
    AgingReport,
    BalanceSheetReport,
    CashFlowLine,
    CashFlowReport,
    DebtorAging,
    GeneralLedgerLine,
    GeneralLedgerReport,
    ImbalanceDetected,
    IncomeStatementReport,
    ReportMetadata,
    StatementLine,
    StatementSection,
    TrialBalanceReport,
)

_ZERO = Decimal("0")

CURRENT_EARNINGS_LABEL = "Current Earnings"


# =========================================================================
# Bridge type: account metadata for pure functions
# =========================================================================


@dataclasses.dataclass(frozen=True)
class AccountInfo:
    """
    Snapshot of an account for classification.

    The service converts Account rows to AccountInfo so nothing in this
    module touches the ORM.
    """

    code: str
    name: str
    account_type: AccountType
    parent_code: str | None = None


# =========================================================================
# Helpers
# =========================================================================


def compute_natural_balance(
    debit_total: Decimal,
    credit_total: Decimal,
    account_type: AccountType,
) -> Decimal:
    """
    Balance on the account's normal side.

    DEBIT-normal (ASSET, EXPENSE): debit_total - credit_total
    CREDIT-normal (LIABILITY, EQUITY, INCOME): credit_total - debit_total
    """
    if AccountType(account_type).normal_balance == NormalBalance.DEBIT:
        return debit_total - credit_total
    return credit_total - debit_total


def _merge(rows: Iterable[AccountTotals]) -> list[AccountTotals]:
    """Sum rows that share an account code; first row's identity wins."""
    merged: dict[str, AccountTotals] = {}
    for row in rows:
        seen = merged.get(row.account_code)
        if seen is None:
            merged[row.account_code] = row
            continue
        merged[row.account_code] = dataclasses.replace(
            seen,
            debit_total=seen.debit_total + row.debit_total,
            credit_total=seen.credit_total + row.credit_total,
            line_count=seen.line_count + row.line_count,
        )
    return sorted(merged.values(), key=lambda r: r.account_code)


def _as(row: AccountTotals, target: AccountInfo) -> AccountTotals:
    return dataclasses.replace(
        row,
        account_code=target.code,
        account_name=target.name,
        account_type=target.account_type.value,
        parent_code=target.parent_code,
    )


def remap_accounts(
    rows: Iterable[AccountTotals],
    targets: Mapping[str, AccountInfo],
) -> list[AccountTotals]:
    """
    Report the rows listed in ``targets`` under the target account instead.

    Used for cash-basis reporting, where receivable and deferred-income
    movements inside a cash entry-set are shown as rental income and
    payable movements as operating expense.
    """
    return _merge(
        _as(row, targets[row.account_code]) if row.account_code in targets else row
        for row in rows
    )


def rollup_subaccounts(
    rows: Iterable[AccountTotals],
    accounts: Mapping[str, AccountInfo],
) -> list[AccountTotals]:
    """Fold subaccount rows (e.g. ``1100-<debtor>``) into their parent."""
    folded = []
    for row in rows:
        parent = accounts.get(row.parent_code) if row.parent_code else None
        folded.append(_as(row, parent) if parent is not None else row)
    return _merge(folded)


def to_statement_line(row: AccountTotals) -> StatementLine:
    return StatementLine(
        account_code=row.account_code,
        account_name=row.account_name,
        account_type=row.account_type,
        debit_total=row.debit_total,
        credit_total=row.credit_total,
        balance=compute_natural_balance(
            row.debit_total, row.credit_total, AccountType(row.account_type)
        ),
    )


def _section(label: str, lines: Sequence[StatementLine]) -> StatementSection:
    ordered = tuple(sorted(lines, key=lambda line: line.account_code or "~"))
    return StatementSection(
        label=label,
        lines=ordered,
        total=sum((line.balance for line in ordered), _ZERO),
    )


def _of_type(lines: Iterable[StatementLine], account_type: AccountType) -> list[StatementLine]:
    return [line for line in lines if line.account_type == account_type.value]


def compute_net_income(rows: Iterable[AccountTotals]) -> Decimal:
    """Income natural balances minus expense natural balances."""
    income = _ZERO
    expense = _ZERO
    for row in rows:
        if row.account_type == AccountType.INCOME.value:
            income += row.credit_total - row.debit_total
        elif row.account_type == AccountType.EXPENSE.value:
            expense += row.debit_total - row.credit_total
    return income - expense


# =========================================================================
# 1. TRIAL BALANCE
# =========================================================================


def build_trial_balance(
    rows: Sequence[AccountTotals],
    metadata: ReportMetadata,
    tolerance: Decimal = _ZERO,
) -> TrialBalanceReport:
    """Totals per account; balanced when debits and credits agree within ``tolerance``."""
    lines = tuple(to_statement_line(row) for row in rows)
    total_debits = sum((row.debit_total for row in rows), _ZERO)
    total_credits = sum((row.credit_total for row in rows), _ZERO)
    return TrialBalanceReport(
        metadata=metadata,
        lines=lines,
        total_debits=total_debits,
        total_credits=total_credits,
        is_balanced=abs(total_debits - total_credits) <= tolerance,
    )


# =========================================================================
# 2. BALANCE SHEET
# =========================================================================


def build_balance_sheet(
    rows: Sequence[AccountTotals],
    metadata: ReportMetadata,
    tolerance: Decimal,
) -> BalanceSheetReport:
    """
    Classify cumulative totals into A / L / E.

    Income and expense accounts are not listed individually; their
    cumulative net appears as the Current Earnings equity line.
    """
    lines = [to_statement_line(row) for row in rows]
    current_earnings = compute_net_income(rows)

    assets = _section("Assets", _of_type(lines, AccountType.ASSET))
    liabilities = _section("Liabilities", _of_type(lines, AccountType.LIABILITY))
    equity_lines = _of_type(lines, AccountType.EQUITY)
    equity_lines.append(
        StatementLine(
            account_code=None,
            account_name=CURRENT_EARNINGS_LABEL,
            account_type=AccountType.EQUITY.value,
            debit_total=_ZERO,
            credit_total=_ZERO,
            balance=current_earnings,
        )
    )
    equity = _section("Equity", equity_lines)

    total_le = liabilities.total + equity.total
    discrepancy = assets.total - total_le
    imbalance = None
    if abs(discrepancy) > tolerance:
        imbalance = ImbalanceDetected(
            assets=assets.total,
            liabilities_and_equity=total_le,
            discrepancy=discrepancy,
        )

    return BalanceSheetReport(
        metadata=metadata,
        assets=assets,
        liabilities=liabilities,
        equity=equity,
        current_earnings=current_earnings,
        total_assets=assets.total,
        total_liabilities=liabilities.total,
        total_equity=equity.total,
        total_liabilities_and_equity=total_le,
        imbalance=imbalance,
    )


# =========================================================================
# 3. INCOME STATEMENT
# =========================================================================


def build_income_statement(
    rows: Sequence[AccountTotals],
    metadata: ReportMetadata,
) -> IncomeStatementReport:
    lines = [to_statement_line(row) for row in rows]
    revenue = _section("Revenue", _of_type(lines, AccountType.INCOME))
    expenses = _section("Expenses", _of_type(lines, AccountType.EXPENSE))
    return IncomeStatementReport(
        metadata=metadata,
        revenue=revenue,
        expenses=expenses,
        total_revenue=revenue.total,
        total_expenses=expenses.total,
        net_income=revenue.total - expenses.total,
    )


# =========================================================================
# 4. CASH FLOW
# =========================================================================


def build_cash_flow(
    opening_cash: Decimal,
    by_source: Iterable[tuple[str, Decimal, Decimal]],
    metadata: ReportMetadata,
) -> CashFlowReport:
    """``by_source`` rows are ``(source, cash debits, cash credits)``."""
    lines = tuple(
        CashFlowLine(source=source, inflow=inflow, outflow=outflow)
        for source, inflow, outflow in sorted(by_source)
    )
    inflows = sum((line.inflow for line in lines), _ZERO)
    outflows = sum((line.outflow for line in lines), _ZERO)
    return CashFlowReport(
        metadata=metadata,
        opening_cash=opening_cash,
        by_source=lines,
        total_inflows=inflows,
        total_outflows=outflows,
        net_change=inflows - outflows,
        closing_cash=opening_cash + inflows - outflows,
    )


# =========================================================================
# 5. GENERAL LEDGER
# =========================================================================


def build_general_ledger(
    account: AccountInfo,
    start: date,
    end: date,
    opening_balance: Decimal,
    lines: Iterable[LedgerLineView],
) -> GeneralLedgerReport:
    """Running balance on the account's normal side, line by line."""
    running = opening_balance
    rendered = []
    total_debits = _ZERO
    total_credits = _ZERO
    for view in lines:
        running += compute_natural_balance(view.debit, view.credit, account.account_type)
        total_debits += view.debit
        total_credits += view.credit
        rendered.append(
            GeneralLedgerLine(
                entry_id=view.entry_id,
                seq=view.seq,
                entry_date=view.entry_date,
                source=view.source,
                description=view.description or view.entry_description,
                reference=view.reference,
                account_code=view.account_code,
                debit=view.debit,
                credit=view.credit,
                running_balance=running,
            )
        )
    return GeneralLedgerReport(
        account_code=account.code,
        account_name=account.name,
        account_type=account.account_type.value,
        period_start=start,
        period_end=end,
        opening_balance=opening_balance,
        lines=tuple(rendered),
        total_debits=total_debits,
        total_credits=total_credits,
        closing_balance=running,
    )


# =========================================================================
# 6. DEBTOR AGING
# =========================================================================


def age_bucket(days: int) -> AgingBucket:
    if days <= 30:
        return AgingBucket.CURRENT
    if days <= 60:
        return AgingBucket.DAYS_31_60
    if days <= 90:
        return AgingBucket.DAYS_61_90
    return AgingBucket.OVER_90


def _aging_row(debtor_id: str, buckets: Mapping[AgingBucket, Decimal]) -> DebtorAging:
    return DebtorAging(
        debtor_id=debtor_id,
        current=buckets.get(AgingBucket.CURRENT, _ZERO),
        days_31_60=buckets.get(AgingBucket.DAYS_31_60, _ZERO),
        days_61_90=buckets.get(AgingBucket.DAYS_61_90, _ZERO),
        over_90=buckets.get(AgingBucket.OVER_90, _ZERO),
    )


def build_aging(
    outstanding: Mapping[str, Iterable[tuple[date, Decimal]]],
    as_of: date,
    metadata: ReportMetadata,
) -> AgingReport:
    """
    ``outstanding`` maps debtor id to ``(accrual_date, amount)`` pairs.

    Debtors with nothing outstanding are left out.
    """
    debtors = []
    totals: dict[AgingBucket, Decimal] = {}
    for debtor_id in sorted(outstanding):
        buckets: dict[AgingBucket, Decimal] = {}
        for accrual_date, amount in outstanding[debtor_id]:
            if amount <= _ZERO:
                continue
            bucket = age_bucket((as_of - accrual_date).days)
            buckets[bucket] = buckets.get(bucket, _ZERO) + amount
            totals[bucket] = totals.get(bucket, _ZERO) + amount
        if buckets:
            debtors.append(_aging_row(debtor_id, buckets))
    return AgingReport(
        metadata=metadata,
        debtors=tuple(debtors),
        totals=_aging_row("*", totals),
    )


# =========================================================================
# 7. RENDERER (dict/JSON output)
# =========================================================================


def render_to_dict(obj: object) -> dict | list | str | int | float | bool | None:
    """
    Convert any report dataclass to plain JSON-ready data.

    Decimal and UUID become strings, dates ISO strings, enums their value,
    tuples lists.
    """
    if obj is None:
        return None
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, date):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (list, tuple)):
        return [render_to_dict(item) for item in obj]
    if isinstance(obj, dict):
        return {str(k): render_to_dict(v) for k, v in obj.items()}
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return {
            f.name: render_to_dict(getattr(obj, f.name))
            for f in dataclasses.fields(obj)
        }
    if isinstance(obj, (str, int, float, bool)):
        return obj
    return str(obj)
