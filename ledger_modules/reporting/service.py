"""
ReportingService -- the balance and report aggregator.

Responsibility:
    The only code path that turns posted lines into balances: account
    balances, trial balance, general ledger, balance sheet, income
    statement, cash flow and debtor aging, on accrual or cash basis.

Architecture position:
    Modules > Reporting.  Reads through the kernel LedgerSelector and hands
    the totals to the pure builders in ``statements.py``.  Read-only: never
    posts, never flushes.

Invariants enforced:
    - Balances are cumulative (``entry_date <= as_of``), never calendar
      month buckets.
    - Only posted entry-sets count; an original and its reversal cancel.
    - A balance sheet that does not satisfy A = L + E within the posting
      tolerance is still returned, with ``imbalance`` set.

Failure modes:
    - UnknownAccountError for balances or ledgers of unregistered codes.
    - ValueError for a missing or inverted reporting window.
    - OperationCancelledError when the caller's token is cancelled.
"""

from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal

from sqlalchemy.orm import Session

from ledger_config.schema import LedgerConfig
from ledger_kernel.domain.cancellation import CancellationToken, check_cancelled
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import EntryFilter
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.account import AccountType
from ledger_kernel.models.ledger_entry import EntrySource
from ledger_kernel.selectors.ledger_selector import AccountTotals, LedgerSelector
from ledger_kernel.services.account_registry import AccountRegistry
from ledger_kernel.services.entry_store import LedgerEntryStore
from ledger_kernel.services.posting_engine import PostingEngine
from ledger_modules.payments.service import PaymentAllocator
from ledger_modules.reporting.models import (
    AccountingBasis,
    AgingReport,
    BalanceSheetReport,
    CashFlowReport,
    GeneralLedgerReport,
    IncomeStatementReport,
    ReportMetadata,
    StatementKind,
    TrialBalanceReport,
)
from ledger_modules.reporting.statements import (
    AccountInfo,
    build_aging,
    build_balance_sheet,
    build_cash_flow,
    build_general_ledger,
    build_income_statement,
    build_trial_balance,
    compute_natural_balance,
    remap_accounts,
    render_to_dict,
    rollup_subaccounts,
)

logger = get_logger("modules.reporting")

_ZERO = Decimal("0")
_INCOME_STATEMENT_TYPES = (AccountType.INCOME.value, AccountType.EXPENSE.value)


class ReportingService:
    """
    Balance and statement generation.

    Every public method accepts an optional ``cancel_token`` checked
    between queries.
    """

    def __init__(
        self,
        session: Session,
        config: LedgerConfig,
        clock: Clock | None = None,
        allocator: PaymentAllocator | None = None,
    ):
        self._session = session
        self._config = config
        self._roles = config.roles
        self._clock = clock or SystemClock()
        self._ledger = LedgerSelector(session)
        self._registry = AccountRegistry(session)
        self._store = LedgerEntryStore(session)
        self._allocator = allocator or PaymentAllocator(
            session,
            PostingEngine(session, self._registry, self._store, clock=self._clock),
            config,
        )

    # =========================================================================
    # Internal helpers
    # =========================================================================

    def _load_accounts(self) -> dict[str, AccountInfo]:
        return {
            account.code: AccountInfo(
                code=account.code,
                name=account.name,
                account_type=account.type,
                parent_code=account.parent_code,
            )
            for account in self._registry.list_accounts()
        }

    def _cash_basis_targets(self, accounts: dict[str, AccountInfo]) -> dict[str, AccountInfo]:
        """Receivable/deferred -> rental income, payable -> operating expense."""
        rental = accounts.get(self._roles.rental_income)
        expense = accounts.get(self._roles.operating_expense)
        to_income = {self._roles.accounts_receivable, self._roles.deferred_income}
        to_expense = {self._roles.accounts_payable}

        targets: dict[str, AccountInfo] = {}
        for info in accounts.values():
            family = {info.code, info.parent_code}
            if rental is not None and family & to_income:
                targets[info.code] = rental
            elif expense is not None and family & to_expense:
                targets[info.code] = expense
        return targets

    def _totals(
        self,
        basis: AccountingBasis,
        accounts: dict[str, AccountInfo] | None = None,
        **window,
    ) -> list[AccountTotals]:
        if basis is AccountingBasis.CASH:
            rows = self._ledger.account_totals(
                cash_accounts=self._config.cash_accounts, **window
            )
            return remap_accounts(rows, self._cash_basis_targets(accounts or self._load_accounts()))
        return self._ledger.account_totals(**window)

    def _metadata(
        self,
        report_type: str,
        as_of: date,
        basis: AccountingBasis = AccountingBasis.ACCRUAL,
        start: date | None = None,
        end: date | None = None,
    ) -> ReportMetadata:
        return ReportMetadata(
            report_type=report_type,
            currency=self._config.currency,
            as_of_date=as_of,
            generated_at=self._clock.now().isoformat(),
            basis=basis,
            period_start=start,
            period_end=end,
        )

    @staticmethod
    def _window(start: date | None, end: date | None, operation: str) -> tuple[date, date]:
        if start is None or end is None:
            raise ValueError(f"{operation} needs both start and end dates")
        if start > end:
            raise ValueError(f"{operation}: start {start} is after end {end}")
        return start, end

    # =========================================================================
    # Balances
    # =========================================================================

    def account_balance(
        self,
        code: str,
        as_of: date | None = None,
        basis: AccountingBasis | str = AccountingBasis.ACCRUAL,
        include_subaccounts: bool = False,
        cancel_token: CancellationToken | None = None,
    ) -> Decimal:
        """
        Cumulative balance of ``code`` on its normal side as of ``as_of``.

        Raises:
            UnknownAccountError: If ``code`` is not registered.
        """
        basis = AccountingBasis(basis)
        account = self._registry.lookup(code)
        as_of = as_of or self._clock.today()
        check_cancelled(cancel_token, "account_balance")

        if basis is AccountingBasis.CASH:
            rows = [
                row for row in self._totals(basis, as_of=as_of)
                if row.account_code == code
                or (include_subaccounts and row.parent_code == code)
            ]
        else:
            rows = self._ledger.account_totals(
                as_of=as_of, account_codes=[code], include_subaccounts=include_subaccounts
            )
        debit = sum((row.debit_total for row in rows), _ZERO)
        credit = sum((row.credit_total for row in rows), _ZERO)
        balance = compute_natural_balance(debit, credit, account.type)

        logger.debug(
            "account_balance_computed",
            extra={
                "account_code": code,
                "as_of": as_of.isoformat(),
                "basis": basis.value,
                "balance": balance,
            },
        )
        return balance

    def trial_balance(
        self,
        as_of: date | None = None,
        basis: AccountingBasis | str = AccountingBasis.ACCRUAL,
        cancel_token: CancellationToken | None = None,
    ) -> TrialBalanceReport:
        basis = AccountingBasis(basis)
        as_of = as_of or self._clock.today()
        check_cancelled(cancel_token, "trial_balance")
        rows = self._totals(basis, as_of=as_of)
        check_cancelled(cancel_token, "trial_balance")

        report = build_trial_balance(
            rows, self._metadata("trial_balance", as_of, basis), self._config.tolerance
        )
        logger.info(
            "trial_balance_generated",
            extra={
                "as_of": as_of.isoformat(),
                "basis": basis.value,
                "line_count": len(report.lines),
                "is_balanced": report.is_balanced,
            },
        )
        return report

    def general_ledger(
        self,
        code: str,
        start: date,
        end: date,
        include_subaccounts: bool = False,
        cancel_token: CancellationToken | None = None,
    ) -> GeneralLedgerReport:
        """Opening balance at the day before ``start``, lines, closing balance."""
        start, end = self._window(start, end, "general_ledger")
        account = self._registry.lookup(code)
        info = AccountInfo(account.code, account.name, account.type, account.parent_code)

        check_cancelled(cancel_token, "general_ledger")
        opening_rows = self._ledger.account_totals(
            as_of=start - timedelta(days=1),
            account_codes=[code],
            include_subaccounts=include_subaccounts,
        )
        opening = compute_natural_balance(
            sum((r.debit_total for r in opening_rows), _ZERO),
            sum((r.credit_total for r in opening_rows), _ZERO),
            account.type,
        )
        check_cancelled(cancel_token, "general_ledger")
        lines = self._ledger.lines(
            [code], start=start, end=end, include_subaccounts=include_subaccounts
        )
        report = build_general_ledger(info, start, end, opening, lines)
        logger.info(
            "general_ledger_generated",
            extra={"account_code": code, "line_count": len(report.lines)},
        )
        return report

    # =========================================================================
    # Statements
    # =========================================================================

    def statement(
        self,
        kind: StatementKind | str,
        as_of: date | None = None,
        start: date | None = None,
        end: date | None = None,
        basis: AccountingBasis | str = AccountingBasis.ACCRUAL,
        cancel_token: CancellationToken | None = None,
    ) -> BalanceSheetReport | IncomeStatementReport | CashFlowReport:
        """
        Dispatch on ``kind``.

        Balance sheets use ``as_of`` (falling back to ``end``, then today).
        Income statements and cash flows use ``[start, end]`` with ``end``
        falling back to ``as_of``; ``start`` is required.
        """
        kind = StatementKind(kind)
        basis = AccountingBasis(basis)
        if kind is StatementKind.BALANCE_SHEET:
            return self.balance_sheet(as_of or end, basis, cancel_token)
        if kind is StatementKind.INCOME_STATEMENT:
            return self.income_statement(start, end or as_of, basis, cancel_token)
        return self.cash_flow(start, end or as_of, cancel_token)

    def balance_sheet(
        self,
        as_of: date | None = None,
        basis: AccountingBasis | str = AccountingBasis.ACCRUAL,
        cancel_token: CancellationToken | None = None,
    ) -> BalanceSheetReport:
        basis = AccountingBasis(basis)
        as_of = as_of or self._clock.today()
        check_cancelled(cancel_token, "balance_sheet")
        accounts = self._load_accounts()
        rows = rollup_subaccounts(self._totals(basis, accounts, as_of=as_of), accounts)
        check_cancelled(cancel_token, "balance_sheet")

        report = build_balance_sheet(
            rows,
            self._metadata(StatementKind.BALANCE_SHEET.value, as_of, basis),
            self._config.tolerance,
        )
        if report.imbalance is not None:
            logger.warning(
                "balance_sheet_imbalance_detected",
                extra={
                    "as_of": as_of.isoformat(),
                    "basis": basis.value,
                    "assets": report.imbalance.assets,
                    "liabilities_and_equity": report.imbalance.liabilities_and_equity,
                    "discrepancy": report.imbalance.discrepancy,
                },
            )
        logger.info(
            "balance_sheet_generated",
            extra={
                "as_of": as_of.isoformat(),
                "basis": basis.value,
                "total_assets": report.total_assets,
                "is_balanced": report.is_balanced,
            },
        )
        return report

    def income_statement(
        self,
        start: date | None,
        end: date | None,
        basis: AccountingBasis | str = AccountingBasis.ACCRUAL,
        cancel_token: CancellationToken | None = None,
    ) -> IncomeStatementReport:
        basis = AccountingBasis(basis)
        start, end = self._window(start, end, "income_statement")
        check_cancelled(cancel_token, "income_statement")
        accounts = self._load_accounts()
        rows = [
            row
            for row in rollup_subaccounts(
                self._totals(basis, accounts, start=start, end=end), accounts
            )
            if row.account_type in _INCOME_STATEMENT_TYPES
        ]
        check_cancelled(cancel_token, "income_statement")

        report = build_income_statement(
            rows,
            self._metadata(StatementKind.INCOME_STATEMENT.value, end, basis, start, end),
        )
        logger.info(
            "income_statement_generated",
            extra={
                "start": start.isoformat(),
                "end": end.isoformat(),
                "basis": basis.value,
                "net_income": report.net_income,
            },
        )
        return report

    def cash_flow(
        self,
        start: date | None,
        end: date | None,
        cancel_token: CancellationToken | None = None,
    ) -> CashFlowReport:
        """Opening cash, movement per entry source, closing cash."""
        start, end = self._window(start, end, "cash_flow")
        cash_codes = list(self._config.cash_accounts)
        check_cancelled(cancel_token, "cash_flow")
        opening = self._ledger.net_debit(cash_codes, as_of=start - timedelta(days=1))
        check_cancelled(cancel_token, "cash_flow")
        by_source = [
            (row.source, row.debit_total, row.credit_total)
            for row in self._ledger.source_totals(cash_codes, start=start, end=end)
        ]
        report = build_cash_flow(
            opening,
            by_source,
            self._metadata(
                StatementKind.CASH_FLOW.value, end, AccountingBasis.CASH, start, end
            ),
        )
        logger.info(
            "cash_flow_generated",
            extra={
                "start": start.isoformat(),
                "end": end.isoformat(),
                "opening_cash": report.opening_cash,
                "closing_cash": report.closing_cash,
            },
        )
        return report

    # =========================================================================
    # Receivables
    # =========================================================================

    def debtor_aging(
        self,
        as_of: date | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> AgingReport:
        """Outstanding rent per debtor in 0-30 / 31-60 / 61-90 / 90+ day buckets."""
        as_of = as_of or self._clock.today()
        accruals = self._store.find_effective(
            EntryFilter(
                sources=frozenset({EntrySource.RENTAL_ACCRUAL}),
                end_date=as_of,
            )
        )
        debtors = sorted({e.debtor_id for e in accruals if e.debtor_id})

        outstanding = {}
        for debtor_id in debtors:
            check_cancelled(cancel_token, "debtor_aging")
            outstanding[debtor_id] = [
                (period.accrual_date, period.outstanding)
                for period in self._allocator.outstanding_periods(debtor_id, as_of=as_of)
            ]

        report = build_aging(outstanding, as_of, self._metadata("debtor_aging", as_of))
        logger.info(
            "debtor_aging_generated",
            extra={
                "as_of": as_of.isoformat(),
                "debtor_count": len(report.debtors),
                "total_outstanding": report.totals.total,
            },
        )
        return report

    def to_dict(self, report: object) -> dict:
        return render_to_dict(report)
