"""
Module: ledger_kernel.selectors.ledger_selector
Responsibility: Line-level aggregation over posted entry-sets: per-account
    totals, per-source totals, and the ordered line view behind the general
    ledger.  This is the only place balance arithmetic touches SQL.
Architecture position: Kernel > Selectors.  May import from models/ and
    selectors/base.py.  The reporting module turns these totals into
    balances and statements.

Invariants enforced:
    - Only POSTED entry-sets count.  Voided entries are excluded; reversal
      entries are included like any other posted entry, so an original and
      its reversal cancel arithmetically.
    - ``as_of`` filters are cumulative (``entry_date <= as_of``), never
      calendar-month buckets.
    - Account name and type come from the accounts table, not from the line
      snapshot.
    - Cash basis keeps only entry-sets with at least one line on a cash
      account.

Failure modes:
    - Empty results (not errors) when nothing matches.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import exists, func, or_, select
from sqlalchemy.orm import Session, aliased

from ledger_kernel.models.account import Account
from ledger_kernel.models.ledger_entry import (
    EntryStatus,
    LedgerEntrySet,
    LedgerLine,
)
from ledger_kernel.selectors.base import BaseSelector

_ZERO = Decimal("0")


def _dec(value) -> Decimal:
    # SQLite hands sums back as floats
    if value is None:
        return _ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


@dataclass(frozen=True)
class AccountTotals:
    """Summed debits/credits of one account over the selected entries."""

    account_code: str
    account_name: str
    account_type: str
    parent_code: str | None
    debit_total: Decimal
    credit_total: Decimal
    line_count: int

    @property
    def net_debit(self) -> Decimal:
        """Debits minus credits."""
        return self.debit_total - self.credit_total


@dataclass(frozen=True)
class SourceTotals:
    source: str
    debit_total: Decimal
    credit_total: Decimal


@dataclass(frozen=True)
class LedgerLineView:
    """One posted line with its entry header, for ledger listings."""

    entry_id: UUID
    seq: int
    entry_date: date
    source: str
    entry_description: str
    reference: str | None
    debtor_id: str | None
    reversal_of_id: UUID | None
    account_code: str
    debit: Decimal
    credit: Decimal
    description: str | None


class LedgerSelector(BaseSelector):
    """
    Aggregation queries over ledger lines.

    Every method takes the same window arguments:
        as_of: include entries dated on or before this day.
        start/end: include entries dated within [start, end].
        cash_accounts: when given, restrict to entry-sets that move cash.
    """

    def __init__(self, session: Session):
        super().__init__(session)

    def _entry_conditions(
        self,
        *,
        as_of: date | None = None,
        start: date | None = None,
        end: date | None = None,
        cash_accounts: Iterable[str] | None = None,
        residence_id: str | None = None,
        debtor_id: str | None = None,
    ) -> list:
        conditions = [LedgerEntrySet.status == EntryStatus.POSTED.value]
        if as_of is not None:
            conditions.append(LedgerEntrySet.entry_date <= as_of)
        if start is not None:
            conditions.append(LedgerEntrySet.entry_date >= start)
        if end is not None:
            conditions.append(LedgerEntrySet.entry_date <= end)
        if residence_id is not None:
            conditions.append(LedgerEntrySet.residence_id == residence_id)
        if debtor_id is not None:
            conditions.append(LedgerEntrySet.debtor_id == debtor_id)
        if cash_accounts is not None:
            cash_line = aliased(LedgerLine)
            conditions.append(
                exists().where(
                    cash_line.entry_id == LedgerEntrySet.id,
                    cash_line.account_code.in_(list(cash_accounts)),
                )
            )
        return conditions

    @staticmethod
    def _account_condition(
        account_codes: Iterable[str] | None,
        include_subaccounts: bool,
    ):
        if account_codes is None:
            return None
        codes = list(account_codes)
        if include_subaccounts:
            return or_(
                LedgerLine.account_code.in_(codes),
                Account.parent_code.in_(codes),
            )
        return LedgerLine.account_code.in_(codes)

    def account_totals(
        self,
        *,
        as_of: date | None = None,
        start: date | None = None,
        end: date | None = None,
        cash_accounts: Iterable[str] | None = None,
        account_codes: Iterable[str] | None = None,
        include_subaccounts: bool = False,
        residence_id: str | None = None,
        debtor_id: str | None = None,
    ) -> list[AccountTotals]:
        """
        Per-account debit/credit sums, ordered by account code.

        Postconditions:
            Accounts with no matching lines are absent (callers treat a
            missing account as zero).
        """
        debit_sum = func.coalesce(func.sum(LedgerLine.debit), _ZERO).label("debit_total")
        credit_sum = func.coalesce(func.sum(LedgerLine.credit), _ZERO).label("credit_total")
        line_count = func.count(LedgerLine.id).label("line_count")

        query = (
            select(
                Account.code.label("account_code"),
                Account.name.label("account_name"),
                Account.account_type.label("account_type"),
                Account.parent_code.label("parent_code"),
                debit_sum,
                credit_sum,
                line_count,
            )
            .select_from(LedgerLine)
            .join(LedgerEntrySet, LedgerLine.entry_id == LedgerEntrySet.id)
            .join(Account, LedgerLine.account_code == Account.code)
            .where(
                *self._entry_conditions(
                    as_of=as_of,
                    start=start,
                    end=end,
                    cash_accounts=cash_accounts,
                    residence_id=residence_id,
                    debtor_id=debtor_id,
                )
            )
            .group_by(
                Account.code,
                Account.name,
                Account.account_type,
                Account.parent_code,
            )
            .order_by(Account.code)
        )
        account_filter = self._account_condition(account_codes, include_subaccounts)
        if account_filter is not None:
            query = query.where(account_filter)

        return [
            AccountTotals(
                account_code=row.account_code,
                account_name=row.account_name,
                account_type=row.account_type,
                parent_code=row.parent_code,
                debit_total=_dec(row.debit_total),
                credit_total=_dec(row.credit_total),
                line_count=row.line_count,
            )
            for row in self.session.execute(query).all()
        ]

    def net_debit(
        self,
        account_codes: Iterable[str],
        *,
        as_of: date | None = None,
        start: date | None = None,
        end: date | None = None,
        include_subaccounts: bool = False,
        cash_accounts: Iterable[str] | None = None,
        debtor_id: str | None = None,
    ) -> Decimal:
        """Debits minus credits over the given accounts."""
        rows = self.account_totals(
            as_of=as_of,
            start=start,
            end=end,
            cash_accounts=cash_accounts,
            account_codes=account_codes,
            include_subaccounts=include_subaccounts,
            debtor_id=debtor_id,
        )
        return sum((row.net_debit for row in rows), _ZERO)

    def source_totals(
        self,
        account_codes: Iterable[str],
        *,
        start: date | None = None,
        end: date | None = None,
    ) -> list[SourceTotals]:
        """Debit/credit sums on ``account_codes`` grouped by entry source."""
        query = (
            select(
                LedgerEntrySet.source,
                func.coalesce(func.sum(LedgerLine.debit), _ZERO).label("debit_total"),
                func.coalesce(func.sum(LedgerLine.credit), _ZERO).label("credit_total"),
            )
            .select_from(LedgerLine)
            .join(LedgerEntrySet, LedgerLine.entry_id == LedgerEntrySet.id)
            .where(
                *self._entry_conditions(start=start, end=end),
                LedgerLine.account_code.in_(list(account_codes)),
            )
            .group_by(LedgerEntrySet.source)
            .order_by(LedgerEntrySet.source)
        )
        return [
            SourceTotals(
                source=row.source,
                debit_total=_dec(row.debit_total),
                credit_total=_dec(row.credit_total),
            )
            for row in self.session.execute(query).all()
        ]

    def lines(
        self,
        account_codes: Iterable[str],
        *,
        start: date | None = None,
        end: date | None = None,
        include_subaccounts: bool = False,
        cash_accounts: Iterable[str] | None = None,
    ) -> list[LedgerLineView]:
        """Posted lines on the accounts, ordered by date, seq, line."""
        query = (
            select(LedgerLine, LedgerEntrySet)
            .join(LedgerEntrySet, LedgerLine.entry_id == LedgerEntrySet.id)
            .join(Account, LedgerLine.account_code == Account.code)
            .where(
                *self._entry_conditions(
                    start=start, end=end, cash_accounts=cash_accounts
                ),
                self._account_condition(account_codes, include_subaccounts),
            )
            .order_by(
                LedgerEntrySet.entry_date,
                LedgerEntrySet.seq,
                LedgerLine.line_seq,
            )
        )
        return [
            LedgerLineView(
                entry_id=entry.id,
                seq=entry.seq,
                entry_date=entry.entry_date,
                source=entry.source,
                entry_description=entry.description,
                reference=entry.reference,
                debtor_id=entry.debtor_id,
                reversal_of_id=entry.reversal_of_id,
                account_code=line.account_code,
                debit=_dec(line.debit),
                credit=_dec(line.credit),
                description=line.description,
            )
            for line, entry in self.session.execute(query).all()
        ]

    def total_debits_credits(self, as_of: date | None = None) -> tuple[Decimal, Decimal]:
        """
        Ledger-wide debit and credit totals.

        For a ledger that only ever accepted balanced entry-sets these agree
        to within the posting tolerance times the number of entries.
        """
        query = (
            select(
                func.coalesce(func.sum(LedgerLine.debit), _ZERO),
                func.coalesce(func.sum(LedgerLine.credit), _ZERO),
            )
            .select_from(LedgerLine)
            .join(LedgerEntrySet, LedgerLine.entry_id == LedgerEntrySet.id)
            .where(*self._entry_conditions(as_of=as_of))
        )
        debit_total, credit_total = self.session.execute(query).one()
        return _dec(debit_total), _dec(credit_total)
