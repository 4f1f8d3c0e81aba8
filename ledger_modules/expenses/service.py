"""
ExpenseService -- payables and direct cash movements.

Responsibility:
    Accrues residence expenses against accounts payable, settles them in
    cash, and records cash-only expenses and other income that never pass
    through a payable or receivable.

Architecture position:
    Modules > Expenses.  Posts through the kernel PostingEngine and reads
    accruals/payments back through the LedgerEntryStore.

Invariants enforced:
    - One effective accrual per expense id (``expense_accrual:<id>``).
    - Payments against an expense never exceed its unpaid payable.
    - Expense lines only land on expense accounts; other income only on
      income accounts.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from ledger_config.schema import LedgerConfig
from ledger_kernel.db.types import ZERO
from ledger_kernel.domain.dtos import EntryDraft, EntryFilter
from ledger_kernel.exceptions import InvalidEntryError, InvalidPaymentError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.account import AccountType
from ledger_kernel.models.ledger_entry import EntrySource, LedgerEntrySet
from ledger_kernel.services.posting_engine import PostingEngine
from ledger_kernel.utils.idempotency import expense_accrual_key
from ledger_modules.payments.models import money_amount

logger = get_logger("modules.expenses")

EXPENSE_SOURCE_MODEL = "Expense"
EXPENSE_PAYMENT_SOURCES = frozenset(
    {EntrySource.EXPENSE_PAYMENT, EntrySource.VENDOR_PAYMENT}
)


class ExpenseService:
    """Expense accrual and payment.  Flushes, never commits."""

    def __init__(self, engine: PostingEngine, config: LedgerConfig):
        self._engine = engine
        self._store = engine.store
        self._registry = engine.registry
        self._config = config
        self._roles = config.roles

    def _require_type(self, code: str, expected: AccountType) -> None:
        account = self._registry.lookup(code)
        if account.type is not expected:
            raise InvalidEntryError(
                f"account {code} is {account.type.value}, expected {expected.value}"
            )

    # =========================================================================
    # Accrual basis
    # =========================================================================

    def accrue_expense(
        self,
        expense_id: str,
        amount,
        expense_code: str,
        entry_date: date,
        acting_user: str,
        vendor_id: str | None = None,
        residence_id: str | None = None,
        description: str | None = None,
    ) -> LedgerEntrySet:
        """
        Dr Expense / Cr Accounts payable.

        Raises:
            InvalidEntryError: If the expense was already accrued or
                ``expense_code`` is not an expense account.
        """
        value = money_amount(amount)
        self._require_type(expense_code, AccountType.EXPENSE)
        text = description or f"Expense {expense_id}"
        return self._engine.post(
            EntryDraft(
                entry_date=entry_date,
                source=EntrySource.EXPENSE_ACCRUAL,
                description=text,
                reference=vendor_id,
                source_id=expense_id,
                source_model=EXPENSE_SOURCE_MODEL,
                residence_id=residence_id,
                idempotency_key=expense_accrual_key(expense_id),
                lines=(
                    EntryDraft.debit(expense_code, value, text),
                    EntryDraft.credit(self._roles.accounts_payable, value, text),
                ),
                metadata={"type": "expense_accrual", "expenseId": expense_id, "vendorId": vendor_id},
            ),
            acting_user,
        )

    def payable_outstanding(self, expense_id: str) -> Decimal:
        """Accounts payable still owed for one expense."""
        entries = self._store.find_effective(
            EntryFilter(
                source_id=expense_id,
                source_model=EXPENSE_SOURCE_MODEL,
                sources=frozenset({EntrySource.EXPENSE_ACCRUAL, *EXPENSE_PAYMENT_SOURCES}),
            )
        )
        owed = ZERO
        for entry in entries:
            for line in entry.lines:
                if line.account_code == self._roles.accounts_payable:
                    owed += line.credit - line.debit
        return owed

    def pay_expense(
        self,
        expense_id: str,
        amount,
        method: str | None,
        entry_date: date,
        acting_user: str,
        vendor_payment: bool = False,
    ) -> LedgerEntrySet:
        """
        Dr Accounts payable / Cr Cash.

        Raises:
            InvalidPaymentError: If the expense has no unpaid payable or the
                amount exceeds it.
        """
        value = money_amount(amount)
        owed = self.payable_outstanding(expense_id)
        if owed <= ZERO:
            raise InvalidPaymentError(f"expense {expense_id} has nothing payable")
        if value > owed:
            logger.warning(
                "expense_payment_rejected",
                extra={"expense_id": expense_id, "amount": value, "owed": owed},
            )
            raise InvalidPaymentError(
                f"payment {value} exceeds payable {owed} for expense {expense_id}"
            )

        source = EntrySource.VENDOR_PAYMENT if vendor_payment else EntrySource.EXPENSE_PAYMENT
        cash = self._config.cash_account_for(method)
        entry = self._engine.post(
            EntryDraft(
                entry_date=entry_date,
                source=source,
                description=f"Payment of expense {expense_id}",
                source_id=expense_id,
                source_model=EXPENSE_SOURCE_MODEL,
                lines=(
                    EntryDraft.debit(self._roles.accounts_payable, value, "Payable settled"),
                    EntryDraft.credit(cash, value, f"Paid ({method or 'unspecified'})"),
                ),
                metadata={"type": source.value, "expenseId": expense_id, "method": method},
            ),
            acting_user,
        )
        logger.info(
            "expense_paid",
            extra={"expense_id": expense_id, "amount": value, "remaining": owed - value},
        )
        return entry

    # =========================================================================
    # Cash only
    # =========================================================================

    def record_direct_expense(
        self,
        expense_code: str,
        amount,
        method: str | None,
        entry_date: date,
        acting_user: str,
        description: str = "",
        residence_id: str | None = None,
        expense_id: str | None = None,
    ) -> LedgerEntrySet:
        """Dr Expense / Cr Cash, for spending never recorded as a payable."""
        value = money_amount(amount)
        self._require_type(expense_code, AccountType.EXPENSE)
        text = description or "Direct expense"
        return self._engine.post(
            EntryDraft(
                entry_date=entry_date,
                source=EntrySource.EXPENSE_PAYMENT,
                description=text,
                source_id=expense_id,
                source_model=EXPENSE_SOURCE_MODEL if expense_id else None,
                residence_id=residence_id,
                lines=(
                    EntryDraft.debit(expense_code, value, text),
                    EntryDraft.credit(self._config.cash_account_for(method), value, text),
                ),
                metadata={"type": "direct_expense", "method": method},
            ),
            acting_user,
        )

    def record_other_income(
        self,
        amount,
        method: str | None,
        entry_date: date,
        acting_user: str,
        description: str = "",
        income_code: str | None = None,
        residence_id: str | None = None,
        reference: str | None = None,
    ) -> LedgerEntrySet:
        """Dr Cash / Cr Other income (or ``income_code``)."""
        value = money_amount(amount)
        code = income_code or self._roles.other_income
        self._require_type(code, AccountType.INCOME)
        text = description or "Other income"
        return self._engine.post(
            EntryDraft(
                entry_date=entry_date,
                source=EntrySource.OTHER_INCOME,
                description=text,
                reference=reference,
                residence_id=residence_id,
                lines=(
                    EntryDraft.debit(self._config.cash_account_for(method), value, text),
                    EntryDraft.credit(code, value, text),
                ),
                metadata={"type": "other_income", "method": method},
            ),
            acting_user,
        )
