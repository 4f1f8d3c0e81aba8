"""
PaymentAllocator -- settles receivables, defers advances, recognises
deferred income.

Responsibility:
    Splits each incoming payment between settlement of outstanding accrued
    months (oldest first, or one targeted month) and deferred income, posts
    one entry-set for it, and records which accrual each settled slice paid.
    Also runs the monthly deferred-income recognition and negotiated
    discounts.

Architecture position:
    Modules > Payments.  Posts through the kernel PostingEngine, reads
    entries through the LedgerEntryStore and aggregates through the
    LedgerSelector.

Invariants enforced:
    - amount_settled + amount_deferred == payment amount, exactly.
    - A slice never exceeds the accrual's outstanding balance, so no month
      is ever over-settled.
    - FIFO only settles accruals dated on or before the payment date.
    - All work for one debtor runs under that debtor's lock.
    - Reversed or voided payments stop counting as settlement; reversed or
      voided accruals stop being owed.

Failure modes:
    - InvalidPaymentError: non-positive or sub-cent amount, blank debtor, malformed
      target period, or a payment id that was already allocated.
    - NoOutstandingBalanceError: targeted month has nothing outstanding and
      ``allow_advance`` is False.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from sqlalchemy.orm import Session

from ledger_config.schema import LedgerConfig
from ledger_kernel.db.types import ZERO, round_money
from ledger_kernel.domain.billing import (
    month_bounds,
    month_key,
    monthly_charge,
    parse_month_key,
)
from ledger_kernel.domain.dtos import EntryDraft, EntryFilter, LineDraft
from ledger_kernel.exceptions import (
    InvalidPaymentError,
    NoOutstandingBalanceError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.ledger_entry import EntrySource, LedgerEntrySet
from ledger_kernel.selectors.ledger_selector import LedgerSelector
from ledger_kernel.services.account_registry import subaccount_code
from ledger_kernel.services.debtor_lock import (
    DebtorLockRegistry,
    serialize_debtor,
    shared_registry,
)
from ledger_kernel.services.posting_engine import PostingEngine
from ledger_kernel.utils.idempotency import deferred_recognition_key, payment_key
from ledger_modules.accruals.models import (
    AccrualRunResult,
    AgreementProvider,
    BillingAgreement,
    RunCollector,
    SkippedItem,
)
from ledger_modules.payments.models import (
    AllocationLine,
    AllocationResult,
    OutstandingPeriod,
    Payment,
    money_amount,
)

logger = get_logger("modules.payments")

PAYMENT_SOURCE_MODEL = "Payment"


class PaymentAllocator:
    """
    Payment allocation and deferred-income handling for debtors.

    Contract:
        Flushes within the caller's session; never commits.  ``provider`` is
        only needed by ``recognize_deferred_income``.
    """

    def __init__(
        self,
        session: Session,
        engine: PostingEngine,
        config: LedgerConfig,
        provider: AgreementProvider | None = None,
        locks: DebtorLockRegistry | None = None,
    ):
        self._session = session
        self._engine = engine
        self._store = engine.store
        self._registry = engine.registry
        self._clock = engine.clock
        self._config = config
        self._roles = config.roles
        self._provider = provider
        self._locks = locks or shared_registry()
        self._selector = LedgerSelector(session)

    @property
    def locks(self) -> DebtorLockRegistry:
        return self._locks

    def serialize(self, debtor_id: str, acting_user: str) -> None:
        """Hold ``debtor_id`` against other payment or accrual work until this transaction ends."""
        serialize_debtor(
            self._session,
            self._locks,
            self._registry,
            self._roles.accounts_receivable,
            debtor_id,
            acting_user,
        )

    def receivable_code(self, debtor_id: str) -> str:
        return subaccount_code(self._roles.accounts_receivable, debtor_id)

    # =========================================================================
    # Payment allocation
    # =========================================================================

    def allocate_payment(self, payment: Payment, acting_user: str) -> AllocationResult:
        """
        Allocate ``payment`` and post its entry-set.

        Entry shape (zero lines omitted):
            Dr Cash/Bank           payment amount
            Cr AR (debtor)         amount settled
            Cr Deferred income     amount deferred

        Raises:
            InvalidPaymentError: Bad input or duplicate payment id.
            NoOutstandingBalanceError: Targeted month has nothing owing and
                ``allow_advance`` is False.
        """
        amount = self._validate(payment)

        self.serialize(payment.debtor_id, acting_user)
        with LogContext.bind(
            debtor_id=payment.debtor_id,
            residence_id=payment.residence_id,
            actor_id=acting_user,
        ):
            key = payment_key(payment.payment_id)
            existing = self._store.find_effective_by_key(key)
            if existing is not None:
                logger.warning(
                    "payment_rejected_duplicate",
                    extra={"payment_id": payment.payment_id, "entry_id": str(existing.id)},
                )
                raise InvalidPaymentError(
                    f"payment {payment.payment_id} already allocated as {existing.id}"
                )

            open_periods = [
                p for p in self.outstanding_periods(payment.debtor_id)
                if p.outstanding > ZERO
            ]
            if payment.target_period:
                candidates = [p for p in open_periods if p.month_key == payment.target_period]
                if not candidates and not payment.allow_advance:
                    logger.warning(
                        "payment_rejected_no_outstanding",
                        extra={
                            "payment_id": payment.payment_id,
                            "month_key": payment.target_period,
                        },
                    )
                    raise NoOutstandingBalanceError(
                        payment.debtor_id, payment.target_period
                    )
            else:
                candidates = [p for p in open_periods if p.accrual_date <= payment.date]

            slices: list[AllocationLine] = []
            remaining = amount
            for period in candidates:
                if remaining <= ZERO:
                    break
                take = min(remaining, period.outstanding)
                slices.append(
                    AllocationLine(period.accrual_entry_id, period.month_key, take)
                )
                remaining -= take

            settled = sum((s.amount for s in slices), ZERO)
            deferred = amount - settled

            cash_code = self._config.cash_account_for(payment.method)
            lines: list[LineDraft] = [
                EntryDraft.debit(cash_code, amount, f"Payment received ({payment.method or 'unspecified'})"),
            ]
            if settled > ZERO:
                receivable = self._registry.ensure_subaccount(
                    self._roles.accounts_receivable, payment.debtor_id, acting_user
                )
                lines.append(
                    EntryDraft.credit(receivable.code, settled, "Settlement of accrued rent")
                )
            if deferred > ZERO:
                lines.append(
                    EntryDraft.credit(self._roles.deferred_income, deferred, "Advance payment (deferred income)")
                )

            entry = self._engine.post(
                EntryDraft(
                    entry_date=payment.date,
                    source=EntrySource.PAYMENT,
                    description=f"Payment {payment.payment_id} from {payment.debtor_id}",
                    reference=payment.reference or payment.payment_id,
                    source_id=payment.payment_id,
                    source_model=PAYMENT_SOURCE_MODEL,
                    residence_id=payment.residence_id,
                    debtor_id=payment.debtor_id,
                    idempotency_key=key,
                    lines=tuple(lines),
                    metadata={
                        "paymentId": payment.payment_id,
                        "studentId": payment.debtor_id,
                        "method": payment.method,
                        "monthSettled": payment.target_period,
                        "amountSettled": str(settled),
                        "amountDeferred": str(deferred),
                        "allocations": [
                            {
                                "accrualEntryId": str(s.accrual_entry_id),
                                "monthKey": s.month_key,
                                "amount": str(s.amount),
                            }
                            for s in slices
                        ],
                    },
                ),
                acting_user,
            )
            for s in slices:
                self._store.add_allocation(
                    entry, s.accrual_entry_id, payment.debtor_id, s.month_key, s.amount, acting_user
                )

            logger.info(
                "payment_allocated",
                extra={
                    "payment_id": payment.payment_id,
                    "entry_id": str(entry.id),
                    "amount": amount,
                    "amount_settled": settled,
                    "amount_deferred": deferred,
                    "months": [s.month_key for s in slices],
                },
            )
            return AllocationResult(
                entry=entry,
                amount_settled=settled,
                amount_deferred=deferred,
                allocations=tuple(slices),
            )

    def _validate(self, payment: Payment) -> Decimal:
        if not payment.payment_id:
            raise InvalidPaymentError("payment_id is required")
        if not payment.debtor_id:
            raise InvalidPaymentError("debtor_id is required")
        if payment.target_period is not None:
            try:
                parse_month_key(payment.target_period)
            except ValueError as exc:
                raise InvalidPaymentError(
                    f"target_period must be YYYY-MM, got {payment.target_period!r}"
                ) from exc
        return money_amount(payment.amount)

    # =========================================================================
    # Queries
    # =========================================================================

    def outstanding_periods(
        self,
        debtor_id: str,
        as_of: date | None = None,
        include_settled: bool = False,
    ) -> list[OutstandingPeriod]:
        """
        Per-accrual charged/settled figures for a debtor, oldest first.

        ``as_of`` limits both the accruals and the settlements counted to
        those dated on or before it.
        """
        accruals = self._store.find_effective(
            EntryFilter(
                debtor_id=debtor_id,
                sources=frozenset({EntrySource.RENTAL_ACCRUAL}),
                end_date=as_of,
            )
        )
        if not accruals:
            return []

        settled_by: dict = {}
        for allocation in self._store.effective_allocations(
            accrual_entry_ids=[a.id for a in accruals]
        ):
            if as_of is not None and allocation.settling_entry.entry_date > as_of:
                continue
            settled_by[allocation.accrual_entry_id] = (
                settled_by.get(allocation.accrual_entry_id, ZERO) + allocation.amount
            )

        periods = []
        for accrual in accruals:
            charged = self._receivable_charge(accrual)
            if charged <= ZERO:
                continue
            period = OutstandingPeriod(
                accrual_entry_id=accrual.id,
                month_key=accrual.metadata_dict.get("monthKey") or month_key(accrual.entry_date),
                accrual_date=accrual.entry_date,
                charged=charged,
                settled=settled_by.get(accrual.id, ZERO),
                lease_id=accrual.metadata_dict.get("leaseId") or accrual.source_id,
            )
            if include_settled or period.outstanding > ZERO:
                periods.append(period)
        return periods

    def _receivable_charge(self, accrual: LedgerEntrySet) -> Decimal:
        control = self._roles.accounts_receivable
        total = ZERO
        for line in accrual.lines:
            if line.account_code == control or line.account_code.startswith(control + "-"):
                total += line.debit - line.credit
        return total

    def total_outstanding(self, debtor_id: str, as_of: date | None = None) -> Decimal:
        return sum(
            (p.outstanding for p in self.outstanding_periods(debtor_id, as_of)), ZERO
        )

    def deferred_balance(self, debtor_id: str, as_of: date | None = None) -> Decimal:
        """Advance payments held for the debtor (credit-normal, >= 0 when healthy)."""
        return -self._selector.net_debit(
            [self._roles.deferred_income], as_of=as_of, debtor_id=debtor_id
        )

    # =========================================================================
    # Deferred-income recognition
    # =========================================================================

    def recognize_deferred_income(
        self, month: int, year: int, acting_user: str
    ) -> AccrualRunResult:
        """
        Move advance payments into income for a month that has arrived.

        For every agreement active in the month whose debtor holds deferred
        income:
            - if the month has an outstanding accrual, apply deferred income
              against it (Dr Deferred income / Cr AR) and record the
              allocation;
            - otherwise recognise the month's prorated rent, capped at the
              deferred balance (Dr Deferred income / Cr Rental income),
              keyed ``deferred:<lease>:<YYYY-MM>`` so it runs once.
        """
        if self._provider is None:
            raise ValueError("recognize_deferred_income needs an agreement provider")

        first, last = month_bounds(year, month)
        key_month = month_key(first)
        run = RunCollector()

        for agreement in self._provider.active_agreements(first, last):
            self.serialize(agreement.debtor_id, acting_user)
            with LogContext.bind(
                debtor_id=agreement.debtor_id, actor_id=acting_user
            ):
                outcome = self._recognize_for(agreement, year, month, acting_user)
            if isinstance(outcome, LedgerEntrySet):
                run.created.append(outcome)
            else:
                run.skipped.append(SkippedItem(agreement.lease_id, outcome, key_month))
                logger.info(
                    "deferred_recognition_skipped",
                    extra={"lease_id": agreement.lease_id, "month_key": key_month, "reason": outcome},
                )

        result = run.result()
        logger.info(
            "deferred_recognition_completed",
            extra={"month_key": key_month, "created_count": result.created_count, "skipped_count": len(result.skipped)},
        )
        return result

    def _recognize_for(
        self,
        agreement: BillingAgreement,
        year: int,
        month: int,
        acting_user: str,
    ) -> LedgerEntrySet | str:
        first, last = month_bounds(year, month)
        key_month = month_key(first)

        balance = self.deferred_balance(agreement.debtor_id, as_of=last)
        if balance <= ZERO:
            return "no_deferred_balance"

        month_periods = [
            p for p in self.outstanding_periods(agreement.debtor_id, include_settled=True)
            if p.month_key == key_month and p.lease_id in (agreement.lease_id, None)
        ]
        if month_periods:
            open_periods = [p for p in month_periods if p.outstanding > ZERO]
            if not open_periods:
                return "already_settled"
            return self._apply_against_accrual(agreement, open_periods[0], balance, last, acting_user)

        key = deferred_recognition_key(agreement.lease_id, key_month)
        if self._store.find_effective_by_key(key) is not None:
            return "already_recognized"

        charge = monthly_charge(agreement.billing_period, year, month)
        if charge <= ZERO:
            return "no_overlap"
        amount = round_money(min(balance, charge))

        return self._engine.post(
            EntryDraft(
                entry_date=self._funded_on(agreement.debtor_id, max(first, agreement.start_date), last),
                source=EntrySource.DEFERRED_INCOME_TRANSFER,
                description=f"Deferred income recognised {key_month} - lease {agreement.lease_id}",
                reference=agreement.lease_id,
                source_id=agreement.lease_id,
                source_model="Lease",
                residence_id=agreement.residence_id,
                debtor_id=agreement.debtor_id,
                idempotency_key=key,
                lines=(
                    EntryDraft.debit(self._roles.deferred_income, amount, f"Advance applied {key_month}"),
                    EntryDraft.credit(self._roles.rental_income, amount, f"Rental income {key_month}"),
                ),
                metadata={
                    "type": "deferred_income_recognition",
                    "leaseId": agreement.lease_id,
                    "studentId": agreement.debtor_id,
                    "monthKey": key_month,
                    "monthlyCharge": str(charge),
                },
            ),
            acting_user,
        )

    def _apply_against_accrual(
        self,
        agreement: BillingAgreement,
        period: OutstandingPeriod,
        balance: Decimal,
        as_of: date,
        acting_user: str,
    ) -> LedgerEntrySet:
        amount = round_money(min(balance, period.outstanding))
        receivable = self._registry.ensure_subaccount(
            self._roles.accounts_receivable, agreement.debtor_id, acting_user
        )
        entry = self._engine.post(
            EntryDraft(
                entry_date=self._funded_on(agreement.debtor_id, period.accrual_date, as_of),
                source=EntrySource.DEFERRED_INCOME_TRANSFER,
                description=f"Advance applied to {period.month_key} - lease {agreement.lease_id}",
                reference=agreement.lease_id,
                source_id=agreement.lease_id,
                source_model="Lease",
                residence_id=agreement.residence_id,
                debtor_id=agreement.debtor_id,
                lines=(
                    EntryDraft.debit(self._roles.deferred_income, amount, f"Advance applied {period.month_key}"),
                    EntryDraft.credit(receivable.code, amount, f"Settlement of {period.month_key}"),
                ),
                metadata={
                    "type": "deferred_income_application",
                    "leaseId": agreement.lease_id,
                    "studentId": agreement.debtor_id,
                    "monthKey": period.month_key,
                    "accrualEntryId": str(period.accrual_entry_id),
                },
            ),
            acting_user,
        )
        self._store.add_allocation(
            entry, period.accrual_entry_id, agreement.debtor_id, period.month_key, amount, acting_user
        )
        return entry

    def _funded_on(self, debtor_id: str, earliest: date, as_of: date) -> date:
        """
        First date on or after ``earliest`` by which every advance counted in
        the deferred balance at ``as_of`` has been received.  Dating a
        draw-down there keeps the running deferred balance non-negative.
        """
        deferred = self._roles.deferred_income
        received = [
            entry.entry_date
            for entry in self._store.find_effective(
                EntryFilter(debtor_id=debtor_id, account_code=deferred, end_date=as_of)
            )
            if any(l.account_code == deferred and l.credit > ZERO for l in entry.lines)
        ]
        return max([earliest, *received])

    # =========================================================================
    # Negotiated discount
    # =========================================================================

    def negotiate_discount(
        self,
        debtor_id: str,
        month_key: str,
        amount: Decimal,
        reason: str,
        acting_user: str,
        entry_date: date | None = None,
    ) -> LedgerEntrySet:
        """
        Write down part of an outstanding month (Dr Rental income / Cr AR).

        Raises:
            InvalidPaymentError: Non-positive amount, bad month key, or an
                amount above the month's outstanding balance.
            NoOutstandingBalanceError: Nothing is owed for the month.
        """
        try:
            parse_month_key(month_key)
        except ValueError as exc:
            raise InvalidPaymentError(f"month must be YYYY-MM, got {month_key!r}") from exc
        amount = money_amount(amount, "discount")

        self.serialize(debtor_id, acting_user)
        with LogContext.bind(debtor_id=debtor_id, actor_id=acting_user):
            periods = [p for p in self.outstanding_periods(debtor_id) if p.month_key == month_key]
            outstanding = sum((p.outstanding for p in periods), ZERO)
            if outstanding <= ZERO:
                raise NoOutstandingBalanceError(debtor_id, month_key)
            if amount > outstanding:
                raise InvalidPaymentError(
                    f"discount {amount} exceeds outstanding {outstanding} for {month_key}"
                )

            receivable = self.receivable_code(debtor_id)
            entry = self._engine.post(
                EntryDraft(
                    entry_date=entry_date or self._clock.today(),
                    source=EntrySource.NEGOTIATED_PAYMENT,
                    description=f"Negotiated discount {month_key} - {reason}",
                    debtor_id=debtor_id,
                    lines=(
                        EntryDraft.debit(self._roles.rental_income, amount, f"Discount {month_key}"),
                        EntryDraft.credit(receivable, amount, f"Discount {month_key}"),
                    ),
                    metadata={
                        "type": "negotiated_discount",
                        "studentId": debtor_id,
                        "monthKey": month_key,
                        "reason": reason,
                    },
                ),
                acting_user,
            )
            remaining = amount
            for period in periods:
                if remaining <= ZERO:
                    break
                take = min(remaining, period.outstanding)
                self._store.add_allocation(
                    entry, period.accrual_entry_id, debtor_id, month_key, take, acting_user
                )
                remaining -= take

            logger.info(
                "discount_negotiated",
                extra={"month_key": month_key, "amount": amount, "entry_id": str(entry.id)},
            )
            return entry
