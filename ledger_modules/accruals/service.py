"""
AccrualScheduler -- rent receivables from billing agreements.

Responsibility:
    Generates the monthly rental accrual for every active agreement
    overlapping a month, and the one-off lease-start charge (prorated first
    month, admin fee, security deposit).

Architecture position:
    Modules > Accruals.  Builds EntryDrafts and posts them through the
    kernel PostingEngine; reads existing entries through the
    LedgerEntryStore for its idempotency checks.

Invariants enforced:
    - Idempotent per (lease, month): an effective entry keyed
      ``accrual:<lease>:<YYYY-MM>`` means the month is skipped with
      ``already_accrued``.  Re-running after a partial failure only posts
      what is missing.
    - A month whose rent the lease-start entry already charged is skipped
      (``covered_by_lease_start``).
    - Rent already recognised straight from deferred income for the month
      is not charged again; only the remainder is accrued.
    - Amounts are ``monthly / days_in_month * overlap_days`` rounded half-up
      to cents.

Failure modes:
    - Posting errors propagate (they indicate configuration problems, e.g.
      an inactive income account); the caller's transaction rolls back.
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
)
from ledger_kernel.domain.dtos import EntryDraft, EntryFilter, LineDraft
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.ledger_entry import EntrySource, LedgerEntrySet
from ledger_kernel.services.debtor_lock import (
    DebtorLockRegistry,
    serialize_debtor,
    shared_registry,
)
from ledger_kernel.services.posting_engine import PostingEngine
from ledger_kernel.utils.idempotency import (
    accrual_key,
    deferred_recognition_key,
    lease_start_key,
)
from ledger_modules.accruals.models import (
    AccrualRunResult,
    AgreementProvider,
    BillingAgreement,
    RunCollector,
    SkippedItem,
)

logger = get_logger("modules.accruals")

LEASE_SOURCE_MODEL = "Lease"
LEASE_START_TYPE = "lease_start"
MONTHLY_ACCRUAL_TYPE = "monthly_rent_accrual"


class SkipReason:
    ALREADY_ACCRUED = "already_accrued"
    COVERED_BY_LEASE_START = "covered_by_lease_start"
    RECOGNIZED_FROM_DEFERRED_INCOME = "recognized_from_deferred_income"
    NO_OVERLAP = "no_overlap"
    INACTIVE = "inactive"
    NOTHING_TO_ACCRUE = "nothing_to_accrue"


class AccrualScheduler:
    """
    Posts rental accruals.

    Contract:
        Flushes within the caller's session; never commits.  Work for one
        debtor is serialized through ``locks``.
    """

    def __init__(
        self,
        session: Session,
        engine: PostingEngine,
        config: LedgerConfig,
        provider: AgreementProvider,
        locks: DebtorLockRegistry | None = None,
    ):
        self._session = session
        self._engine = engine
        self._store = engine.store
        self._registry = engine.registry
        self._roles = config.roles
        self._provider = provider
        self._locks = locks or shared_registry()

    def _serialize(self, debtor_id: str, acting_user: str) -> None:
        serialize_debtor(
            self._session,
            self._locks,
            self._registry,
            self._roles.accounts_receivable,
            debtor_id,
            acting_user,
        )

    # =========================================================================
    # Monthly run
    # =========================================================================

    def generate_monthly_accruals(
        self, month: int, year: int, acting_user: str
    ) -> AccrualRunResult:
        """
        Accrue rent for ``month``/``year`` for every active agreement.

        Returns:
            AccrualRunResult listing created entries and skipped leases.
        """
        first, last = month_bounds(year, month)
        key_month = month_key(first)
        run = RunCollector()

        agreements = self._provider.active_agreements(first, last)
        logger.info(
            "accrual_run_started",
            extra={"month_key": key_month, "agreement_count": len(agreements)},
        )

        for agreement in agreements:
            self._serialize(agreement.debtor_id, acting_user)
            with LogContext.bind(
                debtor_id=agreement.debtor_id,
                residence_id=agreement.residence_id,
            ):
                outcome = self._accrue_month(agreement, year, month, acting_user)
            if isinstance(outcome, LedgerEntrySet):
                run.created.append(outcome)
            else:
                run.skipped.append(
                    SkippedItem(agreement.lease_id, outcome, key_month)
                )
                logger.info(
                    "accrual_skipped",
                    extra={
                        "lease_id": agreement.lease_id,
                        "month_key": key_month,
                        "reason": outcome,
                    },
                )

        result = run.result()
        logger.info(
            "accrual_run_completed",
            extra={
                "month_key": key_month,
                "created_count": result.created_count,
                "skipped_count": len(result.skipped),
            },
        )
        return result

    def _accrue_month(
        self,
        agreement: BillingAgreement,
        year: int,
        month: int,
        acting_user: str,
    ) -> LedgerEntrySet | str:
        first, last = month_bounds(year, month)
        key_month = month_key(first)

        if not agreement.is_active:
            return SkipReason.INACTIVE

        amount = monthly_charge(agreement.billing_period, year, month)
        if amount <= ZERO:
            return SkipReason.NO_OVERLAP

        key = accrual_key(agreement.lease_id, key_month)
        if self._store.find_effective_by_key(key) is not None:
            return SkipReason.ALREADY_ACCRUED

        lease_start = self._store.find_effective_by_key(
            lease_start_key(agreement.lease_id)
        )
        if (
            lease_start is not None
            and lease_start.metadata_dict.get("monthKey") == key_month
            and Decimal(str(lease_start.metadata_dict.get("rentAmount", "0"))) > ZERO
        ):
            return SkipReason.COVERED_BY_LEASE_START

        recognized = self.recognized_from_deferred(agreement.lease_id, key_month)
        if recognized >= amount:
            return SkipReason.RECOGNIZED_FROM_DEFERRED_INCOME
        remainder = round_money(amount - recognized)

        receivable = self._registry.ensure_subaccount(
            self._roles.accounts_receivable, agreement.debtor_id, acting_user
        )
        entry_date = max(first, agreement.start_date)
        description = f"Rent accrual {key_month} - lease {agreement.lease_id}"
        draft = EntryDraft(
            entry_date=entry_date,
            source=EntrySource.RENTAL_ACCRUAL,
            description=description,
            reference=agreement.lease_id,
            source_id=agreement.lease_id,
            source_model=LEASE_SOURCE_MODEL,
            residence_id=agreement.residence_id,
            debtor_id=agreement.debtor_id,
            idempotency_key=key,
            lines=(
                EntryDraft.debit(receivable.code, remainder, f"Rent due {key_month}"),
                EntryDraft.credit(self._roles.rental_income, remainder, f"Rental income {key_month}"),
            ),
            metadata={
                "type": MONTHLY_ACCRUAL_TYPE,
                "leaseId": agreement.lease_id,
                "studentId": agreement.debtor_id,
                "monthKey": key_month,
                "residenceId": agreement.residence_id,
                "fullAmount": str(amount),
                "recognizedFromDeferred": str(recognized),
                "periodDays": (
                    min(last, agreement.end_date) - entry_date
                ).days + 1,
            },
        )
        return self._engine.post(draft, acting_user)

    def recognized_from_deferred(self, lease_id: str, key_month: str) -> Decimal:
        """Rent for the month already moved from deferred income to income."""
        entries = self._store.find_effective(
            EntryFilter(
                idempotency_key=deferred_recognition_key(lease_id, key_month),
                sources=frozenset({EntrySource.DEFERRED_INCOME_TRANSFER}),
            )
        )
        total = ZERO
        for entry in entries:
            for line in entry.lines:
                if line.account_code == self._roles.rental_income:
                    total += line.credit - line.debit
        return total

    # =========================================================================
    # Lease start
    # =========================================================================

    def post_lease_start(
        self, agreement: BillingAgreement, acting_user: str
    ) -> AccrualRunResult:
        """
        Charge the lease-start bundle in one entry-set dated the start date.

        Lines (each only when non-zero):
            AR / Rental income      prorated first-month rent
            AR / Admin income       admin fee
            AR / Deposit liability  security deposit

        If the start month was already accrued by a monthly run, the rent
        part is left out so it is not charged twice.
        """
        start = agreement.start_date
        key_month = month_key(start)
        key = lease_start_key(agreement.lease_id)

        self._serialize(agreement.debtor_id, acting_user)
        with LogContext.bind(
            debtor_id=agreement.debtor_id, residence_id=agreement.residence_id
        ):
            if self._store.find_effective_by_key(key) is not None:
                logger.info(
                    "lease_start_skipped",
                    extra={"lease_id": agreement.lease_id, "reason": SkipReason.ALREADY_ACCRUED},
                )
                return AccrualRunResult(
                    skipped=(SkippedItem(agreement.lease_id, SkipReason.ALREADY_ACCRUED, key_month),)
                )

            rent = monthly_charge(agreement.billing_period, start.year, start.month)
            rent_covered_by = None
            monthly = self._store.find_effective_by_key(
                accrual_key(agreement.lease_id, key_month)
            )
            if monthly is not None:
                rent_covered_by = str(monthly.id)
                rent = ZERO
            else:
                rent = max(
                    ZERO,
                    round_money(rent - self.recognized_from_deferred(agreement.lease_id, key_month)),
                )

            admin_fee = round_money(agreement.admin_fee)
            deposit = round_money(agreement.security_deposit)
            total = rent + admin_fee + deposit
            if total <= ZERO:
                return AccrualRunResult(
                    skipped=(SkippedItem(agreement.lease_id, SkipReason.NOTHING_TO_ACCRUE, key_month),)
                )

            receivable = self._registry.ensure_subaccount(
                self._roles.accounts_receivable, agreement.debtor_id, acting_user
            )
            lines: list[LineDraft] = []
            if rent > ZERO:
                lines += [
                    EntryDraft.debit(receivable.code, rent, f"Prorated rent {key_month}"),
                    EntryDraft.credit(self._roles.rental_income, rent, f"Rental income {key_month}"),
                ]
            if admin_fee > ZERO:
                lines += [
                    EntryDraft.debit(receivable.code, admin_fee, "Admin fee"),
                    EntryDraft.credit(self._roles.admin_income, admin_fee, "Admin fee income"),
                ]
            if deposit > ZERO:
                lines += [
                    EntryDraft.debit(receivable.code, deposit, "Security deposit"),
                    EntryDraft.credit(self._roles.deposit_liability, deposit, "Security deposit held"),
                ]

            metadata = {
                "type": LEASE_START_TYPE,
                "leaseId": agreement.lease_id,
                "studentId": agreement.debtor_id,
                "monthKey": key_month,
                "residenceId": agreement.residence_id,
                "rentAmount": str(rent),
                "adminFee": str(admin_fee),
                "securityDeposit": str(deposit),
            }
            if rent_covered_by:
                metadata["rentCoveredBy"] = rent_covered_by

            entry = self._engine.post(
                EntryDraft(
                    entry_date=start,
                    source=EntrySource.RENTAL_ACCRUAL,
                    description=f"Lease start - lease {agreement.lease_id}",
                    reference=agreement.lease_id,
                    source_id=agreement.lease_id,
                    source_model=LEASE_SOURCE_MODEL,
                    residence_id=agreement.residence_id,
                    debtor_id=agreement.debtor_id,
                    idempotency_key=key,
                    lines=tuple(lines),
                    metadata=metadata,
                ),
                acting_user,
            )
            logger.info(
                "lease_start_accrued",
                extra={
                    "lease_id": agreement.lease_id,
                    "rent": rent,
                    "admin_fee": admin_fee,
                    "security_deposit": deposit,
                },
            )
            return AccrualRunResult(created=(entry,))

    def accrue_range(
        self, start: date, end: date, acting_user: str
    ) -> AccrualRunResult:
        """Run ``generate_monthly_accruals`` for every month touching [start, end]."""
        if end < start:
            raise ValueError(f"end {end} is before start {start}")
        created: list[LedgerEntrySet] = []
        skipped: list[SkippedItem] = []
        year, month = start.year, start.month
        while (year, month) <= (end.year, end.month):
            result = self.generate_monthly_accruals(month, year, acting_user)
            created.extend(result.created)
            skipped.extend(result.skipped)
            year, month = (year + 1, 1) if month == 12 else (year, month + 1)
        return AccrualRunResult(created=tuple(created), skipped=tuple(skipped))
