"""
DepositService -- security deposits after the lease-start charge.

Responsibility:
    Reports the deposit liability held per debtor and posts the three ways
    a deposit leaves that liability: reversal of a deposit that was charged
    but never paid, forfeiture into income, and refund in cash.

Architecture position:
    Modules > Deposits.  Posts through the kernel PostingEngine; reads
    outstanding receivables through PaymentAllocator so there is a single
    settlement calculation.

Invariants enforced:
    - A forfeit or refund never exceeds the deposit held.
    - An unpaid-deposit reversal never exceeds the unsettled part of the
      lease-start charge and runs once per lease-start entry-set.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from sqlalchemy.orm import Session

from ledger_config.schema import LedgerConfig
from ledger_kernel.db.types import ZERO, to_decimal
from ledger_kernel.domain.dtos import EntryDraft, EntryFilter
from ledger_kernel.exceptions import InsufficientDepositError
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.ledger_entry import EntrySource, LedgerEntrySet
from ledger_kernel.selectors.ledger_selector import LedgerSelector
from ledger_kernel.services.debtor_lock import DebtorLockRegistry, shared_registry
from ledger_kernel.services.posting_engine import PostingEngine
from ledger_kernel.utils.idempotency import deposit_reversal_key
from ledger_modules.accruals.service import LEASE_START_TYPE
from ledger_modules.payments.models import money_amount
from ledger_modules.payments.service import PaymentAllocator

logger = get_logger("modules.deposits")


class DepositService:
    """Deposit liability movements.  Flushes, never commits."""

    def __init__(
        self,
        session: Session,
        engine: PostingEngine,
        config: LedgerConfig,
        locks: DebtorLockRegistry | None = None,
    ):
        self._engine = engine
        self._store = engine.store
        self._clock = engine.clock
        self._config = config
        self._roles = config.roles
        self._locks = locks or shared_registry()
        self._selector = LedgerSelector(session)
        self._allocator = PaymentAllocator(session, engine, config, locks=self._locks)

    def _serialize(self, debtor_id: str, acting_user: str) -> None:
        self._allocator.serialize(debtor_id, acting_user)

    def deposit_held(self, debtor_id: str, as_of: date | None = None) -> Decimal:
        """Deposit liability carried for the debtor (credit-normal)."""
        return -self._selector.net_debit(
            [self._roles.deposit_liability], as_of=as_of, debtor_id=debtor_id
        )

    def reverse_unpaid_deposit(
        self,
        debtor_id: str,
        acting_user: str,
        reason: str,
        entry_date: date | None = None,
    ) -> list[LedgerEntrySet]:
        """
        Take back the part of each charged deposit the debtor never paid.

        For every effective lease-start entry-set carrying a deposit, the
        unpaid amount is the smaller of the deposit and what is still
        outstanding on that entry-set.  Posts Dr Deposit liability / Cr AR
        and records the allocation against the lease-start charge.

        Returns:
            The reversal entry-sets created; empty when nothing was unpaid.
        """
        created: list[LedgerEntrySet] = []
        self._serialize(debtor_id, acting_user)
        with LogContext.bind(
            debtor_id=debtor_id, actor_id=acting_user
        ):
            lease_starts = self._store.find_effective(
                EntryFilter(
                    debtor_id=debtor_id,
                    sources=frozenset({EntrySource.RENTAL_ACCRUAL}),
                    metadata={"type": LEASE_START_TYPE},
                )
            )
            if not lease_starts:
                return created

            periods = {
                p.accrual_entry_id: p
                for p in self._allocator.outstanding_periods(debtor_id, include_settled=True)
            }
            receivable = self._allocator.receivable_code(debtor_id)

            for lease_start in lease_starts:
                deposit = to_decimal(lease_start.metadata_dict.get("securityDeposit", "0"))
                if deposit <= ZERO:
                    continue
                key = deposit_reversal_key(lease_start.id)
                if self._store.find_effective_by_key(key) is not None:
                    continue
                period = periods.get(lease_start.id)
                unpaid = min(deposit, period.outstanding) if period else ZERO
                if unpaid <= ZERO:
                    continue

                month = lease_start.metadata_dict.get("monthKey")
                entry = self._engine.post(
                    EntryDraft(
                        entry_date=entry_date or self._clock.today(),
                        source=EntrySource.DEPOSIT_REVERSAL,
                        description=f"Unpaid deposit reversed - {reason}",
                        reference=lease_start.reference,
                        source_id=lease_start.source_id,
                        source_model=lease_start.source_model,
                        residence_id=lease_start.residence_id,
                        debtor_id=debtor_id,
                        idempotency_key=key,
                        lines=(
                            EntryDraft.debit(self._roles.deposit_liability, unpaid, "Deposit not received"),
                            EntryDraft.credit(receivable, unpaid, "Deposit charge withdrawn"),
                        ),
                        metadata={
                            "type": "deposit_reversal",
                            "studentId": debtor_id,
                            "leaseStartEntryId": str(lease_start.id),
                            "leaseId": lease_start.metadata_dict.get("leaseId"),
                            "reason": reason,
                        },
                    ),
                    acting_user,
                )
                self._store.add_allocation(
                    entry, lease_start.id, debtor_id, month, unpaid, acting_user
                )
                logger.info(
                    "deposit_reversed",
                    extra={"entry_id": str(entry.id), "amount": unpaid},
                )
                created.append(entry)
        return created

    def forfeit_deposit(
        self,
        debtor_id: str,
        amount,
        acting_user: str,
        reason: str,
        entry_date: date | None = None,
    ) -> LedgerEntrySet:
        """Dr Deposit liability / Cr Forfeiture income."""
        return self._release(
            debtor_id,
            amount,
            acting_user,
            source=EntrySource.FORFEITURE,
            credit_code=self._roles.forfeiture_income,
            description=f"Deposit forfeited - {reason}",
            metadata={"type": "deposit_forfeiture", "reason": reason},
            entry_date=entry_date,
        )

    def refund_deposit(
        self,
        debtor_id: str,
        amount,
        method: str | None,
        acting_user: str,
        entry_date: date | None = None,
    ) -> LedgerEntrySet:
        """Dr Deposit liability / Cr the cash account ``method`` pays from."""
        return self._release(
            debtor_id,
            amount,
            acting_user,
            source=EntrySource.REFUND,
            credit_code=self._config.cash_account_for(method),
            description="Deposit refunded",
            metadata={"type": "deposit_refund", "method": method},
            entry_date=entry_date,
        )

    def _release(
        self,
        debtor_id: str,
        amount,
        acting_user: str,
        *,
        source: EntrySource,
        credit_code: str,
        description: str,
        metadata: dict,
        entry_date: date | None,
    ) -> LedgerEntrySet:
        value = money_amount(amount, "deposit amount")

        self._serialize(debtor_id, acting_user)
        with LogContext.bind(
            debtor_id=debtor_id, actor_id=acting_user
        ):
            held = self.deposit_held(debtor_id)
            if value > held:
                logger.warning(
                    "deposit_release_rejected",
                    extra={"requested": value, "held": held, "source": source.value},
                )
                raise InsufficientDepositError(debtor_id, value, held)

            entry = self._engine.post(
                EntryDraft(
                    entry_date=entry_date or self._clock.today(),
                    source=source,
                    description=description,
                    debtor_id=debtor_id,
                    lines=(
                        EntryDraft.debit(self._roles.deposit_liability, value, description),
                        EntryDraft.credit(credit_code, value, description),
                    ),
                    metadata={"studentId": debtor_id, **metadata},
                ),
                acting_user,
            )
            logger.info(
                "deposit_released",
                extra={"entry_id": str(entry.id), "amount": value, "source": source.value},
            )
            return entry
