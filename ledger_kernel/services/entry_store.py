"""
LedgerEntryStore -- append-only persistence of entry-sets.

Responsibility:
    Inserts validated entry-sets, answers entry queries, records settlement
    allocations, and performs the two sanctioned mutations: the
    posted -> voided transition and the audited orphan cleanup.

Architecture position:
    Kernel > Services.  Called by the PostingEngine (writes) and by modules
    (queries).  Balance aggregation is NOT done here; see
    ``selectors/ledger_selector.py``.

Invariants enforced:
    - No update-in-place API.  ``put`` only inserts; ``mark_voided`` only
      flips status on a posted entry.
    - ``seq`` is strictly increasing in insertion order; it comes from the
      locked counter row in ``services/sequence_service.py``.
    - Orphan cleanup only touches entries that carry a source reference
      whose source object the caller reports as gone.

Failure modes:
    - NotFoundError from ``get`` for an unknown id.
    - EntryNotPostedError from ``mark_voided`` on a non-posted entry.

Audit relevance:
    Every orphan deletion is logged at WARNING with the acting user and the
    deleted entry's source reference.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import and_, exists, or_, select
from sqlalchemy.orm import Session, aliased

from ledger_kernel.domain.dtos import EntryFilter
from ledger_kernel.exceptions import EntryNotPostedError, NotFoundError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.allocation import SettlementAllocation
from ledger_kernel.models.ledger_entry import (
    EntryStatus,
    LedgerEntrySet,
    LedgerLine,
)
from ledger_kernel.models.sequence import LEDGER_ENTRY_SEQUENCE
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.sequence_service import SequenceService

logger = get_logger("services.entry_store")


@dataclass(frozen=True)
class OrphanCleanupReport:
    """Outcome of ``purge_orphans``."""

    examined: int
    deleted_entry_ids: tuple[UUID, ...]
    deleted_allocations: int
    dry_run: bool

    @property
    def deleted_count(self) -> int:
        return len(self.deleted_entry_ids)


def _as_uuid(entry_id: UUID | str) -> UUID:
    return entry_id if isinstance(entry_id, UUID) else UUID(str(entry_id))


def effective_entry_clause():
    """
    SQL condition for entries that still count: posted and not reversed.

    A reversed original stays POSTED and is cancelled by its reversal in
    balances, but it no longer settles, blocks, or is settled by anything.
    """
    reversal = aliased(LedgerEntrySet)
    return and_(
        LedgerEntrySet.status == EntryStatus.POSTED.value,
        ~exists().where(reversal.reversal_of_id == LedgerEntrySet.id),
    )


class LedgerEntryStore(BaseService):
    """Entry-set persistence.  Flushes, never commits."""

    def __init__(self, session: Session):
        super().__init__(session)
        self._sequences = SequenceService(session)

    # =========================================================================
    # Writes
    # =========================================================================

    def put(self, entry: LedgerEntrySet) -> LedgerEntrySet:
        """Insert a fully built, already validated entry-set with its lines."""
        entry.seq = self._sequences.next_value(LEDGER_ENTRY_SEQUENCE)
        self._persist(entry)
        return entry

    def mark_voided(
        self,
        entry: LedgerEntrySet,
        acting_user: str,
        reason: str,
        voided_at: datetime,
    ) -> LedgerEntrySet:
        """The only in-place change an entry-set ever receives."""
        if not entry.is_posted:
            raise EntryNotPostedError(str(entry.id), str(entry.status))
        entry.status = EntryStatus.VOIDED.value
        entry.voided_at = voided_at
        entry.voided_by = acting_user
        entry.void_reason = reason
        self.session.flush()
        return entry

    def add_allocation(
        self,
        settling_entry: LedgerEntrySet,
        accrual_entry_id: UUID,
        debtor_id: str,
        month_key: str,
        amount: Decimal,
        acting_user: str,
    ) -> SettlementAllocation:
        allocation = SettlementAllocation(
            settling_entry_id=settling_entry.id,
            accrual_entry_id=accrual_entry_id,
            debtor_id=debtor_id,
            month_key=month_key,
            amount=amount,
            created_by=acting_user,
        )
        self._persist(allocation)
        return allocation

    # =========================================================================
    # Reads
    # =========================================================================

    def get(self, entry_id: UUID | str) -> LedgerEntrySet:
        """
        Raises:
            NotFoundError: If no entry-set has this id.
        """
        try:
            key = _as_uuid(entry_id)
        except ValueError as exc:
            raise NotFoundError(str(entry_id)) from exc
        entry = self.session.get(LedgerEntrySet, key)
        if entry is None:
            raise NotFoundError(str(entry_id))
        return entry

    def get_for_update(self, entry_id: UUID | str) -> LedgerEntrySet:
        """``get`` with a row lock (ignored by SQLite)."""
        try:
            key = _as_uuid(entry_id)
        except ValueError as exc:
            raise NotFoundError(str(entry_id)) from exc
        entry = self.session.execute(
            select(LedgerEntrySet)
            .where(LedgerEntrySet.id == key)
            .with_for_update()
        ).scalar_one_or_none()
        if entry is None:
            raise NotFoundError(str(entry_id))
        return entry

    def find(self, criteria: EntryFilter | None = None) -> list[LedgerEntrySet]:
        """Entry-sets matching ``criteria``, ordered by date then seq."""
        criteria = criteria or EntryFilter()
        stmt = select(LedgerEntrySet)

        if criteria.start_date is not None:
            stmt = stmt.where(LedgerEntrySet.entry_date >= criteria.start_date)
        if criteria.end_date is not None:
            stmt = stmt.where(LedgerEntrySet.entry_date <= criteria.end_date)
        if criteria.sources is not None:
            stmt = stmt.where(
                LedgerEntrySet.source.in_([s.value for s in criteria.sources])
            )
        if criteria.statuses is not None:
            stmt = stmt.where(
                LedgerEntrySet.status.in_([s.value for s in criteria.statuses])
            )
        if criteria.residence_id is not None:
            stmt = stmt.where(LedgerEntrySet.residence_id == criteria.residence_id)
        if criteria.debtor_id is not None:
            stmt = stmt.where(LedgerEntrySet.debtor_id == criteria.debtor_id)
        if criteria.idempotency_key is not None:
            stmt = stmt.where(
                LedgerEntrySet.idempotency_key == criteria.idempotency_key
            )
        if criteria.source_id is not None:
            stmt = stmt.where(LedgerEntrySet.source_id == criteria.source_id)
        if criteria.source_model is not None:
            stmt = stmt.where(LedgerEntrySet.source_model == criteria.source_model)
        if criteria.account_code is not None:
            stmt = stmt.where(
                exists().where(
                    LedgerLine.entry_id == LedgerEntrySet.id,
                    LedgerLine.account_code == criteria.account_code,
                )
            )
        if criteria.account_prefix is not None:
            prefix = criteria.account_prefix
            stmt = stmt.where(
                exists().where(
                    LedgerLine.entry_id == LedgerEntrySet.id,
                    or_(
                        LedgerLine.account_code == prefix,
                        LedgerLine.account_code.startswith(prefix),
                    ),
                )
            )

        stmt = stmt.order_by(LedgerEntrySet.entry_date, LedgerEntrySet.seq)
        entries = list(self.session.execute(stmt).scalars().all())

        if criteria.metadata:
            wanted = dict(criteria.metadata)
            entries = [
                e for e in entries
                if all(e.metadata_dict.get(k) == v for k, v in wanted.items())
            ]

        logger.debug(
            "entries_found",
            extra={"count": len(entries), "debtor_id": criteria.debtor_id},
        )
        return entries

    def reversal_of(self, entry_id: UUID | str) -> LedgerEntrySet | None:
        """The entry-set that reverses ``entry_id``, if any."""
        return self.session.execute(
            select(LedgerEntrySet).where(
                LedgerEntrySet.reversal_of_id == _as_uuid(entry_id)
            )
        ).scalar_one_or_none()

    def find_effective(self, criteria: EntryFilter | None = None) -> list[LedgerEntrySet]:
        """
        ``find`` restricted to posted originals that have not been reversed.

        Reversal entries themselves are excluded too; what remains is the
        set of entries that still carry economic meaning on their own.
        """
        criteria = replace(
            criteria or EntryFilter(), statuses=frozenset({EntryStatus.POSTED})
        )
        entries = [e for e in self.find(criteria) if not e.is_reversal]
        reversed_ids = self.reversed_ids(e.id for e in entries)
        return [e for e in entries if e.id not in reversed_ids]

    def reversed_ids(self, entry_ids: Iterable[UUID]) -> set[UUID]:
        """Subset of ``entry_ids`` that some reversal references."""
        ids = list(entry_ids)
        if not ids:
            return set()
        rows = self.session.execute(
            select(LedgerEntrySet.reversal_of_id).where(
                LedgerEntrySet.reversal_of_id.in_(ids)
            )
        ).scalars().all()
        return set(rows)

    def is_effective(self, entry: LedgerEntrySet) -> bool:
        return entry.is_posted and self.reversal_of(entry.id) is None

    def find_effective_by_key(self, idempotency_key: str) -> LedgerEntrySet | None:
        """Posted, un-reversed entry carrying ``idempotency_key``."""
        return self.session.execute(
            select(LedgerEntrySet)
            .where(
                LedgerEntrySet.idempotency_key == idempotency_key,
                effective_entry_clause(),
            )
            .order_by(LedgerEntrySet.seq)
            .limit(1)
        ).scalar_one_or_none()

    def effective_allocations(
        self,
        *,
        accrual_entry_ids: Iterable[UUID] | None = None,
        debtor_id: str | None = None,
    ) -> list[SettlementAllocation]:
        """Allocations whose settling entry is still effective."""
        stmt = (
            select(SettlementAllocation)
            .join(
                LedgerEntrySet,
                LedgerEntrySet.id == SettlementAllocation.settling_entry_id,
            )
            .where(effective_entry_clause())
        )
        if accrual_entry_ids is not None:
            ids = list(accrual_entry_ids)
            if not ids:
                return []
            stmt = stmt.where(SettlementAllocation.accrual_entry_id.in_(ids))
        if debtor_id is not None:
            stmt = stmt.where(SettlementAllocation.debtor_id == debtor_id)
        stmt = stmt.order_by(SettlementAllocation.created_at)
        return list(self.session.execute(stmt).scalars().all())

    def allocations_for_settling(self, entry_id: UUID) -> list[SettlementAllocation]:
        return list(
            self.session.execute(
                select(SettlementAllocation).where(
                    SettlementAllocation.settling_entry_id == entry_id
                )
            ).scalars().all()
        )

    # =========================================================================
    # Orphan cleanup
    # =========================================================================

    def purge_orphans(
        self,
        source_exists: Callable[[str | None, str], bool],
        actor_id: str,
        dry_run: bool = False,
    ) -> OrphanCleanupReport:
        """
        Delete entry-sets whose originating object no longer exists.

        ``source_exists(source_model, source_id)`` is supplied by the caller
        (the ledger has no view of leases, payments or expenses).  For each
        orphan the entry, its lines, its reversal and every allocation
        touching either are deleted.  Entries without a source reference are
        never examined.

        Postconditions:
            - With ``dry_run`` nothing is deleted; the report lists what
              would have been.
        """
        candidates = list(
            self.session.execute(
                select(LedgerEntrySet)
                .where(
                    LedgerEntrySet.source_id.is_not(None),
                    LedgerEntrySet.reversal_of_id.is_(None),
                )
                .order_by(LedgerEntrySet.seq)
            ).scalars().all()
        )

        deleted: list[UUID] = []
        allocation_count = 0
        for entry in candidates:
            if source_exists(entry.source_model, entry.source_id):
                continue

            doomed = [entry]
            reversal = self.reversal_of(entry.id)
            if reversal is not None:
                doomed.insert(0, reversal)
            doomed_ids = [e.id for e in doomed]

            allocations = list(
                self.session.execute(
                    select(SettlementAllocation).where(
                        or_(
                            SettlementAllocation.settling_entry_id.in_(doomed_ids),
                            SettlementAllocation.accrual_entry_id.in_(doomed_ids),
                        )
                    )
                ).scalars().all()
            )
            allocation_count += len(allocations)

            for victim in doomed:
                logger.warning(
                    "orphan_entry_deleted" if not dry_run else "orphan_entry_found",
                    extra={
                        "entry_id": str(victim.id),
                        "source": victim.source,
                        "source_model": victim.source_model,
                        "source_id": victim.source_id,
                        "actor_id": actor_id,
                        "dry_run": dry_run,
                    },
                )
                deleted.append(victim.id)

            if dry_run:
                continue

            for allocation in allocations:
                self.session.delete(allocation)
            self.session.flush()
            for victim in doomed:
                self.session.delete(victim)
                self.session.flush()

        report = OrphanCleanupReport(
            examined=len(candidates),
            deleted_entry_ids=tuple(deleted),
            deleted_allocations=allocation_count,
            dry_run=dry_run,
        )
        logger.info(
            "orphan_cleanup_completed",
            extra={
                "examined": report.examined,
                "deleted": report.deleted_count,
                "deleted_allocations": allocation_count,
                "dry_run": dry_run,
                "actor_id": actor_id,
            },
        )
        return report
