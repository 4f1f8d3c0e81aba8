"""
MaintenanceService -- audited cleanup and ledger integrity checks.

Responsibility:
    Wraps the entry store's orphan purge with a source registry the caller
    fills from the systems that own leases, payments and expenses, and
    checks stored entry-sets for balance drift.

Architecture position:
    Modules > Maintenance.  Uses the kernel LedgerEntryStore (writes, for
    the purge) and LedgerSelector (reads).

Failure modes:
    - None of its own; database errors propagate.

Audit relevance:
    Orphan deletions are logged at WARNING by the store; integrity findings
    at WARNING here.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ledger_kernel.db.types import DEFAULT_BALANCE_TOLERANCE
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.ledger_entry import EntryStatus, LedgerEntrySet, LedgerLine
from ledger_kernel.selectors.ledger_selector import LedgerSelector
from ledger_kernel.services.entry_store import LedgerEntryStore, OrphanCleanupReport

logger = get_logger("modules.maintenance")

SourceExists = Callable[[str | None, str], bool]


def known_sources(live_ids: Mapping[str, Iterable[str]]) -> SourceExists:
    """
    Build a ``source_exists`` callback from the ids each owner still has.

    ``live_ids`` maps a source model (``"Lease"``, ``"Payment"``,
    ``"Expense"``) to its live ids.  Models missing from the mapping are
    treated as present, so an incomplete snapshot never deletes entries.
    """
    snapshot = {model: {str(i) for i in ids} for model, ids in live_ids.items()}

    def source_exists(source_model: str | None, source_id: str) -> bool:
        ids = snapshot.get(source_model or "")
        if ids is None:
            return True
        return str(source_id) in ids

    return source_exists


@dataclass(frozen=True)
class IntegrityReport:
    entry_count: int
    unbalanced_entry_ids: tuple[UUID, ...]
    total_debits: Decimal
    total_credits: Decimal

    @property
    def difference(self) -> Decimal:
        return self.total_debits - self.total_credits

    @property
    def is_clean(self) -> bool:
        return not self.unbalanced_entry_ids


class MaintenanceService:
    def __init__(self, session: Session, store: LedgerEntryStore | None = None):
        self._session = session
        self._store = store or LedgerEntryStore(session)
        self._ledger = LedgerSelector(session)

    def cleanup_orphans(
        self,
        source_exists: SourceExists,
        acting_user: str,
        dry_run: bool = False,
    ) -> OrphanCleanupReport:
        """Delete entry-sets whose source object is gone (see ``purge_orphans``)."""
        return self._store.purge_orphans(source_exists, acting_user, dry_run=dry_run)

    def find_unbalanced_entries(
        self, tolerance: Decimal = DEFAULT_BALANCE_TOLERANCE
    ) -> list[UUID]:
        """Posted entry-sets whose stored lines do not balance."""
        diff = func.sum(LedgerLine.debit) - func.sum(LedgerLine.credit)
        query = (
            select(LedgerLine.entry_id)
            .join(LedgerEntrySet, LedgerLine.entry_id == LedgerEntrySet.id)
            .where(LedgerEntrySet.status == EntryStatus.POSTED.value)
            .group_by(LedgerLine.entry_id)
            .having(func.abs(diff) > tolerance)
        )
        return list(self._session.execute(query).scalars().all())

    def check_integrity(
        self,
        as_of: date | None = None,
        tolerance: Decimal = DEFAULT_BALANCE_TOLERANCE,
    ) -> IntegrityReport:
        entry_count = self._session.execute(
            select(func.count(LedgerEntrySet.id)).where(
                LedgerEntrySet.status == EntryStatus.POSTED.value
            )
        ).scalar_one()
        unbalanced = self.find_unbalanced_entries(tolerance)
        debits, credits = self._ledger.total_debits_credits(as_of)
        report = IntegrityReport(
            entry_count=int(entry_count),
            unbalanced_entry_ids=tuple(unbalanced),
            total_debits=debits,
            total_credits=credits,
        )
        if not report.is_clean:
            logger.warning(
                "ledger_integrity_violation",
                extra={
                    "unbalanced_count": len(unbalanced),
                    "entry_ids": [str(i) for i in unbalanced],
                },
            )
        logger.info(
            "ledger_integrity_checked",
            extra={
                "entry_count": report.entry_count,
                "total_debits": debits,
                "total_credits": credits,
                "clean": report.is_clean,
            },
        )
        return report
