"""
SequenceService -- posting order numbers from a locked counter row.

Responsibility:
    Hands out the ``seq`` stamped on every entry-set.  The counter row for
    a sequence is selected ``FOR UPDATE`` and incremented in the caller's
    transaction, so two concurrent posters never draw the same number and a
    rolled-back posting gives its number back.

Architecture position:
    Kernel > Services.  Called by the LedgerEntryStore on every insert.

Invariants enforced:
    - Values are never derived from ``max(seq) + 1`` over the entries; the
      counter row is the only source of the next value.
    - ``create_tables`` seeds the ledger-entry counter, so the row exists
      before the first concurrent posting.

Failure modes:
    - IntegrityError if two transactions both create a missing counter
      row; only possible on a schema created without ``create_tables``.
"""

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.ledger_entry import LedgerEntrySet
from ledger_kernel.models.sequence import LEDGER_ENTRY_SEQUENCE, SequenceCounter
from ledger_kernel.services.base import BaseService

logger = get_logger("services.sequence")


class SequenceService(BaseService):
    """Flushes the increment; the caller's commit makes it visible."""

    def __init__(self, session: Session):
        super().__init__(session)

    def next_value(self, name: str = LEDGER_ENTRY_SEQUENCE) -> int:
        counter = self._locked(name)
        if counter is None:
            counter = self.ensure_counter(name)
        counter.current_value += 1
        self.session.flush()
        logger.debug("sequence_allocated", extra={"sequence_name": name, "value": counter.current_value})
        return counter.current_value

    def current_value(self, name: str = LEDGER_ENTRY_SEQUENCE) -> int | None:
        return self.session.execute(
            select(SequenceCounter.current_value).where(SequenceCounter.name == name)
        ).scalar_one_or_none()

    def ensure_counter(self, name: str = LEDGER_ENTRY_SEQUENCE) -> SequenceCounter:
        """
        Return the counter row, creating it if needed.

        A new ledger-entry counter starts at the highest ``seq`` already on
        file, so a database created before counters existed keeps its order.
        """
        counter = self._locked(name)
        if counter is not None:
            return counter
        start = 0
        if name == LEDGER_ENTRY_SEQUENCE:
            start = self.session.execute(
                select(func.coalesce(func.max(LedgerEntrySet.seq), 0))
            ).scalar_one()
        counter = SequenceCounter(name=name, current_value=int(start))
        self._persist(counter)
        logger.info("sequence_counter_created", extra={"sequence_name": name, "start": int(start)})
        return counter

    def _locked(self, name: str) -> SequenceCounter | None:
        return self.session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
