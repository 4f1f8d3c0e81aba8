"""
PostingEngine -- validates and commits entry-sets; reverses and voids them.

Responsibility:
    The single write path into the ledger.  A draft is validated entirely in
    memory (source, date, line shape, balance, account resolution,
    idempotency key) and only then handed to the LedgerEntryStore, so an
    invalid draft never reaches the session.

Architecture position:
    Kernel > Services.  Consumes AccountRegistry and LedgerEntryStore.
    Modules (accruals, payments, deposits, expenses) build drafts and call
    ``post``; they never construct LedgerEntrySet rows themselves.

Invariants enforced:
    - sum(debit) == sum(credit) within tolerance, else UnbalancedEntryError.
    - Every line is non-negative with exactly one side non-zero.
    - At least two lines; every account code registered and active.
    - At most one reversal per entry (pre-check under row lock plus the
      unique reversal_of_id constraint).
    - Reversal lines are the exact debit/credit swap of the original's.
    - Void only from POSTED, and never when an effective payment allocation
      settles the entry.

Failure modes:
    - UnbalancedEntryError, InvalidLineError, InvalidEntryError,
      UnknownAccountError, AccountInactiveError from ``post``.
    - NotFoundError, EntryNotPostedError, AlreadyReversedError from
      ``reverse``/``void``; EntrySettledError from ``void``.

Audit relevance:
    Rejections log at WARNING before raising; postings, reversals and voids
    log at INFO with the acting user.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ledger_kernel.db.types import DEFAULT_BALANCE_TOLERANCE, ZERO
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import EntryDraft, LineDraft
from ledger_kernel.exceptions import (
    AlreadyReversedError,
    EntryNotPostedError,
    EntrySettledError,
    InvalidEntryError,
    InvalidLineError,
    UnbalancedEntryError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.ledger_entry import (
    EntrySource,
    EntryStatus,
    LedgerEntrySet,
    LedgerLine,
)
from ledger_kernel.services.account_registry import AccountRegistry
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.entry_store import LedgerEntryStore

logger = get_logger("services.posting_engine")

REVERSAL_CONSTRAINT = "uq_ledger_entry_reversal_of"


class PostingEngine(BaseService):
    """
    Posting, reversal and void of entry-sets.

    Contract:
        Flushes within the caller's transaction; never commits.  The acting
        user is passed to every write and recorded as ``created_by`` /
        ``voided_by``.
    """

    def __init__(
        self,
        session: Session,
        registry: AccountRegistry,
        store: LedgerEntryStore | None = None,
        clock: Clock | None = None,
        tolerance: Decimal = DEFAULT_BALANCE_TOLERANCE,
    ):
        super().__init__(session)
        self._registry = registry
        self._store = store or LedgerEntryStore(session)
        self._clock = clock or SystemClock()
        self._tolerance = tolerance

    @property
    def store(self) -> LedgerEntryStore:
        return self._store

    @property
    def registry(self) -> AccountRegistry:
        return self._registry

    @property
    def clock(self) -> Clock:
        return self._clock

    # =========================================================================
    # Post
    # =========================================================================

    def post(self, draft: EntryDraft, acting_user: str) -> LedgerEntrySet:
        """
        Validate ``draft`` and store it as a posted entry-set.

        Preconditions:
            - ``acting_user`` is non-blank.

        Postconditions:
            - The returned entry has an id, a seq and ``status == posted``,
              and its lines carry a name/type snapshot from the registry.

        Raises:
            InvalidEntryError: Unknown source, bad date, < 2 lines, blank
                acting user, or an idempotency key already posted.
            InvalidLineError: A line with a negative amount, both sides
                set, or neither side set.
            UnbalancedEntryError: Debits and credits differ beyond tolerance.
            UnknownAccountError / AccountInactiveError: Line account problems.
        """
        source = self._validate_header(draft, acting_user)
        entry_date = _coerce_date(draft.entry_date)
        self._validate_lines(draft.lines)
        self._validate_balance(draft, source)

        for line in draft.lines:
            self._registry.require_postable(line.account_code)

        if draft.idempotency_key:
            existing = self._store.find_effective_by_key(draft.idempotency_key)
            if existing is not None:
                logger.warning(
                    "entry_rejected_duplicate_key",
                    extra={
                        "idempotency_key": draft.idempotency_key,
                        "existing_entry_id": str(existing.id),
                    },
                )
                raise InvalidEntryError(
                    f"idempotency key {draft.idempotency_key} already posted "
                    f"as {existing.id}"
                )

        entry = self._build_entry(
            entry_date=entry_date,
            source=source,
            lines=draft.lines,
            description=draft.description,
            reference=draft.reference,
            source_id=draft.source_id,
            source_model=draft.source_model,
            residence_id=draft.residence_id,
            debtor_id=draft.debtor_id,
            idempotency_key=draft.idempotency_key,
            metadata=dict(draft.metadata),
            acting_user=acting_user,
        )
        self._store.put(entry)

        with LogContext.bind(actor_id=acting_user, entry_id=str(entry.id)):
            logger.info(
                "entry_posted",
                extra={
                    "seq": entry.seq,
                    "source": source.value,
                    "entry_date": entry_date,
                    "line_count": len(entry.lines),
                    "total": entry.total_debit,
                    "debtor_id": draft.debtor_id,
                    "idempotency_key": draft.idempotency_key,
                },
            )
        return entry

    # =========================================================================
    # Reverse
    # =========================================================================

    def reverse(
        self,
        entry_id: UUID | str,
        reason: str,
        acting_user: str,
        reversal_date: date | None = None,
    ) -> LedgerEntrySet:
        """
        Post the exact negation of a posted entry.

        The reversal is dated ``reversal_date`` (default: the clock's today),
        never backdated to the original's date unless the caller asks.  It
        keeps the original's source, debtor, residence and source reference
        and records ``reversalOf``, ``reversalReason`` and ``reversedBy`` in
        its metadata.

        Raises:
            NotFoundError: Unknown entry id.
            EntryNotPostedError: The original is voided.
            AlreadyReversedError: A reversal already references the entry.
            InvalidEntryError: The entry is itself a reversal.
        """
        if not acting_user:
            raise InvalidEntryError("acting_user is required")
        original = self._load_reversible(entry_id)
        when = _coerce_date(reversal_date) if reversal_date else self._clock.today()

        flipped = tuple(
            LineDraft(
                account_code=line.account_code,
                debit=line.credit,
                credit=line.debit,
                description=line.description,
            )
            for line in original.lines
        )
        metadata = original.metadata_dict
        metadata.update(
            {
                "reversalOf": str(original.id),
                "reversalReason": reason,
                "reversedBy": acting_user,
            }
        )

        reversal = self._build_entry(
            entry_date=when,
            source=original.source_type,
            lines=flipped,
            description=f"Reversal: {original.description}".strip(),
            reference=original.reference,
            source_id=original.source_id,
            source_model=original.source_model,
            residence_id=original.residence_id,
            debtor_id=original.debtor_id,
            idempotency_key=None,
            metadata=metadata,
            acting_user=acting_user,
        )
        reversal.reversal_of_id = original.id

        try:
            self._store.put(reversal)
        except IntegrityError as exc:
            if not _violates(exc, REVERSAL_CONSTRAINT, "ledger_entries.reversal_of_id"):
                raise
            # a concurrent reversal of the same original committed first
            logger.warning(
                "reversal_conflict",
                extra={"original_entry_id": str(original.id)},
            )
            raise AlreadyReversedError(str(original.id)) from exc

        with LogContext.bind(actor_id=acting_user, entry_id=str(reversal.id)):
            logger.info(
                "entry_reversed",
                extra={
                    "original_entry_id": str(original.id),
                    "reversal_seq": reversal.seq,
                    "reversal_date": when,
                    "reason": reason,
                },
            )
        return reversal

    # =========================================================================
    # Void
    # =========================================================================

    def void(
        self,
        entry_id: UUID | str,
        reason: str,
        acting_user: str,
    ) -> LedgerEntrySet:
        """
        Tombstone an entry created in error.

        Raises:
            NotFoundError: Unknown entry id.
            EntryNotPostedError: Already voided.
            AlreadyReversedError: The entry was reversed (void the history
                away instead of correcting it is not allowed).
            InvalidEntryError: The entry is a reversal.
            EntrySettledError: An effective payment allocation settles it.
        """
        if not acting_user:
            raise InvalidEntryError("acting_user is required")
        entry = self._store.get_for_update(entry_id)
        if not entry.is_posted:
            raise EntryNotPostedError(str(entry.id), str(entry.status))
        if entry.is_reversal:
            raise InvalidEntryError(
                f"entry {entry.id} is a reversal and cannot be voided"
            )
        existing_reversal = self._store.reversal_of(entry.id)
        if existing_reversal is not None:
            raise AlreadyReversedError(str(entry.id), str(existing_reversal.id))

        settled_by = self._store.effective_allocations(accrual_entry_ids=[entry.id])
        if settled_by:
            payment_ids = sorted({str(a.settling_entry_id) for a in settled_by})
            logger.warning(
                "void_rejected_settled",
                extra={"entry_id": str(entry.id), "payment_entry_ids": payment_ids},
            )
            raise EntrySettledError(str(entry.id), payment_ids)

        self._store.mark_voided(entry, acting_user, reason, self._clock.now())

        with LogContext.bind(actor_id=acting_user, entry_id=str(entry.id)):
            logger.info(
                "entry_voided",
                extra={"reason": reason, "source": entry.source},
            )
        return entry

    # =========================================================================
    # Internal
    # =========================================================================

    def _validate_header(self, draft: EntryDraft, acting_user: str) -> EntrySource:
        if not acting_user:
            raise InvalidEntryError("acting_user is required")
        try:
            source = EntrySource(draft.source)
        except ValueError as exc:
            logger.warning("entry_rejected_source", extra={"source": str(draft.source)})
            raise InvalidEntryError(f"unknown source {draft.source!r}") from exc
        if len(draft.lines) < 2:
            logger.warning(
                "entry_rejected_line_count",
                extra={"line_count": len(draft.lines)},
            )
            raise InvalidEntryError(
                f"an entry-set needs at least 2 lines, got {len(draft.lines)}"
            )
        return source

    def _validate_lines(self, lines: tuple[LineDraft, ...]) -> None:
        for index, line in enumerate(lines):
            reason = None
            if not line.account_code:
                reason = "account code is blank"
            elif line.debit < ZERO or line.credit < ZERO:
                reason = "amounts must not be negative"
            elif line.debit > ZERO and line.credit > ZERO:
                reason = "line cannot be both a debit and a credit"
            elif line.debit == ZERO and line.credit == ZERO:
                reason = "line has neither a debit nor a credit"
            if reason is not None:
                logger.warning(
                    "entry_rejected_line",
                    extra={"line_index": index, "reason": reason},
                )
                raise InvalidLineError(index, reason)

    def _validate_balance(self, draft: EntryDraft, source: EntrySource) -> None:
        debit_total = draft.total_debit
        credit_total = draft.total_credit
        diff = abs(debit_total - credit_total)
        if diff > self._tolerance:
            logger.warning(
                "entry_rejected_unbalanced",
                extra={
                    "source": source.value,
                    "debit_total": debit_total,
                    "credit_total": credit_total,
                    "diff": diff,
                },
            )
            raise UnbalancedEntryError(debit_total, credit_total, diff)

    def _load_reversible(self, entry_id: UUID | str) -> LedgerEntrySet:
        original = self._store.get_for_update(entry_id)
        if not original.is_posted:
            raise EntryNotPostedError(str(original.id), str(original.status))
        existing = self._store.reversal_of(original.id)
        if existing is not None:
            logger.warning(
                "reversal_rejected_already_reversed",
                extra={
                    "original_entry_id": str(original.id),
                    "reversal_id": str(existing.id),
                },
            )
            raise AlreadyReversedError(str(original.id), str(existing.id))
        if original.is_reversal:
            raise InvalidEntryError(
                f"entry {original.id} is itself a reversal; post a new entry instead"
            )
        return original

    def _build_entry(
        self,
        *,
        entry_date: date,
        source: EntrySource,
        lines: tuple[LineDraft, ...],
        description: str,
        reference: str | None,
        source_id: str | None,
        source_model: str | None,
        residence_id: str | None,
        debtor_id: str | None,
        idempotency_key: str | None,
        metadata: dict,
        acting_user: str,
    ) -> LedgerEntrySet:
        entry = LedgerEntrySet(
            entry_date=entry_date,
            description=description or "",
            reference=reference,
            source=source.value,
            source_id=source_id,
            source_model=source_model,
            status=EntryStatus.POSTED.value,
            residence_id=residence_id,
            debtor_id=debtor_id,
            idempotency_key=idempotency_key,
            entry_metadata=metadata or None,
            posted_at=self._clock.now(),
            created_by=acting_user,
        )
        for index, line in enumerate(lines):
            account = self._registry.lookup(line.account_code)
            entry.lines.append(
                LedgerLine(
                    line_seq=index,
                    account_code=account.code,
                    account_name=account.name,
                    account_type=account.type.value,
                    debit=line.debit,
                    credit=line.credit,
                    description=line.description,
                    created_by=acting_user,
                )
            )
        return entry


def _coerce_date(value: date | datetime) -> date:
    if isinstance(value, datetime):
        return value.date()
    if not isinstance(value, date):
        raise InvalidEntryError(f"entry_date must be a calendar date, got {value!r}")
    return value


def _violates(exc: IntegrityError, constraint: str, column: str) -> bool:
    """
    Whether ``exc`` is a unique violation of ``constraint``.

    PostgreSQL drivers report the constraint name; SQLite only names the
    column (``UNIQUE constraint failed: <table>.<column>``).
    """
    diag = getattr(exc.orig, "diag", None)
    name = getattr(diag, "constraint_name", None)
    if name:
        return name == constraint
    message = str(exc.orig)
    return constraint in message or column in message
