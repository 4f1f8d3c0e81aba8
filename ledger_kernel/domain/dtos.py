"""
DTOs -- immutable inputs to the posting pipeline and the entry store.

Responsibility:
    ``LineDraft``/``EntryDraft`` describe an entry-set before it is posted;
    ``EntryFilter`` describes a store query.  None of these touch the
    database.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  Validation of drafts belongs to the
    PostingEngine (so failures carry line indexes and typed errors); the
    DTOs only normalise amounts to ``Decimal``.

Data flow:
    caller -> EntryDraft -> PostingEngine.post() -> LedgerEntrySet (ORM)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from types import MappingProxyType
from typing import Any, Mapping

from ledger_kernel.db.types import ZERO, to_decimal
from ledger_kernel.models.ledger_entry import EntrySource, EntryStatus


@dataclass(frozen=True)
class LineDraft:
    """
    One proposed line.

    Exactly one of ``debit``/``credit`` should be positive; the engine
    rejects anything else with ``InvalidLineError``.
    """

    account_code: str
    debit: Decimal = ZERO
    credit: Decimal = ZERO
    description: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "debit", to_decimal(self.debit))
        object.__setattr__(self, "credit", to_decimal(self.credit))


@dataclass(frozen=True)
class EntryDraft:
    """
    An entry-set waiting to be posted.

    ``source`` accepts the enum or its string value; unknown strings are
    rejected by the engine, not here.
    """

    entry_date: date
    source: EntrySource | str
    lines: tuple[LineDraft, ...]
    description: str = ""
    reference: str | None = None
    source_id: str | None = None
    source_model: str | None = None
    residence_id: str | None = None
    debtor_id: str | None = None
    idempotency_key: str | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "lines", tuple(self.lines))
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))

    @staticmethod
    def debit(
        account_code: str,
        amount: Decimal | int | float | str,
        description: str | None = None,
    ) -> LineDraft:
        return LineDraft(account_code=account_code, debit=to_decimal(amount), description=description)

    @staticmethod
    def credit(
        account_code: str,
        amount: Decimal | int | float | str,
        description: str | None = None,
    ) -> LineDraft:
        return LineDraft(account_code=account_code, credit=to_decimal(amount), description=description)

    @property
    def total_debit(self) -> Decimal:
        return sum((line.debit for line in self.lines), ZERO)

    @property
    def total_credit(self) -> Decimal:
        return sum((line.credit for line in self.lines), ZERO)


@dataclass(frozen=True)
class EntryFilter:
    """
    Query over stored entry-sets.  All criteria are ANDed; ``None`` means
    "don't filter".  Date bounds are inclusive.

    ``metadata`` is key/value equality against ``entry_metadata`` and is
    applied after the SQL query.
    """

    start_date: date | None = None
    end_date: date | None = None
    sources: frozenset[EntrySource] | None = None
    statuses: frozenset[EntryStatus] | None = frozenset({EntryStatus.POSTED})
    account_code: str | None = None
    account_prefix: str | None = None
    residence_id: str | None = None
    debtor_id: str | None = None
    idempotency_key: str | None = None
    source_id: str | None = None
    source_model: str | None = None
    metadata: Mapping[str, Any] | None = None

    def __post_init__(self) -> None:
        if self.sources is not None:
            object.__setattr__(
                self, "sources", frozenset(EntrySource(s) for s in self.sources)
            )
        if self.statuses is not None:
            object.__setattr__(
                self, "statuses", frozenset(EntryStatus(s) for s in self.statuses)
            )
        if (
            self.start_date is not None
            and self.end_date is not None
            and self.start_date > self.end_date
        ):
            raise ValueError(
                f"start_date {self.start_date} is after end_date {self.end_date}"
            )
