"""
Module: ledger_kernel.models.ledger_entry
Responsibility: ORM persistence for entry-sets (one balanced group of lines
    per economic event) and their lines -- the single source of financial
    truth.
Architecture position: Kernel > Models.  May import from db/base.py only.
    MUST NOT import from services/, selectors/ or domain/.

Invariants enforced:
    - Debits == Credits within tolerance (checked by PostingEngine BEFORE the
      row is added to the session; total_debit/total_credit here are
      read-side conveniences).
    - At most one reversal per entry (UNIQUE reversal_of_id).
    - Lines reference accounts by code through a foreign key, so a referenced
      code can never be renamed or removed.
    - The only state change after posting is POSTED -> VOIDED.

Audit relevance:
    Entry-sets are never edited.  Corrections are new reversal entry-sets;
    physical deletion is reserved for the audited orphan cleanup.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy import JSON
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger_kernel.db.base import TrackedBase, UUIDString


class EntryStatus(str, Enum):
    """Lifecycle status of an entry-set.

    Only POSTED entries count toward balances.  VOIDED is a terminal
    tombstone and is distinct from being reversed (a reversed entry stays
    POSTED and is cancelled arithmetically by its reversal).
    """

    POSTED = "posted"
    VOIDED = "voided"


class EntrySource(str, Enum):
    """Closed set of economic event kinds; drives report bucketing."""

    RENTAL_ACCRUAL = "rental_accrual"
    EXPENSE_ACCRUAL = "expense_accrual"
    PAYMENT = "payment"
    VENDOR_PAYMENT = "vendor_payment"
    EXPENSE_PAYMENT = "expense_payment"
    MANUAL = "manual"
    OTHER_INCOME = "other_income"
    REFUND = "refund"
    NEGOTIATED_PAYMENT = "negotiated_payment"
    DEFERRED_INCOME_TRANSFER = "deferred_income_transfer"
    DEPOSIT_REVERSAL = "deposit_reversal"
    FORFEITURE = "forfeiture"


# Sources whose entry-sets recognise receivables/payables rather than move cash.
ACCRUAL_SOURCES = frozenset(
    {
        EntrySource.RENTAL_ACCRUAL,
        EntrySource.EXPENSE_ACCRUAL,
    }
)


class LedgerEntrySet(TrackedBase):
    """
    Entry-set header -- the atomic unit of bookkeeping.

    ``entry_date`` is the economic date (what reports filter on), not the
    creation timestamp.  ``source_id``/``source_model`` are a weak lookup
    reference to the originating lease, payment or expense; nothing here
    owns that object.
    """

    __tablename__ = "ledger_entries"

    __table_args__ = (
        UniqueConstraint("seq", name="uq_ledger_entry_seq"),
        UniqueConstraint("reversal_of_id", name="uq_ledger_entry_reversal_of"),
        Index("idx_ledger_entry_date", "entry_date"),
        Index("idx_ledger_entry_source", "source"),
        Index("idx_ledger_entry_status", "status"),
        Index("idx_ledger_entry_residence", "residence_id"),
        Index("idx_ledger_entry_debtor", "debtor_id"),
        Index("idx_ledger_entry_idempotency", "idempotency_key"),
        Index("idx_ledger_entry_source_ref", "source_model", "source_id"),
    )

    # monotonic posting order; tie-breaker for entries sharing a date
    seq: Mapped[int] = mapped_column(BigInteger)
    entry_date: Mapped[date] = mapped_column(Date)
    description: Mapped[str] = mapped_column(String(500), default="")
    reference: Mapped[str | None] = mapped_column(String(200))

    source: Mapped[EntrySource] = mapped_column(String(40))
    source_id: Mapped[str | None] = mapped_column(String(100))
    source_model: Mapped[str | None] = mapped_column(String(100))
    status: Mapped[EntryStatus] = mapped_column(String(10), default=EntryStatus.POSTED.value)

    residence_id: Mapped[str | None] = mapped_column(String(100))
    debtor_id: Mapped[str | None] = mapped_column(String(100))
    # e.g. accrual:<leaseId>:<YYYY-MM>; only blocks while its entry is effective
    idempotency_key: Mapped[str | None] = mapped_column(String(300))
    reversal_of_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("ledger_entries.id")
    )
    # "metadata" is reserved on declarative classes
    entry_metadata: Mapped[dict | None] = mapped_column(JSON)

    posted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    voided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    voided_by: Mapped[str | None] = mapped_column(String(100))
    void_reason: Mapped[str | None] = mapped_column(String(500))

    lines: Mapped[list["LedgerLine"]] = relationship(
        back_populates="entry",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="LedgerLine.line_seq",
    )

    reversal_of: Mapped["LedgerEntrySet | None"] = relationship(
        remote_side="LedgerEntrySet.id",
        foreign_keys=[reversal_of_id],
    )

    def __repr__(self) -> str:
        return f"<LedgerEntrySet {self.id} {self.source} status={self.status}>"

    @property
    def is_posted(self) -> bool:
        return EntryStatus(self.status) == EntryStatus.POSTED

    @property
    def is_voided(self) -> bool:
        return EntryStatus(self.status) == EntryStatus.VOIDED

    @property
    def is_reversal(self) -> bool:
        return self.reversal_of_id is not None

    @property
    def source_type(self) -> EntrySource:
        return EntrySource(self.source)

    @property
    def metadata_dict(self) -> dict:
        return dict(self.entry_metadata or {})

    @property
    def total_debit(self) -> Decimal:
        return sum((line.debit for line in self.lines), Decimal("0"))

    @property
    def total_credit(self) -> Decimal:
        return sum((line.credit for line in self.lines), Decimal("0"))


class LedgerLine(TrackedBase):
    """
    One debit or credit line of an entry-set.

    Exactly one of debit/credit is non-zero.  ``account_name`` and
    ``account_type`` are a display snapshot resolved from the registry at
    posting time; they are never used to decide how a line is aggregated.
    """

    __tablename__ = "ledger_lines"

    __table_args__ = (
        Index("idx_ledger_line_entry", "entry_id"),
        Index("idx_ledger_line_account", "account_code"),
    )

    entry_id: Mapped[UUID] = mapped_column(UUIDString(), ForeignKey("ledger_entries.id"))
    line_seq: Mapped[int] = mapped_column(Integer, default=0)
    account_code: Mapped[str] = mapped_column(String(100), ForeignKey("accounts.code"))
    account_name: Mapped[str] = mapped_column(String(255))
    account_type: Mapped[str] = mapped_column(String(20))
    debit: Mapped[Decimal] = mapped_column(Numeric(38, 9), default=Decimal("0"))
    credit: Mapped[Decimal] = mapped_column(Numeric(38, 9), default=Decimal("0"))
    description: Mapped[str | None] = mapped_column(String(500))

    entry: Mapped["LedgerEntrySet"] = relationship(back_populates="lines")

    def __repr__(self) -> str:
        return f"<LedgerLine {self.account_code} Dr {self.debit} Cr {self.credit}>"

    @property
    def is_debit(self) -> bool:
        return self.debit > 0

    @property
    def signed_amount(self) -> Decimal:
        """Debits positive, credits negative."""
        return self.debit - self.credit
