"""
Module: ledger_kernel.models.allocation
Responsibility: Records which settling entry-set (payment, deferred-income
    application, discount, deposit reversal) paid down which accrual entry-set
    and by how much.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Both ends are ledger entry-sets (foreign keys); allocation amounts are
      strictly positive.
    - An allocation only counts while its settling entry is posted and not
      reversed.  Reversing a payment therefore re-opens the periods it paid
      without touching these rows.

Audit relevance:
    This table is what makes per-month outstanding balances answerable without
    re-deriving them from free-text metadata, and what blocks voiding an
    accrual that a payment already relied on.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger_kernel.db.base import TrackedBase, UUIDString
from ledger_kernel.models.ledger_entry import LedgerEntrySet


class SettlementAllocation(TrackedBase):
    """One slice of a settling entry-set applied to one accrual."""

    __tablename__ = "settlement_allocations"

    __table_args__ = (
        CheckConstraint("amount > 0", name="amount_positive"),
        Index("idx_allocation_settling", "settling_entry_id"),
        Index("idx_allocation_accrual", "accrual_entry_id"),
        Index("idx_allocation_debtor", "debtor_id"),
    )

    settling_entry_id: Mapped[UUID] = mapped_column(UUIDString(), ForeignKey("ledger_entries.id"))
    accrual_entry_id: Mapped[UUID] = mapped_column(UUIDString(), ForeignKey("ledger_entries.id"))
    debtor_id: Mapped[str] = mapped_column(String(100))
    month_key: Mapped[str] = mapped_column(String(7))  # YYYY-MM of the accrual
    amount: Mapped[Decimal] = mapped_column(Numeric(38, 9))

    settling_entry: Mapped[LedgerEntrySet] = relationship(foreign_keys=[settling_entry_id])
    accrual_entry: Mapped[LedgerEntrySet] = relationship(foreign_keys=[accrual_entry_id])

    def __repr__(self) -> str:
        return (
            f"<SettlementAllocation {self.month_key} {self.amount} "
            f"{self.settling_entry_id} -> {self.accrual_entry_id}>"
        )
