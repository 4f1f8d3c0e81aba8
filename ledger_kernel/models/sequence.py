"""
Module: ledger_kernel.models.sequence
Responsibility: Named counter rows that hand out posting sequence numbers.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - One row per sequence name; ``current_value`` only grows.
    - The row is read ``FOR UPDATE`` before every increment, so concurrent
      posters queue on it until the holder's transaction ends.
"""

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import Base

LEDGER_ENTRY_SEQUENCE = "ledger_entry"


class SequenceCounter(Base):
    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(String(50), unique=True)
    current_value: Mapped[int] = mapped_column(BigInteger, default=0)

    def __repr__(self) -> str:
        return f"<SequenceCounter {self.name}={self.current_value}>"
