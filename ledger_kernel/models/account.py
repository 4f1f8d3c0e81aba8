"""
Module: ledger_kernel.models.account
Responsibility: ORM persistence for the chart of accounts -- the only place
    an account's name and type are authoritative.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - code is unique and, because ledger lines reference it by foreign key,
      cannot change once any line points at it.
    - account_type and normal_balance are consistent (Asset/Expense are
      debit-normal, everything else credit-normal).

Failure modes:
    - IntegrityError on a duplicate code (the registry checks first and
      raises DuplicateAccountError).
"""

from enum import Enum

from sqlalchemy import Boolean, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase


class AccountType(str, Enum):
    """Financial statement class of an account."""

    ASSET = "asset"
    LIABILITY = "liability"
    EQUITY = "equity"
    INCOME = "income"
    EXPENSE = "expense"

    @classmethod
    def _missing_(cls, value):
        # Accept "Asset", "ASSET", " asset " from config files and callers.
        if isinstance(value, str):
            normalized = value.strip().lower()
            for member in cls:
                if member.value == normalized:
                    return member
        return None

    @property
    def normal_balance(self) -> "NormalBalance":
        if self in (AccountType.ASSET, AccountType.EXPENSE):
            return NormalBalance.DEBIT
        return NormalBalance.CREDIT

    @property
    def display_name(self) -> str:
        return self.value.capitalize()


class NormalBalance(str, Enum):
    """Side on which an account's balance is positive."""

    DEBIT = "debit"
    CREDIT = "credit"


class Account(TrackedBase):
    """
    Chart of accounts entry.

    Debtor receivable subaccounts (``1100-<debtorId>``) are ordinary rows
    whose ``parent_code`` points at the control account.
    """

    __tablename__ = "accounts"

    __table_args__ = (
        UniqueConstraint("code", name="uq_account_code"),
        Index("idx_account_type", "account_type"),
        Index("idx_account_parent", "parent_code"),
    )

    code: Mapped[str] = mapped_column(String(100))
    name: Mapped[str] = mapped_column(String(255))
    account_type: Mapped[AccountType] = mapped_column(String(20))
    normal_balance: Mapped[NormalBalance] = mapped_column(String(10))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    # control account of a subaccount, e.g. 1100 for 1100-<debtorId>
    parent_code: Mapped[str | None] = mapped_column(String(100))

    def __repr__(self) -> str:
        return f"<Account {self.code}: {self.name}>"

    @property
    def type(self) -> AccountType:
        """account_type coerced to the enum (raw strings come back from the DB)."""
        return AccountType(self.account_type)

    @property
    def is_debit_normal(self) -> bool:
        return NormalBalance(self.normal_balance) == NormalBalance.DEBIT
