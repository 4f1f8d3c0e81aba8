"""
AccountRegistry -- the chart of accounts.

Responsibility:
    Registers accounts, resolves codes for the PostingEngine, and manages the
    active flag.  It is the single authority for an account's name and type;
    ledger lines only carry a display snapshot of both.

Architecture position:
    Kernel > Services.  Imports models/ and exceptions only.

Invariants enforced:
    - A code has exactly one type for its whole life.  Registering it again
      with the same type is a no-op; with another type it fails.
    - Codes are never renamed or removed (lines hold foreign keys to them).

Failure modes:
    - UnknownAccountError on lookup of an unregistered code.
    - DuplicateAccountError on a type conflict.
    - AccountInactiveError from ``require_postable`` for a deactivated code.
"""

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_kernel.exceptions import (
    AccountInactiveError,
    DuplicateAccountError,
    UnknownAccountError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.account import Account, AccountType
from ledger_kernel.services.base import BaseService

logger = get_logger("services.account_registry")

SUBACCOUNT_SEPARATOR = "-"


class AccountRegistry(BaseService):
    """Chart-of-accounts service.  Flushes, never commits."""

    def __init__(self, session: Session):
        super().__init__(session)

    def register_account(
        self,
        code: str,
        name: str,
        account_type: AccountType | str,
        acting_user: str,
        parent_code: str | None = None,
    ) -> Account:
        """
        Register an account, or return the existing one when the code is
        already registered with the same type.

        Raises:
            DuplicateAccountError: If ``code`` exists with a different type.
            ValueError: If ``code`` is blank or the type is unknown.
        """
        code = (code or "").strip()
        if not code:
            raise ValueError("Account code must not be blank")
        account_type = AccountType(account_type)

        existing = self._find(code)
        if existing is not None:
            if existing.type != account_type:
                logger.warning(
                    "account_type_conflict",
                    extra={
                        "account_code": code,
                        "existing_type": existing.type.value,
                        "requested_type": account_type.value,
                    },
                )
                raise DuplicateAccountError(
                    code, existing.type.value, account_type.value
                )
            return existing

        account = Account(
            code=code,
            name=name,
            account_type=account_type.value,
            normal_balance=account_type.normal_balance.value,
            is_active=True,
            parent_code=parent_code,
            created_by=acting_user,
        )
        self._persist(account)

        logger.info(
            "account_registered",
            extra={
                "account_code": code,
                "account_type": account_type.value,
                "parent_code": parent_code,
            },
        )
        return account

    def lookup(self, code: str) -> Account:
        """
        Resolve a code.

        Raises:
            UnknownAccountError: If the code is not registered.
        """
        account = self._find(code)
        if account is None:
            raise UnknownAccountError(code)
        return account

    def exists(self, code: str) -> bool:
        return self._find(code) is not None

    def require_postable(self, code: str) -> Account:
        """Resolve a code that is about to receive a posting."""
        account = self.lookup(code)
        if not account.is_active:
            raise AccountInactiveError(code)
        return account

    def ensure_subaccount(
        self,
        parent_code: str,
        suffix: str,
        acting_user: str,
        name: str | None = None,
    ) -> Account:
        """
        Register ``<parent>-<suffix>`` with the parent's type (idempotent).

        Used for per-debtor receivables such as ``1100-<debtorId>``.
        """
        parent = self.lookup(parent_code)
        code = subaccount_code(parent_code, suffix)
        return self.register_account(
            code=code,
            name=name or f"{parent.name} - {suffix}",
            account_type=parent.type,
            acting_user=acting_user,
            parent_code=parent_code,
        )

    def activate(self, code: str) -> Account:
        return self._set_active(code, True)

    def deactivate(self, code: str) -> Account:
        """Block new postings to ``code``; existing lines are untouched."""
        return self._set_active(code, False)

    def list_accounts(
        self,
        account_type: AccountType | str | None = None,
        active_only: bool = False,
    ) -> list[Account]:
        stmt = select(Account).order_by(Account.code)
        if account_type is not None:
            stmt = stmt.where(Account.account_type == AccountType(account_type).value)
        if active_only:
            stmt = stmt.where(Account.is_active.is_(True))
        return list(self.session.execute(stmt).scalars().all())

    def subaccounts(self, parent_code: str) -> list[Account]:
        stmt = (
            select(Account)
            .where(Account.parent_code == parent_code)
            .order_by(Account.code)
        )
        return list(self.session.execute(stmt).scalars().all())

    def lock_for_update(self, code: str) -> Account:
        """Re-read ``code`` with ``SELECT ... FOR UPDATE``; the row lock lasts until commit."""
        account = self.session.execute(
            select(Account).where(Account.code == code).with_for_update()
        ).scalar_one_or_none()
        if account is None:
            raise UnknownAccountError(code)
        return account

    def _set_active(self, code: str, active: bool) -> Account:
        account = self.lookup(code)
        if account.is_active != active:
            account.is_active = active
            self.session.flush()
            logger.info(
                "account_activated" if active else "account_deactivated",
                extra={"account_code": code},
            )
        return account

    def _find(self, code: str) -> Account | None:
        return self.session.execute(
            select(Account).where(Account.code == code)
        ).scalar_one_or_none()


def subaccount_code(parent_code: str, suffix: str) -> str:
    """
    Example:
        >>> subaccount_code("1100", "D-42")
        '1100-D-42'
    """
    suffix = str(suffix).strip()
    if not suffix:
        raise ValueError("Subaccount suffix must not be blank")
    return f"{parent_code}{SUBACCOUNT_SEPARATOR}{suffix}"
