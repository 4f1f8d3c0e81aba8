"""
Configuration schema (``ledger_config.schema``).

Frozen dataclasses produced by ``ledger_config.loader``.  Nothing here reads
files; nothing here is mutable after loading.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from types import MappingProxyType
from typing import Mapping


@dataclass(frozen=True)
class AccountDef:
    """One chart-of-accounts row."""

    code: str
    name: str
    account_type: str
    parent_code: str | None = None


@dataclass(frozen=True)
class AccountRoles:
    """
    Which account code plays each bookkeeping role.

    Modules post to roles, never to literal codes, so a residence group with
    a different chart only changes YAML.
    """

    cash: str
    bank: str
    accounts_receivable: str
    deposit_liability: str
    deferred_income: str
    accounts_payable: str
    rental_income: str
    admin_income: str
    other_income: str
    forfeiture_income: str
    operating_expense: str
    retained_earnings: str

    def as_dict(self) -> dict[str, str]:
        return {name: getattr(self, name) for name in self.__dataclass_fields__}


@dataclass(frozen=True)
class DatabaseConfig:
    url: str = "sqlite:///:memory:"
    echo: bool = False


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"


@dataclass(frozen=True)
class LedgerConfig:
    """The whole loaded configuration set."""

    name: str
    version: int
    currency: str
    tolerance: Decimal
    database: DatabaseConfig
    logging: LoggingConfig
    roles: AccountRoles
    payment_methods: Mapping[str, str]
    default_payment_account: str
    cash_accounts: tuple[str, ...]
    accounts: tuple[AccountDef, ...]
    checksum: str = ""
    grace_days: int = 0
    source_path: str | None = field(default=None, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "payment_methods", MappingProxyType(dict(self.payment_methods))
        )

    def cash_account_for(self, method: str | None) -> str:
        """
        Cash account a payment method lands in (case-insensitive), or the
        default account for unknown/missing methods.
        """
        if method:
            wanted = method.strip().lower()
            for name, code in self.payment_methods.items():
                if name.lower() == wanted:
                    return code
        return self.default_payment_account

    def account(self, code: str) -> AccountDef | None:
        for account in self.accounts:
            if account.code == code:
                return account
        return None
