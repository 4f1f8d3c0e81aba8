"""Accrual inputs (billing agreements) and run results."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Protocol, runtime_checkable

from ledger_kernel.db.types import ZERO, to_decimal
from ledger_kernel.domain.billing import BillingPeriod
from ledger_kernel.models.ledger_entry import LedgerEntrySet


@dataclass(frozen=True)
class BillingAgreement:
    """
    A lease as the ledger sees it.

    Supplied by the lease/debtor side; the ledger never stores it.  The
    debtor id becomes the receivable subaccount suffix (``1100-<debtorId>``).
    """

    lease_id: str
    debtor_id: str
    billing_period: BillingPeriod
    residence_id: str | None = None
    admin_fee: Decimal = ZERO
    security_deposit: Decimal = ZERO
    is_active: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "admin_fee", to_decimal(self.admin_fee))
        object.__setattr__(self, "security_deposit", to_decimal(self.security_deposit))
        if self.admin_fee < ZERO or self.security_deposit < ZERO:
            raise ValueError("admin_fee and security_deposit must not be negative")
        if not self.lease_id or not self.debtor_id:
            raise ValueError("lease_id and debtor_id are required")

    @property
    def start_date(self) -> date:
        return self.billing_period.start_date

    @property
    def end_date(self) -> date:
        return self.billing_period.end_date

    def overlaps(self, start: date, end: date) -> bool:
        return self.start_date <= end and self.end_date >= start


@runtime_checkable
class AgreementProvider(Protocol):
    """Source of billing agreements (lease service, fixture, import)."""

    def active_agreements(self, start: date, end: date) -> list[BillingAgreement]:
        """Active agreements overlapping ``[start, end]``."""
        ...


class StaticAgreementProvider:
    """In-memory provider for callers that already hold the agreements."""

    def __init__(self, agreements: list[BillingAgreement] | None = None):
        self._agreements: dict[str, BillingAgreement] = {}
        for agreement in agreements or []:
            self.add(agreement)

    def add(self, agreement: BillingAgreement) -> None:
        self._agreements[agreement.lease_id] = agreement

    def remove(self, lease_id: str) -> None:
        self._agreements.pop(lease_id, None)

    def get(self, lease_id: str) -> BillingAgreement | None:
        return self._agreements.get(lease_id)

    def active_agreements(self, start: date, end: date) -> list[BillingAgreement]:
        return sorted(
            (
                a for a in self._agreements.values()
                if a.is_active and a.overlaps(start, end)
            ),
            key=lambda a: (a.debtor_id, a.lease_id),
        )

    def for_debtor(self, debtor_id: str) -> list[BillingAgreement]:
        return [a for a in self._agreements.values() if a.debtor_id == debtor_id]


@dataclass(frozen=True)
class SkippedItem:
    lease_id: str
    reason: str
    month_key: str | None = None


@dataclass(frozen=True)
class AccrualRunResult:
    """What a scheduled run posted and what it skipped (with reasons)."""

    created: tuple[LedgerEntrySet, ...] = ()
    skipped: tuple[SkippedItem, ...] = ()

    @property
    def created_count(self) -> int:
        return len(self.created)

    def skipped_reasons(self) -> dict[str, str]:
        """lease_id -> reason."""
        return {s.lease_id: s.reason for s in self.skipped}


@dataclass
class RunCollector:
    created: list[LedgerEntrySet] = field(default_factory=list)
    skipped: list[SkippedItem] = field(default_factory=list)

    def result(self) -> AccrualRunResult:
        return AccrualRunResult(created=tuple(self.created), skipped=tuple(self.skipped))
