"""Payment intake DTOs and allocation results."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from ledger_kernel.db.types import ZERO, is_whole_cents, round_money, to_decimal
from ledger_kernel.exceptions import InvalidPaymentError
from ledger_kernel.models.ledger_entry import LedgerEntrySet


@dataclass(frozen=True)
class Payment:
    """
    A payment as handed over by payment intake.

    ``target_period`` (``YYYY-MM``) pins the payment to one month;
    ``allow_advance`` lets a targeted payment land entirely in deferred
    income when that month has nothing outstanding.
    """

    payment_id: str
    debtor_id: str
    amount: Decimal
    date: date
    method: str | None = None
    target_period: str | None = None
    residence_id: str | None = None
    reference: str | None = None
    allow_advance: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "amount", to_decimal(self.amount))
        if isinstance(self.date, datetime):
            object.__setattr__(self, "date", self.date.date())


@dataclass(frozen=True)
class AllocationLine:
    accrual_entry_id: UUID
    month_key: str
    amount: Decimal


@dataclass(frozen=True)
class AllocationResult:
    """
    Outcome of ``allocate_payment``.

    ``amount_settled + amount_deferred == payment.amount`` always.
    """

    entry: LedgerEntrySet
    amount_settled: Decimal
    amount_deferred: Decimal
    allocations: tuple[AllocationLine, ...]

    @property
    def entry_id(self) -> UUID:
        return self.entry.id


@dataclass(frozen=True)
class OutstandingPeriod:
    """Charged vs settled for one accrual entry-set of a debtor."""

    accrual_entry_id: UUID
    month_key: str
    accrual_date: date
    charged: Decimal
    settled: Decimal
    lease_id: str | None = None

    @property
    def outstanding(self) -> Decimal:
        return self.charged - self.settled


def money_amount(value, label: str = "amount") -> Decimal:
    """
    A strictly positive amount in whole cents.

    Sub-cent input is refused rather than rounded, so the cash posted always
    equals the amount the caller handed over.

    Raises:
        InvalidPaymentError: Non-positive or finer than a cent.
    """
    amount = to_decimal(value)
    if amount <= ZERO:
        raise InvalidPaymentError(f"{label} must be positive, got {amount}")
    if not is_whole_cents(amount):
        raise InvalidPaymentError(f"{label} has more than two decimal places: {amount}")
    return round_money(amount)
