"""
Billing-period math.

Responsibility:
    Calendar arithmetic behind accruals: month bounds and keys, day overlap,
    day-based proration, and splitting an agreement into billing periods.

Architecture position:
    Kernel > Domain -- pure functions and frozen dataclasses, zero I/O.

Invariants enforced:
    - Proration is ``monthly_amount / days_in_month * days`` rounded once,
      half-up, to cents.  A full month is exactly ``monthly_amount``.
    - ``calculate_billing_periods`` returns ordered, non-overlapping periods
      whose union is exactly ``[start, end]``.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from enum import Enum

from ledger_kernel.db.types import ZERO, round_money, to_decimal


class BillingFrequency(str, Enum):
    WEEKLY = "weekly"
    BI_WEEKLY = "bi-weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUAL = "annual"

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str):
            normalized = value.strip().lower().replace("_", "-")
            if normalized == "biweekly":
                return cls.BI_WEEKLY
            for member in cls:
                if member.value == normalized:
                    return member
        return None


# Frequencies measured in whole calendar months (the rest in days)
_MONTH_STEPS = {
    BillingFrequency.MONTHLY: 1,
    BillingFrequency.QUARTERLY: 3,
    BillingFrequency.ANNUAL: 12,
}
_DAY_STEPS = {
    BillingFrequency.WEEKLY: 7,
    BillingFrequency.BI_WEEKLY: 14,
}


@dataclass(frozen=True)
class BillingCycle:
    frequency: BillingFrequency = BillingFrequency.MONTHLY
    day_of_month: int = 1
    grace_days: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "frequency", BillingFrequency(self.frequency))
        if not 1 <= self.day_of_month <= 31:
            raise ValueError(f"day_of_month must be 1..31, got {self.day_of_month}")
        if self.grace_days < 0:
            raise ValueError(f"grace_days must be >= 0, got {self.grace_days}")


@dataclass(frozen=True)
class BillingPeriod:
    """Schedule descriptor supplied by the lease/debtor side."""

    start_date: date
    end_date: date
    monthly_amount: Decimal
    billing_cycle: BillingCycle = field(default_factory=BillingCycle)

    def __post_init__(self) -> None:
        object.__setattr__(self, "monthly_amount", to_decimal(self.monthly_amount))
        if self.end_date < self.start_date:
            raise ValueError(
                f"end_date {self.end_date} is before start_date {self.start_date}"
            )
        if self.monthly_amount < ZERO:
            raise ValueError("monthly_amount must not be negative")


@dataclass(frozen=True)
class ScheduledPeriod:
    """One generated billing period."""

    index: int
    start_date: date
    end_date: date
    days_in_period: int
    month_key: str


def month_key(day: date) -> str:
    return f"{day.year:04d}-{day.month:02d}"


def parse_month_key(key: str) -> tuple[int, int]:
    """
    ``"2025-05"`` -> ``(2025, 5)``.

    Raises:
        ValueError: If the key is not ``YYYY-MM`` with a valid month.
    """
    try:
        year_str, month_str = key.split("-")
        year, month = int(year_str), int(month_str)
    except (AttributeError, ValueError) as exc:
        raise ValueError(f"Invalid month key: {key!r}") from exc
    if len(year_str) != 4 or len(month_str) != 2 or not 1 <= month <= 12:
        raise ValueError(f"Invalid month key: {key!r}")
    return year, month


def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def month_bounds(year: int, month: int) -> tuple[date, date]:
    """First and last calendar day of the month."""
    if not 1 <= month <= 12:
        raise ValueError(f"month must be 1..12, got {month}")
    return date(year, month, 1), date(year, month, days_in_month(year, month))


def days_overlapping(
    start_a: date, end_a: date, start_b: date, end_b: date
) -> int:
    """Number of days shared by two inclusive ranges (0 if disjoint)."""
    start = max(start_a, start_b)
    end = min(end_a, end_b)
    if end < start:
        return 0
    return (end - start).days + 1


def prorate(monthly_amount: Decimal, month_days: int, days: int) -> Decimal:
    """
    Day-proportional share of a monthly charge.

    Example:
        prorate(Decimal("180"), 31, 17) -> Decimal("98.71")
    """
    if days <= 0:
        return round_money(ZERO)
    if days >= month_days:
        return round_money(monthly_amount)
    return round_money(monthly_amount / Decimal(month_days) * Decimal(days))


def monthly_charge(billing_period: BillingPeriod, year: int, month: int) -> Decimal:
    """Prorated charge of an agreement for one calendar month."""
    first, last = month_bounds(year, month)
    overlap = days_overlapping(
        billing_period.start_date, billing_period.end_date, first, last
    )
    return prorate(billing_period.monthly_amount, days_in_month(year, month), overlap)


def _add_months(day: date, months: int) -> date:
    total = day.month - 1 + months
    year, month = day.year + total // 12, total % 12 + 1
    return date(year, month, min(day.day, days_in_month(year, month)))


def calculate_billing_periods(
    start: date, end: date, cycle: BillingCycle | None = None
) -> list[ScheduledPeriod]:
    """
    Split ``[start, end]`` into consecutive billing periods anchored at start.

    Month-based frequencies step by calendar months from the start date
    (clamped to month end, so a 31st start bills on the 30th/28th in short
    months); weekly and bi-weekly step by days.  The last period is cut
    short at ``end``.

    Raises:
        ValueError: If ``end`` is before ``start``.
    """
    if end < start:
        raise ValueError(f"end {end} is before start {start}")
    cycle = cycle or BillingCycle()

    periods: list[ScheduledPeriod] = []
    index = 1
    period_start = start
    while period_start <= end:
        if cycle.frequency in _MONTH_STEPS:
            next_start = _add_months(start, index * _MONTH_STEPS[cycle.frequency])
        else:
            next_start = period_start + timedelta(days=_DAY_STEPS[cycle.frequency])
        period_end = min(next_start - timedelta(days=1), end)
        periods.append(
            ScheduledPeriod(
                index=index,
                start_date=period_start,
                end_date=period_end,
                days_in_period=(period_end - period_start).days + 1,
                month_key=month_key(period_start),
            )
        )
        period_start = period_end + timedelta(days=1)
        index += 1
    return periods


def is_overdue(period: ScheduledPeriod | BillingPeriod, as_of: date, grace_days: int = 0) -> bool:
    """True once ``as_of`` is past the period end plus the grace days."""
    return as_of > period.end_date + timedelta(days=grace_days)
