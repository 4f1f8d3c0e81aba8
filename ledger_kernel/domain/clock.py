"""
Injectable time source.

Nothing in the ledger reads the wall clock directly.  ``today()`` is the
default economic date for reversals, deposit releases and reports;
``now()`` stamps ``posted_at`` and ``voided_at``.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, time, timedelta, timezone


class Clock(ABC):
    """``now()`` is timezone-aware; ``today()`` is its calendar date."""

    @abstractmethod
    def now(self) -> datetime: ...

    def today(self) -> date:
        return self.now().date()


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Clock for tests and replays.

    Time stands still until moved with ``advance``, ``advance_days``,
    ``set_time`` or ``set_date``.  Defaults to noon UTC on 2025-01-01.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._now = fixed_time or datetime(2025, 1, 1, 12, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._now

    def set_time(self, moment: datetime) -> None:
        self._now = moment

    def set_date(self, day: date) -> None:
        """Noon UTC on ``day``, so no timezone shift changes the date."""
        self._now = datetime.combine(day, time(12), tzinfo=timezone.utc)

    def advance(self, seconds: int = 1) -> None:
        self._now += timedelta(seconds=seconds)

    def advance_days(self, days: int) -> None:
        self._now += timedelta(days=days)

    def tick(self) -> datetime:
        self.advance()
        return self._now
