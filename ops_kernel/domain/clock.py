"""
Injectable time source.

Order dates, invoice issue dates, ledger transaction dates, audit
timestamps and maintenance-lock expiry all come from a Clock handed to the
service, never from ``datetime.now()``.  Tests pass a DeterministicClock so
invoice years, due dates and lock TTLs are reproducible.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone

# Mid-January keeps year-scoped numbering away from the year boundary
DEFAULT_TEST_TIME = datetime(2026, 1, 15, 9, 0, 0, tzinfo=timezone.utc)


class Clock(ABC):
    """``now()`` is always timezone-aware UTC."""

    @abstractmethod
    def now(self) -> datetime: ...

    def today(self) -> date:
        return self.now().date()


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """Frozen at ``start`` until ``advance()`` moves it forward."""

    def __init__(self, start: datetime | None = None):
        self._now = ensure_utc(start or DEFAULT_TEST_TIME)

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float = 1) -> datetime:
        self._now += timedelta(seconds=seconds)
        return self._now


def ensure_utc(value: datetime) -> datetime:
    """
    Attach UTC to a naive datetime, convert an aware one.

    SQLite hands timestamps back without tzinfo; comparing them with
    ``Clock.now()`` needs both sides aware.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
