"""
Clock -- injectable source of the current time.

Responsibility:
    Services never call ``datetime.now()`` or ``date.today()`` directly.
    They receive a Clock, so that lot sellability (evaluated against
    ``Clock.today()`` at allocation time) and the sale timestamp are
    reproducible in tests.

Architecture position:
    Kernel > Domain -- pure functional core.  SystemClock is the one
    sanctioned I/O boundary for time.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone

# 2024-01-01 12:00 UTC
DEFAULT_TEST_TIME = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class Clock(ABC):
    """
    Contract:
        ``now()`` returns a timezone-aware ``datetime``.  ``today()`` is the
        calendar date of ``now()`` in UTC, the date a lot's expiration is
        compared against.
    """

    @abstractmethod
    def now(self) -> datetime:
        ...

    def now_utc(self) -> datetime:
        return self.now().astimezone(timezone.utc)

    def today(self) -> date:
        return self.now_utc().date()


class SystemClock(Clock):
    """Wall-clock time in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Clock that only moves when told to.

    Concurrent sales read it from several threads; it is never advanced
    while a sale is in flight.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._current = fixed_time or DEFAULT_TEST_TIME

    def now(self) -> datetime:
        return self._current

    def advance(self, seconds: int = 1) -> None:
        self._current += timedelta(seconds=seconds)

    def advance_days(self, days: int = 1) -> None:
        """Move forward whole days, e.g. to let a lot expire."""
        self._current += timedelta(days=days)

    def tick(self) -> datetime:
        """Advance by one second and return the new time."""
        self.advance(1)
        return self._current
