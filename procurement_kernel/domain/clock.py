"""
Clock -- injectable time source.

Responsibility:
    Domain and service code read the current time only through a ``Clock``
    passed to their constructors, never through ``datetime.now()``.

Architecture position:
    Kernel > Domain.  ``SystemClock`` is the one place that reads wall time.

Audit relevance:
    Approval timestamps, PO issue dates, the year in document numbers and
    the month buckets of the purchase trend report all come from the clock,
    so tests pin them with ``DeterministicClock``.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone


class Clock(ABC):
    """
    Source of timezone-aware UTC timestamps.

    Contract:
        ``now()`` never returns a naive datetime.
    """

    @abstractmethod
    def now(self) -> datetime:
        ...

    def today(self) -> date:
        """UTC calendar date of ``now()``; used as PO issue date."""
        return self.now().date()


class SystemClock(Clock):

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Frozen clock for tests, starting at 2024-01-01 12:00 UTC.

    Time moves only through ``advance`` or ``set_time``; naive datetimes
    passed to ``set_time`` are taken as UTC.
    """

    START = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __init__(self, start: datetime | None = None):
        self._now = self._aware(start or self.START)

    def now(self) -> datetime:
        return self._now

    def set_time(self, moment: datetime) -> None:
        self._now = self._aware(moment)

    def advance(self, seconds: float = 1) -> datetime:
        """Move forward ``seconds`` and return the new time."""
        self._now += timedelta(seconds=seconds)
        return self._now

    @staticmethod
    def _aware(moment: datetime) -> datetime:
        if moment.tzinfo is None:
            return moment.replace(tzinfo=timezone.utc)
        return moment.astimezone(timezone.utc)
