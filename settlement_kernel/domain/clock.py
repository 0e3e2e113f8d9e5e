"""
Injectable time source.

Lock expiry, settlement timestamps, sale windows and job scheduling all ask
a Clock for the time instead of calling ``datetime.now()``; tests pass a
DeterministicClock and move it explicitly.  Every datetime handed out is
timezone-aware UTC.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

DEFAULT_TEST_TIME = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class Clock(ABC):

    @abstractmethod
    def now(self) -> datetime:
        """Current UTC time."""


class SystemClock(Clock):

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    A clock that only moves when told to.

    ``advance`` takes seconds or a timedelta; ``tick`` moves one second and
    returns the new time.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._current = as_utc(fixed_time) if fixed_time is not None else DEFAULT_TEST_TIME

    def now(self) -> datetime:
        return self._current

    def set_time(self, time: datetime) -> None:
        self._current = as_utc(time)

    def advance(self, seconds: float | timedelta = 1) -> None:
        step = seconds if isinstance(seconds, timedelta) else timedelta(seconds=seconds)
        self._current += step

    def tick(self) -> datetime:
        self.advance(1)
        return self._current


def as_utc(value: datetime | None) -> datetime | None:
    """UTC view of ``value``; naive values (SQLite reads) are taken to be UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
