"""
Clock Sources

Overdue stages are computed against "now", so every component takes its
time from a ClockSource instead of calling datetime.now() directly.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


class ClockSource(ABC):
    """Supplies the current, timezone-aware UTC time."""

    @abstractmethod
    def now(self) -> datetime:
        pass


class SystemClock(ClockSource):
    """Wall clock."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock(ClockSource):
    """
    Manually driven clock for tests and replays.

    Usage:
        clock = FixedClock(datetime(2025, 1, 1, tzinfo=timezone.utc))
        clock.advance(days=4)
    """

    def __init__(self, start: datetime):
        if start.tzinfo is None:
            raise ValueError("FixedClock requires a timezone-aware datetime")
        self._now = start

    def now(self) -> datetime:
        return self._now

    def set(self, moment: datetime) -> None:
        if moment.tzinfo is None:
            raise ValueError("FixedClock requires a timezone-aware datetime")
        self._now = moment

    def advance(self, **kwargs) -> datetime:
        """Move forward by a timedelta built from kwargs (days=, hours=, ...)."""
        self._now = self._now + timedelta(**kwargs)
        return self._now
