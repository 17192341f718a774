# File: parking_billing/infrastructure/clock.py
"""
Clock collaborators

The engine never reads the system time directly; every operation asks an
injected clock. SystemClock is timezone-aware UTC, FixedClock is for tests
and replays.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Optional


class Clock(ABC):
    """Source of the current time"""

    @abstractmethod
    def now(self) -> datetime:
        pass


class SystemClock(Clock):
    """Wall clock in UTC"""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock(Clock):
    """Clock frozen at a given instant until advanced explicitly"""

    def __init__(self, instant: Optional[datetime] = None):
        self._instant = instant or datetime(2024, 1, 1, 8, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._instant

    def set(self, instant: datetime) -> None:
        self._instant = instant

    def advance(self, **kwargs) -> datetime:
        """Move forward by a timedelta given as keyword arguments (minutes=90, ...)"""
        self._instant = self._instant + timedelta(**kwargs)
        return self._instant
