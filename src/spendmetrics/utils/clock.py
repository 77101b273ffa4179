"""Time sources.

Everything that needs "now" (default reference dates, recency windows, cache
expiry, job timing) takes a Clock so tests can pin time without patching.
"""

import time
from datetime import date, datetime, timedelta, UTC
from typing import Optional


class Clock:
    """System clock."""

    def now(self) -> datetime:
        """Current UTC time (timezone-aware)."""
        return datetime.now(UTC)

    def today(self) -> date:
        return self.now().date()

    def monotonic(self) -> float:
        """Seconds from an arbitrary origin, for measuring elapsed time."""
        return time.perf_counter()


class FixedClock(Clock):
    """Clock that only moves when told to."""

    def __init__(self, now: Optional[datetime] = None):
        if now is None:
            now = datetime(2024, 6, 20, 12, 0, tzinfo=UTC)
        elif now.tzinfo is None:
            now = now.replace(tzinfo=UTC)
        self._now = now
        self._elapsed = 0.0

    def now(self) -> datetime:
        return self._now

    def monotonic(self) -> float:
        return self._elapsed

    def advance(self, delta: timedelta | float) -> None:
        """Move time forward by a timedelta or a number of seconds."""
        if not isinstance(delta, timedelta):
            delta = timedelta(seconds=delta)
        self._now += delta
        self._elapsed += delta.total_seconds()

    def set(self, now: datetime) -> None:
        if now.tzinfo is None:
            now = now.replace(tzinfo=UTC)
        self._elapsed += (now - self._now).total_seconds()
        self._now = now
