"""
Injectable current-time capability

Week and term boundaries depend on "now"; the engine reads it through a
Clock so tests can pin any calendar position.
"""
from datetime import date, datetime, timedelta, timezone
from typing import Optional

from .constants import utc_now


class Clock:
    """Wall clock (UTC)"""

    def now(self) -> datetime:
        return utc_now()

    def today(self) -> date:
        return self.now().date()


class FixedClock(Clock):
    """Clock frozen at a given instant; can be moved forward manually."""

    def __init__(self, at: Optional[datetime] = None):
        at = at or utc_now()
        if at.tzinfo is None:
            at = at.replace(tzinfo=timezone.utc)
        self._now = at

    def now(self) -> datetime:
        return self._now

    def set(self, at: datetime) -> None:
        if at.tzinfo is None:
            at = at.replace(tzinfo=timezone.utc)
        self._now = at

    def advance(self, **delta) -> datetime:
        """advance(days=1), advance(minutes=5), ..."""
        self._now = self._now + timedelta(**delta)
        return self._now
