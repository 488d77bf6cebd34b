"""
Survey Review Hub - Clock

Injectable time source so the review service can be tested deterministically.
Timestamps are stored as ISO-8601 UTC strings.
"""

from datetime import datetime, timezone, timedelta
from typing import Optional


class SystemClock:
    """Wall-clock UTC time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def now_iso(self) -> str:
        return self.now().isoformat()


class FixedClock(SystemClock):
    """Clock frozen at a given instant; ``advance`` moves it forward."""

    def __init__(self, start: Optional[datetime] = None):
        self._now = start or datetime(2025, 1, 1, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._now

    def advance(self, **kwargs) -> datetime:
        self._now = self._now + timedelta(**kwargs)
        return self._now
