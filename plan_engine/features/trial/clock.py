"""
plan_engine/features/trial/clock.py

Calendar-day arithmetic for trial timing.

Remaining days round UP (a trial ending in 30 hours has 2 days left) while
elapsed days round DOWN (an account created 47 hours ago is 1 day old).
Banner escalation thresholds depend on this asymmetry.

All wall-clock reads go through TrialClock so tests can inject a fake time
source instead of sleeping.
"""

import math
from datetime import datetime, timedelta
from typing import Callable, Optional

from plan_engine.models.timestamps import ensure_utc, utc_now

SECONDS_PER_DAY = 24 * 60 * 60


def days_remaining(ends_at: Optional[datetime], now: datetime) -> int:
    """Whole days until ends_at, rounded up and clamped at 0. None -> 0."""
    if ends_at is None:
        return 0
    delta = (ensure_utc(ends_at) - ensure_utc(now)).total_seconds()
    return max(0, math.ceil(delta / SECONDS_PER_DAY))


def days_since(start: Optional[datetime], now: datetime) -> int:
    """Whole days elapsed since start, rounded down and clamped at 0. None -> 0."""
    if start is None:
        return 0
    delta = (ensure_utc(now) - ensure_utc(start)).total_seconds()
    return max(0, math.floor(delta / SECONDS_PER_DAY))


class TrialClock:
    """Injectable time source plus the trial date helpers bound to it."""

    def __init__(self, now_fn: Callable[[], datetime] = utc_now):
        self._now_fn = now_fn

    def now(self) -> datetime:
        return ensure_utc(self._now_fn())

    def days_remaining(self, ends_at: Optional[datetime], now: Optional[datetime] = None) -> int:
        return days_remaining(ends_at, now or self.now())

    def days_since(self, start: Optional[datetime], now: Optional[datetime] = None) -> int:
        return days_since(start, now or self.now())

    def within(self, timestamp: Optional[datetime], window: timedelta, now: Optional[datetime] = None) -> bool:
        """True when timestamp is strictly less than `window` in the past."""
        if timestamp is None:
            return False
        elapsed = (now or self.now()) - ensure_utc(timestamp)
        return elapsed < window
