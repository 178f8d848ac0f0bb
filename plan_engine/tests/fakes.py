"""Shared test doubles."""

from datetime import datetime, timedelta, timezone

NOW = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable wall clock; pass as TrialClock(now_fn=fake)."""

    def __init__(self, start: datetime = NOW):
        self.current = start

    def advance(self, **delta):
        self.current = self.current + timedelta(**delta)

    def set(self, value: datetime):
        self.current = value

    def __call__(self) -> datetime:
        return self.current
