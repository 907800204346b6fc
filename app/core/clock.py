from datetime import datetime, timedelta, timezone


class Clock:
    """Source of the current UTC time. Tests swap in a FrozenClock."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FrozenClock(Clock):
    def __init__(self, at: datetime):
        self.at = at

    def now(self) -> datetime:
        return self.at

    def advance(self, **delta) -> None:
        self.at = self.at + timedelta(**delta)


system_clock = Clock()
