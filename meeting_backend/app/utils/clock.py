from datetime import datetime, timezone


class Clock:
    """Time source for expiry checks."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


system_clock = Clock()
