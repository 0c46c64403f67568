from datetime import UTC, datetime


class SystemClock:
    def now_utc(self) -> datetime:
        return datetime.now(UTC)


class FixedClock:
    """Clock frozen at a given instant (dev fixtures and tests)."""

    def __init__(self, fixed: datetime) -> None:
        self._now = fixed if fixed.tzinfo else fixed.replace(tzinfo=UTC)

    def now_utc(self) -> datetime:
        return self._now
