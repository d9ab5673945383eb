"""
Staleness clock.

Pure functions of ``now`` and a pin's last access time. "Stale" is a display
hint; "auto-unpin eligible" is the harder threshold that permits removal.
"""
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

Clock = Callable[[], datetime]

STALE_THRESHOLD_DAYS = 14
AUTO_UNPIN_THRESHOLD_DAYS = 21


def system_clock() -> datetime:
    """Current UTC time."""
    return datetime.now(timezone.utc)


def idle_for(now: datetime, last_accessed_at: datetime) -> timedelta:
    return now - last_accessed_at


def days_since(now: datetime, last_accessed_at: datetime) -> int:
    """Whole days elapsed, rounded down."""
    return idle_for(now, last_accessed_at).days


def is_stale(
    now: datetime,
    last_accessed_at: datetime,
    threshold_days: int = STALE_THRESHOLD_DAYS,
) -> bool:
    return idle_for(now, last_accessed_at) >= timedelta(days=threshold_days)


def should_auto_unpin(
    now: datetime,
    last_accessed_at: datetime,
    threshold_days: int = AUTO_UNPIN_THRESHOLD_DAYS,
) -> bool:
    return idle_for(now, last_accessed_at) >= timedelta(days=threshold_days)


class ManualClock:
    """A clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, days: float = 0, **kwargs) -> datetime:
        """Move forward by ``days`` (plus any other timedelta kwargs)."""
        self.now = self.now + timedelta(days=days, **kwargs)
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now
