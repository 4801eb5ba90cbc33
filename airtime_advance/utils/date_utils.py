"""Date manipulation utilities"""

from datetime import datetime, timedelta, timezone

SECONDS_PER_DAY = 24 * 60 * 60


def utcnow() -> datetime:
    """Timezone-aware current UTC time"""
    return datetime.now(timezone.utc)


def seconds_between(earlier: datetime, later: datetime) -> float:
    return (later - earlier).total_seconds()


def whole_days_between(earlier: datetime, later: datetime) -> int:
    """Full days elapsed, never negative"""
    return max(0, int(seconds_between(earlier, later) // SECONDS_PER_DAY))


def add_seconds(moment: datetime, seconds: float) -> datetime:
    return moment + timedelta(seconds=seconds)
