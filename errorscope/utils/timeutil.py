"""
Datetime helpers.

All timestamps are stored as naive UTC. Aware datetimes coming from callers
are converted to UTC and stripped of tzinfo before they touch the database.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    """Current time as naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def floor_to_granularity(value: datetime, granularity: str) -> datetime:
    """Truncate a timestamp to the start of its hour or day bucket."""
    if granularity == "day":
        return value.replace(hour=0, minute=0, second=0, microsecond=0)
    return value.replace(minute=0, second=0, microsecond=0)


def granularity_delta(granularity: str) -> timedelta:
    return timedelta(days=1) if granularity == "day" else timedelta(hours=1)
