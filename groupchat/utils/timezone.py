"""
UTC time helpers.

All timestamps are stored and compared in UTC. SQLite drops tzinfo on the way
back, so values read from the store go through ``make_aware`` before any
comparison.
"""
from datetime import datetime, timezone


def utcnow() -> datetime:
    """Current time as an aware UTC datetime"""
    return datetime.now(timezone.utc)


def make_aware(dt: datetime) -> datetime:
    """Treat naive datetimes as UTC"""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt
