"""Date manipulation utilities"""

from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
    """Naive UTC timestamp; every persisted datetime uses this convention"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def days_between(earlier: datetime, later: datetime) -> int:
    """Whole days elapsed, floored"""
    return (later - earlier) // timedelta(days=1)
