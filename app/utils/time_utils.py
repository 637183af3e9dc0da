"""
UTC helpers shared by the usage monitor, reset service and scheduler.

Every usage window boundary (hour, day, ISO week, month) is computed in UTC.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite returns them without tzinfo)"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def usage_date_key(now: datetime) -> str:
    """Calendar day key in YYYY-MM-DD format"""
    return ensure_utc(now).strftime("%Y-%m-%d")


def next_midnight(now: datetime) -> datetime:
    now = ensure_utc(now)
    return (now + timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)


def next_monday(now: datetime) -> datetime:
    """Next Monday 00:00; on a Monday this is a week away"""
    now = ensure_utc(now)
    days_until_monday = (7 - now.weekday()) % 7 or 7
    return (now + timedelta(days=days_until_monday)).replace(hour=0, minute=0, second=0, microsecond=0)


def next_month_start(now: datetime) -> datetime:
    now = ensure_utc(now)
    if now.month == 12:
        return now.replace(year=now.year + 1, month=1, day=1, hour=0, minute=0, second=0, microsecond=0)
    return now.replace(month=now.month + 1, day=1, hour=0, minute=0, second=0, microsecond=0)


def seconds_until(target: datetime, now: datetime) -> float:
    return max((ensure_utc(target) - ensure_utc(now)).total_seconds(), 0.0)
