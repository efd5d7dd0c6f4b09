"""
Time helpers.

Timestamps are stored as naive UTC (matching the ``DateTime`` columns). Trip
days and the times shown to passengers are in Ethiopian local time.
"""
from datetime import date, datetime, time, timedelta, timezone

from sms_bot.core.config import settings


def utcnow() -> datetime:
    """Current time as naive UTC"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def local_offset() -> timedelta:
    return timedelta(hours=settings.LOCAL_UTC_OFFSET_HOURS)


def to_local(value: datetime) -> datetime:
    """Naive UTC -> naive local time"""
    return value + local_offset()


def local_today(now: datetime | None = None) -> date:
    return to_local(now or utcnow()).date()


def local_day_bounds_utc(day: date) -> tuple[datetime, datetime]:
    """Return the [start, end) naive-UTC window covering one local calendar day"""
    start_local = datetime.combine(day, time.min)
    start_utc = start_local - local_offset()
    return start_utc, start_utc + timedelta(days=1)
