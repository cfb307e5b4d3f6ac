# ashram/timeutils.py
from datetime import datetime, timedelta, timezone, date
from typing import Optional, Tuple
from zoneinfo import ZoneInfo

from .config import get_settings


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive values read back from SQLite; convert aware ones."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def local_tz() -> ZoneInfo:
    return ZoneInfo(get_settings().ashram_timezone)


def to_local(value: datetime) -> datetime:
    return as_utc(value).astimezone(local_tz())


def localize(value: datetime) -> datetime:
    """Naive datetimes are wall-clock times at the ashram."""
    if value.tzinfo is None:
        return value.replace(tzinfo=local_tz())
    return value


def local_day_bounds(day: Optional[date] = None, now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """UTC [start, end) of a calendar day in the ashram's timezone."""
    tz = local_tz()
    if day is None:
        day = (now or utcnow()).astimezone(tz).date()
    start = datetime(day.year, day.month, day.day, tzinfo=tz)
    end = start + timedelta(days=1)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)
