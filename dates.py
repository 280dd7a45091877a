"""Calendar helpers.

Every date that enters the projection math goes through this module. Values
are pinned to local noon so day arithmetic never crosses a midnight DST
boundary, and month arithmetic clamps to the last valid day of the target
month instead of spilling into the next one.
"""

from datetime import date, datetime, time, timedelta
from typing import Optional, Union
from zoneinfo import ZoneInfo

from config import get_settings

NOON = time(12, 0)

DateLike = Union[date, datetime, str]


def _local_tz() -> ZoneInfo:
    return ZoneInfo(get_settings().timezone)


def local_today() -> date:
    return datetime.now(_local_tz()).date()


def local_now() -> datetime:
    return datetime.now(_local_tz())


def local_noon(value: DateLike) -> datetime:
    tz = _local_tz()
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(tz)
        day = value.date()
    elif isinstance(value, date):
        day = value
    elif isinstance(value, str):
        text = value.strip()[:10]
        if not text:
            raise ValueError("Empty date string")
        day = date.fromisoformat(text)
    else:
        raise TypeError(f"Unsupported date value: {value!r}")
    return datetime.combine(day, NOON, tzinfo=tz)


def to_date(value: DateLike) -> date:
    return local_noon(value).date()


def as_local(value: datetime) -> datetime:
    """Aware datetime in the configured timezone; naive values are taken as local."""
    tz = _local_tz()
    if value.tzinfo is None:
        return value.replace(tzinfo=tz)
    return value.astimezone(tz)


def at_local_time(day: date, at: time) -> datetime:
    return datetime.combine(day, at, tzinfo=_local_tz())


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def add_days(base: date, days: int) -> date:
    return base + timedelta(days=days)


def add_months(base: date, months: int, *, day: Optional[int] = None) -> date:
    desired_day = day or base.day
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    return date(year, month, min(desired_day, days_in_month(year, month)))


def month_start(value: date) -> date:
    return value.replace(day=1)


def month_end(value: date) -> date:
    return value.replace(day=days_in_month(value.year, value.month))


def months_between(start: date, end: date) -> int:
    """Whole calendar months from ``start``'s month to ``end``'s month."""
    return (end.year - start.year) * 12 + (end.month - start.month)
