"""Date helpers shared by the report calculators.

Every calculator compares calendar days, never instants. ``to_date`` is the
single entry point that turns whatever shape a record carries (``date``,
``datetime``, ISO or SQL strings, Unix timestamps, ``{"seconds": ...}``
mappings) into a ``date`` or ``None``.
"""

from collections.abc import Mapping
from datetime import date, datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings

_MILLIS_THRESHOLD = 100_000_000_000
_STRING_FORMATS = ("%Y-%m-%d %H:%M:%S", "%Y-%m-%d %H:%M", "%d.%m.%Y", "%d/%m/%Y")


def _zone() -> ZoneInfo:
    return ZoneInfo(get_settings().timezone)


def local_today() -> date:
    return datetime.now(_zone()).date()


def _from_timestamp(value: float) -> Optional[date]:
    seconds = value / 1000 if abs(value) > _MILLIS_THRESHOLD else value
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc).astimezone(_zone()).date()
    except (OverflowError, OSError, ValueError):
        return None


def _from_datetime(value: datetime) -> date:
    if value.tzinfo is not None:
        return value.astimezone(_zone()).date()
    return value.date()


def _from_string(value: str) -> Optional[date]:
    text = value.strip()
    if not text:
        return None
    iso = text[:-1] + "+00:00" if text.endswith("Z") else text
    try:
        return _from_datetime(datetime.fromisoformat(iso))
    except ValueError:
        pass
    for fmt in _STRING_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def to_date(value: object) -> Optional[date]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return _from_datetime(value)
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float)):
        return _from_timestamp(value)
    if isinstance(value, str):
        return _from_string(value)
    if isinstance(value, Mapping):
        seconds = value.get("seconds", value.get("_seconds"))
        if isinstance(seconds, (int, float)) and not isinstance(seconds, bool):
            return _from_timestamp(seconds)
    return None


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def clamp_day(year: int, month: int, day: int) -> date:
    return date(year, month, min(day, days_in_month(year, month)))


def add_months(base: date, months: int) -> date:
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    return clamp_day(year, month, base.day)


def month_start(d: date) -> date:
    return d.replace(day=1)


def month_end(d: date) -> date:
    return clamp_day(d.year, d.month, 31)


def diff_in_days(start: object, end: object) -> int:
    start_date = to_date(start)
    end_date = to_date(end)
    if start_date is None or end_date is None:
        return 0
    return (end_date - start_date).days


def is_in_range(value: object, start: object, end: object = None) -> bool:
    """Inclusive on both ends; a missing ``end`` leaves the range open."""
    current = to_date(value)
    start_date = to_date(start)
    if current is None or start_date is None:
        return False
    end_date = to_date(end)
    if end_date is not None:
        return start_date <= current <= end_date
    return current >= start_date


def format_date_short(value: object) -> str:
    d = to_date(value)
    if d is None:
        return ""
    return d.strftime("%d/%m/%Y")


def format_days_until(value: object, today: Optional[date] = None) -> str:
    target = to_date(value)
    if target is None:
        return ""
    days = (target - (today or local_today())).days
    if days == 0:
        return "Today"
    if days == 1:
        return "Tomorrow"
    if days < 0:
        return f"{abs(days)} days ago"
    if days < 7:
        return f"In {days} days"
    if days < 30:
        weeks = days // 7
        return "In 1 week" if weeks == 1 else f"In {weeks} weeks"
    if days < 365:
        months = days // 30
        return "In 1 month" if months == 1 else f"In {months} months"
    years = days // 365
    return "In 1 year" if years == 1 else f"In {years} years"
