# backend/lib/token_core/dates.py
"""
Local calendar-date helpers.

Meter readings are taken by wall-clock day, so every conversion from a
timestamp to a calendar date, and from a date to a string, goes through
this module. Dates are never derived from a UTC rendering of a timestamp.
"""
import calendar
from datetime import date, datetime, timedelta
from typing import Optional, Tuple, Union

from zoneinfo import ZoneInfo

DateLike = Union[date, datetime]


def parse_timestamp(text: str) -> datetime:
    """
    Parse an ISO8601 timestamp, a SQLite style 'YYYY-MM-DD HH:MM:SS' or a
    bare 'YYYY-MM-DD'. A trailing 'Z' is accepted as UTC.
    """
    text = text.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


def to_local_date(value: DateLike, tz_name: Optional[str] = None) -> date:
    """
    Calendar date of a reading in the user's local timezone.

    Naive datetimes are already local wall-clock time and are used as-is.
    Aware datetimes are converted to `tz_name` (or the system timezone).
    """
    if not isinstance(value, datetime):
        return value
    if value.tzinfo is None:
        return value.date()
    if tz_name:
        return value.astimezone(ZoneInfo(tz_name)).date()
    return value.astimezone().date()


def local_today(tz_name: Optional[str] = None, now: Optional[datetime] = None) -> date:
    if now is None:
        now = datetime.now(ZoneInfo(tz_name)) if tz_name else datetime.now()
    return to_local_date(now, tz_name)


def local_now(tz_name: Optional[str] = None) -> datetime:
    """Current time, aware, in `tz_name` or the system timezone."""
    return datetime.now(ZoneInfo(tz_name)) if tz_name else datetime.now().astimezone()


def comparable_instant(value: datetime) -> datetime:
    """
    Aware datetime usable for ordering. Naive values are local wall-clock
    time, so they are pinned to the system timezone before comparing with
    aware ones.
    """
    return value if value.tzinfo is not None else value.astimezone()


def format_local_date(value: DateLike, tz_name: Optional[str] = None) -> str:
    """'YYYY-MM-DD' of the local calendar date."""
    d = to_local_date(value, tz_name)
    return f"{d.year:04d}-{d.month:02d}-{d.day:02d}"


def parse_local_date(text: str) -> date:
    return date.fromisoformat(text[:10])


def add_days(d: date, days: int) -> date:
    return d + timedelta(days=days)


def iso_week_key(d: date) -> str:
    """'YYYY-Www' using the ISO week-numbering year."""
    iso_year, iso_week, _ = d.isocalendar()
    return f"{iso_year:04d}-W{iso_week:02d}"


def week_bounds(d: date) -> Tuple[date, date]:
    """Monday and Sunday of the ISO week containing d."""
    start = d - timedelta(days=d.weekday())
    return start, start + timedelta(days=6)


def month_key(d: date) -> str:
    return f"{d.year:04d}-{d.month:02d}"


def month_bounds(year: int, month: int) -> Tuple[date, date]:
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


MONTH_NAMES = ("Jan", "Feb", "Mar", "Apr", "May", "Jun",
               "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


def month_name(month: int) -> str:
    return MONTH_NAMES[month - 1]
