"""Date and time utilities for the appointment calendar.

All calendar arithmetic works on local calendar dates (``datetime.date``) and
local times of day (``datetime.time``). Nothing here converts through a UTC
timestamp, so a date never slides to the previous or next day because of the
host timezone.
"""

import calendar
from datetime import date, datetime, time, timedelta
from typing import TYPE_CHECKING, Union

import pytz

from .exceptions import ParseError

if TYPE_CHECKING:
    from ..models.appointment import TimeRange
    from ..models.calendar import WeekWindow

TimeLike = Union[str, time]
DateLike = Union[str, date, datetime]


def parse_time(value: TimeLike) -> time:
    """
    Parse a local time of day.

    Accepts ``HH:MM`` and ``HH:MM:SS`` strings (seconds are dropped) or a
    ``datetime.time``.

    Raises:
        ParseError: If the value is not a valid time of day
    """
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0)
    if not isinstance(value, str):
        raise ParseError(f"Invalid time value: {value!r}")

    parts = value.strip().split(":")
    if len(parts) not in (2, 3) or not all(p.isdigit() for p in parts):
        raise ParseError(f"Invalid time format: {value!r} (expected HH:MM)")

    hours, minutes = int(parts[0]), int(parts[1])
    if not (0 <= hours <= 23 and 0 <= minutes <= 59):
        raise ParseError(f"Time out of range: {value!r}")
    return time(hours, minutes)


def minutes_since_midnight(value: TimeLike) -> int:
    """Return the number of minutes between 00:00 and ``value``."""
    t = parse_time(value)
    return t.hour * 60 + t.minute


def parse_date(value: DateLike) -> date:
    """
    Parse a local calendar date.

    ISO datetime strings keep only their date part, so ``2024-01-07T23:30:00Z``
    is the 7th, whatever the host timezone.

    Raises:
        ParseError: If the value is not a valid date
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise ParseError(f"Invalid date value: {value!r}")
    try:
        return date.fromisoformat(value.strip()[:10])
    except ValueError as e:
        raise ParseError(f"Invalid date format: {value!r} (expected YYYY-MM-DD)") from e


def start_of_week(value: DateLike) -> date:
    """Return the Monday of the week containing ``value``."""
    d = parse_date(value)
    # date.weekday() is already Monday-first (Monday=0, Sunday=6)
    return d - timedelta(days=d.weekday())


def day_index(value: DateLike, window: "WeekWindow") -> int:
    """
    Return the Monday-first position of ``value`` inside ``window``.

    Returns:
        0 for Monday through 6 for Sunday, or -1 if the date is outside the week
    """
    diff = (parse_date(value) - window.start).days
    if 0 <= diff <= 6:
        return diff
    return -1


def duration_hours(start_time: TimeLike, end_time: TimeLike) -> float:
    """
    Return the length of ``start_time``..``end_time`` in hours.

    This is the data value: a zero-length range is reported as ``0.0``.
    Use ``display_duration_hours`` for layout.
    """
    return (minutes_since_midnight(end_time) - minutes_since_midnight(start_time)) / 60


def display_duration_hours(
    start_time: TimeLike,
    end_time: TimeLike,
    min_hours: float = 0.5,
) -> float:
    """Return the duration clamped to the smallest renderable block."""
    return max(duration_hours(start_time, end_time), min_hours)


def overlaps(a: "TimeRange", b: "TimeRange") -> bool:
    """
    Check whether two time ranges overlap.

    Ranges on different dates never overlap. An all-day range overlaps every
    range on the same date. Touching boundaries (``a.end == b.start``) do not
    overlap.
    """
    if a.date != b.date:
        return False
    if a.is_all_day or b.is_all_day:
        return True
    return not (a.end_time <= b.start_time or a.start_time >= b.end_time)


def in_range(value: DateLike, start: date, end: date) -> bool:
    """Inclusive containment test for a date range."""
    return start <= parse_date(value) <= end


def buffered_range(start: date, end: date, buffer_days: int) -> tuple[date, date]:
    """Widen ``start``..``end`` by ``buffer_days`` on both sides."""
    buffer = timedelta(days=buffer_days)
    return start - buffer, end + buffer


def month_bounds(year: int, month: int) -> tuple[date, date]:
    """Return the first and last day of a month."""
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


def iter_dates(start: date, end: date):
    """Yield every date from ``start`` to ``end`` inclusive."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def local_today(timezone_name: str = "UTC") -> date:
    """Return today's calendar date in the given timezone."""
    return datetime.now(pytz.timezone(timezone_name)).date()


def local_datetime(day: date, at: time, timezone_name: str = "UTC") -> datetime:
    """Combine a local date and time into an aware datetime."""
    tz = pytz.timezone(timezone_name)
    return tz.localize(datetime.combine(day, at))


def ensure_utc(dt: datetime) -> datetime:
    """
    Ensure datetime is in UTC.

    Args:
        dt: Datetime to convert

    Returns:
        UTC datetime
    """
    if dt.tzinfo is None:
        return pytz.utc.localize(dt)
    return dt.astimezone(pytz.utc)
