"""Date-key, time-of-day and booking-window helpers.

Date-keys are zero-padded ``YYYY-MM-DD`` strings so that lexicographic order
equals chronological order; they are used both as map keys inside template
documents and as comparison keys. Times of day are ``HH:MM`` 24-hour strings.
Weekdays are numbered 1=Monday..7=Sunday, which is ``date.isoweekday()``.
"""

import calendar
import re
from collections.abc import Iterator
from datetime import date, datetime, time, timedelta, tzinfo

from src.studio.errors import InvalidInputError

_DATE_KEY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_TIME_RE = re.compile(r"^(\d{2}):(\d{2})$")

WEEKDAY_NAMES = {
    1: "Monday",
    2: "Tuesday",
    3: "Wednesday",
    4: "Thursday",
    5: "Friday",
    6: "Saturday",
    7: "Sunday",
}


def date_key(value: date | datetime) -> str:
    """Format a date as a canonical ``YYYY-MM-DD`` key."""
    return f"{value.year:04d}-{value.month:02d}-{value.day:02d}"


def parse_date_key(key: str) -> date:
    """Parse a canonical date-key.

    Raises:
        InvalidInputError: If the key is not a zero-padded ``YYYY-MM-DD`` date.
    """
    if not isinstance(key, str) or not _DATE_KEY_RE.match(key):
        raise InvalidInputError(f"Invalid date key {key!r}", field="date")
    try:
        return date.fromisoformat(key)
    except ValueError as e:
        raise InvalidInputError(f"Invalid date key {key!r}", field="date") from e


def is_date_key(key: object) -> bool:
    try:
        parse_date_key(key)  # type: ignore[arg-type]
    except InvalidInputError:
        return False
    return True


def to_date(value: date | datetime | str) -> date:
    """Normalise a date, datetime or date-key to a ``date``."""
    if isinstance(value, str):
        return parse_date_key(value)
    if isinstance(value, datetime):
        return value.date()
    return value


def parse_time(value: str) -> time:
    """Parse an ``HH:MM`` 24-hour time string.

    Raises:
        InvalidInputError: If the string is not a valid zero-padded time.
    """
    match = _TIME_RE.match(value) if isinstance(value, str) else None
    if not match:
        raise InvalidInputError(f"Invalid time {value!r}, expected HH:MM", field="start_time")
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        raise InvalidInputError(f"Invalid time {value!r}, expected HH:MM", field="start_time")
    return time(hours, minutes)


def minutes_since_midnight(value: str) -> int:
    parsed = parse_time(value)
    return parsed.hour * 60 + parsed.minute


def format_minutes(total: int) -> str:
    """Render minutes-since-midnight as ``HH:MM`` (wrapping past midnight)."""
    total %= 24 * 60
    return f"{total // 60:02d}:{total % 60:02d}"


def intervals_overlap(a_start: int, a_end: int, b_start: int, b_end: int) -> bool:
    """Half-open interval overlap: touching boundaries do not overlap."""
    return a_start < b_end and a_end > b_start


def occurrence_start(on: date, start_time: str, tz: tzinfo) -> datetime:
    """Start instant of a class on a given date, in the studio's zone."""
    return datetime.combine(on, parse_time(start_time), tzinfo=tz)


def next_occurrence_date(day_of_week: int, start_time: str, now: datetime) -> date:
    """Earliest date on or after today that falls on ``day_of_week``.

    If that date is today and the start time has already passed, the next
    week's date is returned instead.

    Args:
        day_of_week: 1=Monday..7=Sunday.
        start_time: ``HH:MM`` class start.
        now: Current instant, timezone-aware in the studio's zone.
    """
    today = now.date()
    diff = day_of_week - today.isoweekday()
    if diff < 0:
        diff += 7
    elif diff == 0 and now > occurrence_start(today, start_time, now.tzinfo):
        diff = 7
    return today + timedelta(days=diff)


def booking_window_opens(
    on: date, tz: tzinfo, days_before: int = 2, open_hour: int = 9
) -> datetime:
    """Instant at which students may start booking the occurrence on ``on``."""
    return datetime.combine(on - timedelta(days=days_before), time(open_hour), tzinfo=tz)


def is_too_early(
    on: date, now: datetime, days_before: int = 2, open_hour: int = 9
) -> bool:
    return now < booking_window_opens(on, now.tzinfo, days_before, open_hour)


def subtract_months(value: date, months: int) -> date:
    """Go back ``months`` calendar months, clamping to the month's last day."""
    month_index = value.year * 12 + (value.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def last_month_range(today: date) -> tuple[date, date]:
    """First and last day of the calendar month before ``today``."""
    first_of_this_month = today.replace(day=1)
    last_day = first_of_this_month - timedelta(days=1)
    return last_day.replace(day=1), last_day


def iter_dates(start: date, end: date) -> Iterator[date]:
    """Yield every date in the closed range [start, end]."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)
