"""
ISO-8601 week arithmetic

Week 1 is the week containing the year's first Thursday. Week ids use the
format "YYYY-WW" (ISO week-year, zero-padded ISO week number). All functions
work on UTC calendar dates.
"""
import re
from datetime import date, datetime, time, timedelta
from typing import List, Tuple, Union

import pytz

from ..errors import ValidationError
from .slots import DAYS, parse_slot_id

_WEEK_ID_PATTERN = re.compile(r"^(\d{4})-(\d{2})$")

DateLike = Union[date, datetime]


def _utc_date(value: DateLike) -> date:
    """Calendar date in UTC; naive datetimes are taken as UTC"""
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(pytz.UTC)
        return value.date()
    return value


def _thursday_of(value: DateLike) -> date:
    d = _utc_date(value)
    return d + timedelta(days=3 - d.weekday())


def iso_week_number(value: DateLike) -> int:
    """ISO week number (1-53) of a date"""
    thursday = _thursday_of(value)
    return (thursday.timetuple().tm_yday - 1) // 7 + 1


def iso_week_year(value: DateLike) -> int:
    """ISO week-year of a date; differs from the calendar year near January 1"""
    return _thursday_of(value).year


def iso_weeks_in_year(year: int) -> int:
    """53 when January 1 or December 31 falls on a Thursday, otherwise 52"""
    if date(year, 1, 1).weekday() == 3 or date(year, 12, 31).weekday() == 3:
        return 53
    return 52


def format_week_id(year: int, week_number: int) -> str:
    return f"{year:04d}-{week_number:02d}"


def parse_week_id(week_id: str) -> Tuple[int, int]:
    """
    Parse and validate a week id

    Args:
        week_id: e.g. "2026-07"

    Returns:
        (iso_year, week_number)

    Raises:
        ValidationError: malformed id or week number outside the year's range
    """
    match = _WEEK_ID_PATTERN.match(week_id) if isinstance(week_id, str) else None
    if not match:
        raise ValidationError(f"Invalid week format: {week_id!r}. Use YYYY-WW")
    year, week_number = int(match.group(1)), int(match.group(2))
    if not 1 <= week_number <= iso_weeks_in_year(year):
        raise ValidationError(f"Week {week_number} does not exist in {year}")
    return year, week_number


def week_id_for(value: DateLike) -> str:
    return format_week_id(iso_week_year(value), iso_week_number(value))


def monday_of_week(week_id: str) -> date:
    """
    Monday (UTC date) of a week

    January 4 is always in week 1, so week 1's Monday is the Monday on or
    before January 4.
    """
    year, week_number = parse_week_id(week_id)
    jan4 = date(year, 1, 4)
    week1_monday = jan4 - timedelta(days=jan4.weekday())
    return week1_monday + timedelta(weeks=week_number - 1)


def shift_week(week_id: str, weeks: int) -> str:
    """Move a week id forward (or back) across year boundaries"""
    return week_id_for(monday_of_week(week_id) + timedelta(weeks=weeks))


def current_week_id(now: datetime) -> str:
    return week_id_for(now)


def next_week_id(now: datetime) -> str:
    return week_id_for(now + timedelta(days=7))


def visible_weeks(now: datetime) -> List[str]:
    """The current ISO week and the one after it"""
    current = current_week_id(now)
    return [current, shift_week(current, 1)]


def week_index(week_id: str) -> int:
    """Monotonic index of a week, usable for differences and ordering"""
    return monday_of_week(week_id).toordinal() // 7


def compare_week_ids(a: str, b: str) -> int:
    """-1, 0 or 1 as week a is before, equal to or after week b"""
    ia, ib = week_index(a), week_index(b)
    return (ia > ib) - (ia < ib)


def is_within_week_range(week_id: str, now: datetime, max_weeks_ahead: int = 4) -> bool:
    """True if week_id is the current week or at most max_weeks_ahead weeks later"""
    delta = week_index(week_id) - week_index(current_week_id(now))
    return 0 <= delta <= max_weeks_ahead


def week_expires_at(week_id: str) -> datetime:
    """Sunday 23:59:59.999 UTC of the week"""
    sunday = monday_of_week(week_id) + timedelta(days=6)
    return pytz.UTC.localize(datetime.combine(sunday, time(23, 59, 59, 999000)))


def scheduled_date(week_id: str, slot_id: str) -> date:
    """
    UTC calendar date a slot falls on within a week

    E.g. week "2026-05", slot "wed_2000" -> 2026-01-28
    """
    day, _, _ = parse_slot_id(slot_id)
    return monday_of_week(week_id) + timedelta(days=DAYS.index(day))
