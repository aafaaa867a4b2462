"""Slot identifier grammar: "{day}_{HHMM}" in UTC"""
import re
from typing import Optional, Tuple

from ..errors import ValidationError

DAYS = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")

DAY_NAMES = {
    "mon": "Monday",
    "tue": "Tuesday",
    "wed": "Wednesday",
    "thu": "Thursday",
    "fri": "Friday",
    "sat": "Saturday",
    "sun": "Sunday",
}

SLOT_MINUTES = 30
MINUTES_PER_DAY = 24 * 60
MINUTES_PER_WEEK = 7 * MINUTES_PER_DAY

# Stored slots sit on half-hour boundaries
_SLOT_PATTERN = re.compile(r"^(mon|tue|wed|thu|fri|sat|sun)_([01][0-9]|2[0-3])(00|30)$")
# Any wall-clock "HHMM" or "HH:MM"; converted ids from odd UTC offsets yield e.g. 12:15
_CLOCK_PATTERN = re.compile(r"^([01][0-9]|2[0-3]):?([0-5][0-9])$")


def parse_day(day: str) -> int:
    """Return the Monday-based index of a day token"""
    try:
        return DAYS.index(day)
    except ValueError:
        raise ValidationError(f"Unknown day token: {day!r}") from None


def parse_clock(time: str) -> Tuple[int, int]:
    """
    Parse an "HHMM" or "HH:MM" wall-clock time

    Returns:
        (hour, minute)
    """
    if not isinstance(time, str):
        raise ValidationError(f"Invalid time: {time!r}")
    match = _CLOCK_PATTERN.fullmatch(time)
    if not match:
        raise ValidationError(f"Invalid time: {time!r}")
    return int(match.group(1)), int(match.group(2))


def format_clock(hour: int, minute: int) -> str:
    return f"{hour:02d}{minute:02d}"


def is_valid_slot_id(slot_id) -> bool:
    return isinstance(slot_id, str) and _SLOT_PATTERN.match(slot_id) is not None


def validate_slot_id(slot_id) -> str:
    """Reject anything that is not a canonical half-hour UTC slot id"""
    if not is_valid_slot_id(slot_id):
        raise ValidationError(f"Invalid slot format: {slot_id!r}")
    return slot_id


def parse_slot_id(slot_id: str) -> Tuple[str, int, int]:
    """
    Split a slot id into its parts

    Accepts any valid wall-clock minute so that converted ids from
    timezones with quarter-hour offsets can still be parsed.

    Returns:
        (day, hour, minute)
    """
    if not isinstance(slot_id, str) or "_" not in slot_id:
        raise ValidationError(f"Invalid slot format: {slot_id!r}")
    day, time = slot_id.split("_", 1)
    parse_day(day)
    if len(time) != 4:
        raise ValidationError(f"Invalid slot format: {slot_id!r}")
    hour, minute = parse_clock(time)
    return day, hour, minute


def slot_start_minutes(slot_id: str) -> int:
    """Minutes from Monday 00:00 to the start of the slot"""
    day, hour, minute = parse_slot_id(slot_id)
    return DAYS.index(day) * MINUTES_PER_DAY + hour * 60 + minute


def slot_from_week_minutes(total: int) -> str:
    """Inverse of slot_start_minutes for 0 <= total < MINUTES_PER_WEEK"""
    day_index, rest = divmod(total, MINUTES_PER_DAY)
    return f"{DAYS[day_index]}_{format_clock(*divmod(rest, 60))}"


def slot_sort_key(slot_id: str) -> Tuple[int, int]:
    """Order by day of week (Monday first), then by time of day"""
    day, hour, minute = parse_slot_id(slot_id)
    return DAYS.index(day), hour * 60 + minute


def next_slot(slot_id: str) -> Optional[str]:
    """The following half-hour slot, or None past Sunday 23:30"""
    total = slot_start_minutes(slot_id) + SLOT_MINUTES
    if total >= MINUTES_PER_WEEK:
        return None
    return slot_from_week_minutes(total)


def previous_slot(slot_id: str) -> Optional[str]:
    """The preceding half-hour slot, or None before Monday 00:00"""
    total = slot_start_minutes(slot_id) - SLOT_MINUTES
    if total < 0:
        return None
    return slot_from_week_minutes(total)
