"""Timezone conversion between a viewer's local grid and canonical UTC slots"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, FrozenSet, Iterable, List, Optional

import pytz

from ..errors import ValidationError
from .slots import (
    DAY_NAMES,
    DAYS,
    MINUTES_PER_DAY,
    MINUTES_PER_WEEK,
    SLOT_MINUTES,
    format_clock,
    parse_clock,
    parse_day,
    parse_slot_id,
    slot_from_week_minutes,
)

# The grid rows are EU evening slots anchored to this timezone; a viewer's
# own timezone only changes the labels, not which real-world slots are shown.
BASE_TIMEZONE = "Europe/Berlin"

DISPLAY_TIME_SLOTS = (
    "1800", "1830", "1900", "1930", "2000",
    "2030", "2100", "2130", "2200", "2230", "2300",
)
DEFAULT_HIDDEN_TIME_SLOTS = ("1800", "1830", "1900")
MIN_VISIBLE_TIME_SLOTS = 4
ALL_HALF_HOUR_SLOTS = tuple(
    format_clock(hour, minute) for hour in range(24) for minute in (0, 30)
)


def to_utc(dt: datetime, tz: Optional[str] = None) -> datetime:
    """
    Convert a datetime to an aware UTC datetime.

    Args:
        dt: Datetime object (naive or timezone-aware)
        tz: Optional timezone string (e.g., 'America/New_York')
            If provided and dt is naive, dt is assumed to be in that timezone

    Returns:
        Datetime object in UTC
    """
    if dt.tzinfo is None:
        if tz:
            dt = get_timezone(tz).localize(dt)
        else:
            dt = pytz.UTC.localize(dt)

    return dt.astimezone(pytz.UTC)


def now_utc() -> datetime:
    """Get current UTC time as an aware datetime"""
    return datetime.now(pytz.UTC)


def get_timezone(name: str):
    try:
        return pytz.timezone(name)
    except pytz.UnknownTimeZoneError:
        raise ValidationError(f"Unknown timezone: {name!r}") from None


def offset_minutes(timezone: str, reference: Optional[datetime] = None) -> int:
    """
    UTC offset of a timezone at an instant, in minutes east of UTC

    DST is taken from the instant itself, so a week several months ahead
    gets that week's offset rather than today's.

    Args:
        timezone: IANA timezone name
        reference: Instant to evaluate at (naive means UTC); defaults to now
    """
    tz = get_timezone(timezone)
    instant = to_utc(reference) if reference is not None else now_utc()
    return int(instant.astimezone(tz).utcoffset().total_seconds() // 60)


@dataclass(frozen=True)
class SlotPosition:
    """A (day, HHMM) position plus how many weeks the conversion crossed"""
    day: str
    time: str
    week_offset: int = 0

    @property
    def slot_id(self) -> str:
        return f"{self.day}_{self.time}"

    @property
    def display_time(self) -> str:
        return f"{self.time[:2]}:{self.time[2:]}"


def _shift(day: str, time: str, minutes: int) -> SlotPosition:
    hour, minute = parse_clock(time)
    total = parse_day(day) * MINUTES_PER_DAY + hour * 60 + minute + minutes
    week_offset, total = divmod(total, MINUTES_PER_WEEK)
    wrapped = slot_from_week_minutes(total)
    return SlotPosition(wrapped[:3], wrapped[4:], week_offset)


def local_to_utc_slot(
    day: str, time: str, timezone: str, reference: Optional[datetime] = None
) -> SlotPosition:
    """
    Convert a viewer's local (day, time) to the canonical UTC slot.

    Wraps within the week (EST Monday 19:00 -> UTC tue_0000) and across it
    (EST Sunday 21:00 -> UTC mon_0200 with week_offset=1).

    Args:
        day: Local day token ('mon' .. 'sun')
        time: Local time, 'HHMM' or 'HH:MM'
        timezone: Viewer's IANA timezone
        reference: Instant whose UTC offset applies (DST); defaults to now

    Raises:
        ValidationError: unknown day, malformed time, or a time off the
            half-hour grid
    """
    parse_day(day)
    _, minute = parse_clock(time)
    if minute % SLOT_MINUTES:
        raise ValidationError(f"Local time must be on a half-hour boundary: {time!r}")
    return _shift(day, time, -offset_minutes(timezone, reference))


def utc_to_local_slot(
    slot_id: str, timezone: str, reference: Optional[datetime] = None
) -> SlotPosition:
    """Exact inverse of local_to_utc_slot for the same timezone and reference"""
    day, hour, minute = parse_slot_id(slot_id)
    return _shift(day, format_clock(hour, minute), offset_minutes(timezone, reference))


@dataclass(frozen=True)
class SlotLabel:
    day_label: str
    time_label: str

    @property
    def full_label(self) -> str:
        return f"{self.day_label} at {self.time_label}"


def format_slot_for_display(
    slot_id: str, timezone: str, reference: Optional[datetime] = None
) -> SlotLabel:
    local = utc_to_local_slot(slot_id, timezone, reference)
    return SlotLabel(DAY_NAMES[local.day], local.display_time)


def base_to_local_display(
    base_time: str,
    timezone: str,
    reference: Optional[datetime] = None,
    base_timezone: str = BASE_TIMEZONE,
) -> str:
    """Label a base-timezone grid row in the viewer's local time, e.g. '2000' -> '14:00' for New York"""
    net = offset_minutes(timezone, reference) - offset_minutes(base_timezone, reference)
    hour, minute = parse_clock(base_time)
    total = (hour * 60 + minute + net) % MINUTES_PER_DAY
    return "{:02d}:{:02d}".format(*divmod(total, 60))


def timezone_label(timezone: str, reference: Optional[datetime] = None) -> str:
    """Short label such as 'CET (UTC+1)' or 'IST (UTC+5:30)'"""
    tz = get_timezone(timezone)
    instant = to_utc(reference) if reference is not None else now_utc()
    abbreviation = instant.astimezone(tz).tzname() or timezone
    offset = offset_minutes(timezone, instant)
    sign = "+" if offset >= 0 else "-"
    hours, minutes = divmod(abs(offset), 60)
    suffix = f"{hours}:{minutes:02d}" if minutes else f"{hours}"
    return f"{abbreviation} (UTC{sign}{suffix})"


@dataclass
class GridLayout:
    """Which base-timezone rows the availability grid shows"""
    hidden_time_slots: FrozenSet[str] = field(
        default_factory=lambda: frozenset(DEFAULT_HIDDEN_TIME_SLOTS)
    )
    extra_time_slots: FrozenSet[str] = field(default_factory=frozenset)

    def set_hidden_time_slots(self, hidden: Iterable[str]) -> bool:
        """Hide base rows; refused when fewer than MIN_VISIBLE_TIME_SLOTS would remain"""
        candidate = frozenset(s for s in hidden if s in DISPLAY_TIME_SLOTS)
        if len(DISPLAY_TIME_SLOTS) - len(candidate) < MIN_VISIBLE_TIME_SLOTS:
            return False
        self.hidden_time_slots = candidate
        return True

    def set_extra_time_slots(self, extra: Iterable[str]) -> None:
        # Invalid half-hours are dropped silently
        self.extra_time_slots = frozenset(s for s in extra if s in ALL_HALF_HOUR_SLOTS)

    def visible_time_slots(self) -> List[str]:
        rows = [s for s in DISPLAY_TIME_SLOTS if s not in self.hidden_time_slots]
        rows.extend(s for s in self.extra_time_slots if s not in DISPLAY_TIME_SLOTS)
        return sorted(rows)


def build_grid_to_utc_map(
    timezone: str = BASE_TIMEZONE,
    reference: Optional[datetime] = None,
    time_slots: Optional[Iterable[str]] = None,
) -> Dict[str, str]:
    """
    Map every grid cell ("mon_2000" in the grid's timezone) to its UTC slot id

    Args:
        timezone: Timezone the grid rows are expressed in
        reference: Instant whose UTC offset applies (DST)
        time_slots: Grid rows; defaults to the full base range
    """
    rows = list(time_slots) if time_slots is not None else list(DISPLAY_TIME_SLOTS)
    offset = offset_minutes(timezone, reference)
    mapping = {}
    for day in DAYS:
        for time in rows:
            mapping[f"{day}_{time}"] = _shift(day, time, -offset).slot_id
    return mapping


def build_utc_to_grid_map(
    timezone: str = BASE_TIMEZONE,
    reference: Optional[datetime] = None,
    time_slots: Optional[Iterable[str]] = None,
) -> Dict[str, str]:
    """Reverse of build_grid_to_utc_map: UTC slot id -> grid cell"""
    return {
        utc: cell
        for cell, utc in build_grid_to_utc_map(timezone, reference, time_slots).items()
    }
