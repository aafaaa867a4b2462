"""Next-run arithmetic for the periodic sweeps (all times UTC)"""
from datetime import datetime, timedelta

from .slots import SLOT_MINUTES, parse_clock, parse_day
from .timezone import to_utc


def next_half_hour_run(now: datetime, offset_minutes: int = 1) -> datetime:
    """
    Next instant that is offset_minutes past a :00 or :30 boundary

    With the default offset the sweep fires at :01 and :31, so a match
    ending on a slot boundary is picked up about a minute later.
    """
    if not 0 <= offset_minutes < SLOT_MINUTES:
        raise ValueError("offset_minutes must be between 0 and 29")
    now = to_utc(now)
    boundary = now.replace(minute=(now.minute // SLOT_MINUTES) * SLOT_MINUTES, second=0, microsecond=0)
    candidate = boundary + timedelta(minutes=offset_minutes)
    while candidate <= now:
        candidate += timedelta(minutes=SLOT_MINUTES)
    return candidate


def next_weekly_run(now: datetime, weekday: str, at: str) -> datetime:
    """
    Next occurrence of a weekday and HH:MM after now

    Args:
        now: Current instant
        weekday: Day token ('mon' .. 'sun')
        at: Time of day, 'HH:MM' or 'HHMM'
    """
    now = to_utc(now)
    hour, minute = parse_clock(at)
    days_ahead = (parse_day(weekday) - now.weekday()) % 7
    candidate = (now + timedelta(days=days_ahead)).replace(
        hour=hour, minute=minute, second=0, microsecond=0
    )
    if candidate <= now:
        candidate += timedelta(days=7)
    return candidate


def seconds_until(target: datetime, now: datetime) -> float:
    return max(0.0, (to_utc(target) - to_utc(now)).total_seconds())
