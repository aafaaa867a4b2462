"""Sweeps that retire past matches and stale proposals"""
from datetime import datetime, timedelta
from typing import Callable, Optional

import pytz

from ..storage.database import Database
from ..storage.models import ACTIVE, UPCOMING, ScheduledMatch
from ..utils.logger import setup_logger
from ..utils.slots import SLOT_MINUTES, parse_slot_id
from ..utils.timezone import now_utc, to_utc
from .match_cache import ScheduledMatchCache

logger = setup_logger(__name__)

MATCH_BUFFER = timedelta(minutes=SLOT_MINUTES)


def match_start_utc(match: ScheduledMatch) -> datetime:
    """Midnight UTC of the scheduled date plus the slot's time of day"""
    _, hour, minute = parse_slot_id(match.blocked_slot)
    midnight = pytz.UTC.localize(datetime.combine(match.scheduled_date, datetime.min.time()))
    return midnight + timedelta(hours=hour, minutes=minute)


def is_match_past(match: ScheduledMatch, now: datetime) -> bool:
    """A match is over one slot after it starts (20:00 is past after 20:30)"""
    return to_utc(now) > match_start_utc(match) + MATCH_BUFFER


class ExpirationService:
    """Marks past matches completed and stale proposals expired"""

    def __init__(
        self,
        database: Database,
        match_cache: Optional[ScheduledMatchCache] = None,
        clock: Callable = now_utc,
    ):
        self.database = database
        self.match_cache = match_cache
        self.clock = clock

    def expire_scheduled_matches(self) -> int:
        """
        Complete every upcoming match whose slot has ended

        The status update is one batch; if it fails nothing changes and the
        next run picks the same matches up again.

        Returns:
            Number of matches marked completed
        """
        now = self.clock()
        upcoming = self.database.get_matches_by_status(UPCOMING)
        if not upcoming:
            logger.info("No upcoming matches to check")
            return 0

        past = []
        for match in upcoming:
            try:
                if is_match_past(match, now):
                    past.append(match)
            except ValueError as e:
                logger.error(f"Skipping match {match.id} with unreadable slot {match.blocked_slot!r}: {e}")

        if not past:
            logger.info(f"Checked {len(upcoming)} upcoming matches, none past")
            return 0

        completed = self.database.complete_matches([m.id for m in past], now)
        logger.info(f"Marked {completed} of {len(upcoming)} upcoming matches as completed")

        if self.match_cache is not None:
            for match in past:
                self.match_cache.remove(match.id)
        return completed

    def expire_proposals(self) -> int:
        """Expire active proposals whose week has ended"""
        now = self.clock()
        stale = [
            p for p in self.database.get_proposals_by_status(ACTIVE)
            if p.expires_at is not None and to_utc(p.expires_at) < now
        ]
        if not stale:
            logger.info("No expired proposals found")
            return 0

        expired = self.database.expire_proposals([p.id for p in stale], now)
        logger.info(f"Expired {expired} proposals")
        return expired
