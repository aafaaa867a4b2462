"""Read-through availability cache and the single write path for slot updates"""
import asyncio
from typing import Callable, Dict, List, Optional, Tuple

from ..errors import ValidationError
from ..storage.database import SLOT_ACTIONS, Database
from ..storage.models import AvailabilityRecord
from ..utils.logger import setup_logger
from ..utils.slots import validate_slot_id
from ..utils.timezone import now_utc
from ..utils.weeks import parse_week_id

logger = setup_logger(__name__)

AvailabilityListener = Callable[[str, str], None]


class AvailabilityService:
    """
    Cache of availability records keyed by (team, week)

    Reads go to the cache first and fall through to the database. Every
    write, reload or invalidation notifies subscribers with the team and
    week that changed.
    """

    def __init__(self, database: Database, clock: Callable = now_utc):
        """
        Initialize availability service

        Args:
            database: Document store
            clock: Returns the current UTC instant
        """
        self.database = database
        self.clock = clock
        self._cache: Dict[Tuple[str, str], AvailabilityRecord] = {}
        self._listeners: List[AvailabilityListener] = []

    async def load_week_availability(self, team_id: str, week_id: str) -> AvailabilityRecord:
        """
        Load a team's availability for a week (cache-first)

        A team that never wrote anything for the week gets an empty record.
        """
        cached = self._cache.get((team_id, week_id))
        if cached is not None:
            return cached

        record = await asyncio.to_thread(self.database.get_availability, team_id, week_id)
        if record is None:
            record = AvailabilityRecord(team_id=team_id, week_id=week_id)
        self._cache[(team_id, week_id)] = record
        return record

    async def load_many(
        self, keys: List[Tuple[str, str]]
    ) -> Dict[Tuple[str, str], AvailabilityRecord]:
        """Load several (team, week) records concurrently"""
        unique = list(dict.fromkeys(keys))
        records = await asyncio.gather(
            *(self.load_week_availability(team_id, week_id) for team_id, week_id in unique)
        )
        return dict(zip(unique, records))

    def get_cached(self, team_id: str, week_id: str) -> Optional[AvailabilityRecord]:
        return self._cache.get((team_id, week_id))

    def update_cache(self, record: AvailabilityRecord):
        """Replace a cached record (e.g. from a change feed) and notify"""
        self._cache[(record.team_id, record.week_id)] = record
        self._notify(record.team_id, record.week_id)

    def invalidate(self, team_id: str, week_id: str):
        if self._cache.pop((team_id, week_id), None) is not None:
            self._notify(team_id, week_id)

    def save_slot_update(
        self, team_id: str, week_id: str, slot_id: str, user_id: str, action: str
    ) -> AvailabilityRecord:
        """
        Add or remove a user in one slot

        Args:
            team_id: Team whose record changes
            week_id: ISO week id
            slot_id: Canonical UTC slot id
            user_id: Player being added or removed
            action: "add", "remove" or "unavailable"

        Returns:
            The updated record
        """
        parse_week_id(week_id)
        validate_slot_id(slot_id)
        if action not in SLOT_ACTIONS:
            raise ValidationError(f'Action must be one of {", ".join(SLOT_ACTIONS)}')

        record = self.database.save_slot_update(
            team_id, week_id, slot_id, user_id, action, updated_at=self.clock()
        )
        logger.debug(f"Availability {action}: {user_id} {slot_id} in {team_id}_{week_id}")
        self.update_cache(record)
        return record

    def subscribe(self, listener: AvailabilityListener) -> Callable[[], None]:
        """Register a change listener; returns a function that unregisters it"""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, team_id: str, week_id: str):
        for listener in list(self._listeners):
            try:
                listener(team_id, week_id)
            except Exception as e:
                logger.error(f"Availability listener failed for {team_id}_{week_id}: {e}", exc_info=True)
