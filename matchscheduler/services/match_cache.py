"""Live collection of scheduled matches with change subscriptions"""
from typing import Callable, Dict, List, Optional, Tuple

from ..storage.database import Database
from ..storage.models import UPCOMING, ScheduledMatch
from ..utils.logger import setup_logger

logger = setup_logger(__name__)

MatchListener = Callable[[Tuple[ScheduledMatch, ...]], None]


class ScheduledMatchCache:
    """
    In-memory view of scheduled matches

    Writers push changes in with update()/remove(); every change notifies
    subscribers with a fresh immutable snapshot, so consumers never hold
    the live map.
    """

    def __init__(self, database: Optional[Database] = None):
        self.database = database
        self._matches: Dict[str, ScheduledMatch] = {}
        self._listeners: List[MatchListener] = []

    def refresh(self) -> int:
        """Reload upcoming matches from the database"""
        if self.database is None:
            return 0
        self._matches = {m.id: m for m in self.database.get_matches_by_status(UPCOMING)}
        logger.debug(f"Loaded {len(self._matches)} upcoming matches into cache")
        self._notify()
        return len(self._matches)

    def snapshot(self) -> Tuple[ScheduledMatch, ...]:
        return tuple(self._matches.values())

    def get(self, match_id: str) -> Optional[ScheduledMatch]:
        return self._matches.get(match_id)

    def update(self, match: ScheduledMatch):
        self._matches[match.id] = match
        self._notify()

    def remove(self, match_id: str):
        if self._matches.pop(match_id, None) is not None:
            self._notify()

    def clear(self):
        self._matches.clear()
        self._notify()

    def subscribe(self, listener: MatchListener) -> Callable[[], None]:
        """Register a change listener; returns a function that unregisters it"""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self):
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.error(f"Match cache listener failed: {e}", exc_info=True)
