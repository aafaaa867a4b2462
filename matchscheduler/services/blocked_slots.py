"""Blocked-slot lookups for double-booking prevention"""
from typing import FrozenSet, Iterable, Set

from ..storage.models import UPCOMING, ScheduledMatch
from ..utils.slots import next_slot, previous_slot


class BlockedSlotTracker:
    """
    Derives which slots a team cannot be newly matched into

    Works on a snapshot of scheduled matches and does no I/O. Build a new
    tracker whenever the match collection changes.
    """

    def __init__(self, matches: Iterable[ScheduledMatch]):
        self._matches = tuple(matches)

    def blocked_slots_for_team(
        self, team_id: str, week_id: str, include_buffer: bool = False
    ) -> Set[str]:
        """
        Slots held by upcoming matches of a team in a week

        Args:
            team_id: Team to check
            week_id: ISO week id
            include_buffer: Also block the half-hour before and after each
                match (never wrapping past the week's edges)

        Returns:
            Set of UTC slot ids
        """
        blocked = set()
        for match in self._matches:
            if (match.status == UPCOMING
                    and match.week_id == week_id
                    and team_id in match.blocked_teams):
                blocked.add(match.blocked_slot)
                if include_buffer:
                    for neighbour in (previous_slot(match.blocked_slot), next_slot(match.blocked_slot)):
                        if neighbour:
                            blocked.add(neighbour)
        return blocked

    def blocked_slots_for_pair(self, team_a_id: str, team_b_id: str, week_id: str) -> FrozenSet[str]:
        """Union of both teams' blocked slots"""
        return frozenset(
            self.blocked_slots_for_team(team_a_id, week_id)
            | self.blocked_slots_for_team(team_b_id, week_id)
        )
