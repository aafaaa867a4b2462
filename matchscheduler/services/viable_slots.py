"""Viable slots for a proposal between two specific teams"""
from dataclasses import dataclass, field
from typing import List

from ..errors import ValidationError
from ..storage.models import FULL_MATCH_THRESHOLD, MinFilter
from ..utils.logger import setup_logger
from ..utils.slots import slot_sort_key
from ..utils.weeks import parse_week_id
from .availability_service import AvailabilityService
from .blocked_slots import BlockedSlotTracker
from .comparison_engine import validate_min_filter
from .match_cache import ScheduledMatchCache

logger = setup_logger(__name__)


@dataclass
class ViableSlot:
    slot_id: str
    proposer_count: int
    opponent_count: int
    proposer_standin: bool = False
    opponent_standin: bool = False
    proposer_roster: List[str] = field(default_factory=list)
    opponent_roster: List[str] = field(default_factory=list)


class ViableSlotResolver:
    """Resolves viable slots from cached availability only (no fetching)"""

    def __init__(self, availability: AvailabilityService, match_cache: ScheduledMatchCache):
        self.availability = availability
        self.match_cache = match_cache

    def compute_viable_slots(
        self,
        proposer_team_id: str,
        opponent_team_id: str,
        week_id: str,
        min_filter: MinFilter,
        proposer_standin: bool = False,
        opponent_standin: bool = False,
    ) -> List[ViableSlot]:
        """
        Slots where both teams meet the filter and neither team is booked

        A stand-in counts as one extra player (never above 4) when testing the
        filter; reported counts and rosters stay the real ones.

        Args:
            proposer_team_id: Proposing team
            opponent_team_id: Opponent team
            week_id: ISO week id
            min_filter: Minimum headcounts
            proposer_standin: Proposer brings a stand-in
            opponent_standin: Opponent brings a stand-in

        Returns:
            Viable slots ordered Monday to Sunday, then by time of day
        """
        if not proposer_team_id or not opponent_team_id:
            raise ValidationError("Both team ids are required")
        parse_week_id(week_id)
        validate_min_filter(min_filter)

        proposer_record = self.availability.get_cached(proposer_team_id, week_id)
        opponent_record = self.availability.get_cached(opponent_team_id, week_id)
        if proposer_record is None or opponent_record is None:
            logger.warning(
                f"Viable slots cache miss for {proposer_team_id} vs {opponent_team_id} "
                f"week {week_id} (proposer={proposer_record is not None}, "
                f"opponent={opponent_record is not None}); treating as empty"
            )
        proposer_slots = proposer_record.slots if proposer_record else {}
        opponent_slots = opponent_record.slots if opponent_record else {}

        tracker = BlockedSlotTracker(self.match_cache.snapshot())
        blocked = tracker.blocked_slots_for_pair(proposer_team_id, opponent_team_id, week_id)

        proposer_extra = 1 if proposer_standin else 0
        opponent_extra = 1 if opponent_standin else 0

        all_slots = set(proposer_slots) | set(opponent_slots)
        viable = []
        blocked_count = 0
        below_filter_count = 0

        for slot_id in all_slots:
            if slot_id in blocked:
                blocked_count += 1
                continue

            proposer_players = proposer_slots.get(slot_id, [])
            opponent_players = opponent_slots.get(slot_id, [])
            effective_proposer = min(FULL_MATCH_THRESHOLD, len(proposer_players) + proposer_extra)
            effective_opponent = min(FULL_MATCH_THRESHOLD, len(opponent_players) + opponent_extra)

            if effective_proposer >= min_filter.your_team and effective_opponent >= min_filter.opponent:
                viable.append(ViableSlot(
                    slot_id=slot_id,
                    proposer_count=len(proposer_players),
                    opponent_count=len(opponent_players),
                    proposer_standin=bool(proposer_extra) and len(proposer_players) < FULL_MATCH_THRESHOLD,
                    opponent_standin=bool(opponent_extra) and len(opponent_players) < FULL_MATCH_THRESHOLD,
                    proposer_roster=list(proposer_players),
                    opponent_roster=list(opponent_players),
                ))
            else:
                below_filter_count += 1

        if not viable and all_slots:
            self._log_no_viable(
                proposer_team_id, opponent_team_id, week_id, min_filter,
                proposer_slots, opponent_slots, all_slots, blocked, blocked_count, below_filter_count,
            )

        viable.sort(key=lambda s: slot_sort_key(s.slot_id))
        return viable

    def _log_no_viable(
        self, proposer_team_id, opponent_team_id, week_id, min_filter,
        proposer_slots, opponent_slots, all_slots, blocked, blocked_count, below_filter_count,
    ):
        best = None
        best_total = -1
        for slot_id in sorted(all_slots - blocked, key=slot_sort_key):
            p = len(proposer_slots.get(slot_id, []))
            o = len(opponent_slots.get(slot_id, []))
            if p + o > best_total:
                best_total = p + o
                best = f"{slot_id} {p}v{o}"

        logger.warning(
            f"0 viable slots | {len(all_slots)} total | blocked={blocked_count} "
            f"belowFilter={below_filter_count} | filter={min_filter.your_team}v{min_filter.opponent} "
            f"| best: {best or 'none'} | teams: {proposer_team_id} vs {opponent_team_id} | week={week_id}"
        )
