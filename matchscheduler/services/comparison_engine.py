"""Cross-team availability comparison"""
import asyncio
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from ..errors import ValidationError
from ..storage.models import FULL_MATCH_THRESHOLD, AvailabilityRecord, MinFilter, RosterPlayer, Team
from ..utils.logger import setup_logger
from ..utils.timezone import now_utc
from ..utils.weeks import current_week_id, parse_week_id, shift_week
from .availability_service import AvailabilityService
from .blocked_slots import BlockedSlotTracker
from .match_cache import ScheduledMatchCache
from .team_service import TeamService

logger = setup_logger(__name__)

MAX_FILTER = 4

SlotKey = Tuple[str, str]  # (week_id, slot_id)


def validate_min_filter(min_filter: MinFilter) -> MinFilter:
    """Reject headcount filters outside 1..4"""
    for name in ("your_team", "opponent"):
        value = getattr(min_filter, name)
        if isinstance(value, bool) or not isinstance(value, int) or not 1 <= value <= MAX_FILTER:
            raise ValidationError(f"min_filter.{name} must be between 1 and {MAX_FILTER}")
    return min_filter


@dataclass
class OpponentMatch:
    """One opponent that qualifies for a slot"""
    team_id: str
    team_tag: str
    team_name: str
    leader_id: Optional[str]
    hide_roster_names: bool
    available_count: int
    available_players: List[RosterPlayer] = field(default_factory=list)
    unavailable_players: List[RosterPlayer] = field(default_factory=list)


@dataclass
class SlotMatchInfo:
    has_match: bool = False
    is_full_match: bool = False
    matches: List[OpponentMatch] = field(default_factory=list)


@dataclass
class UserTeamInfo:
    team_id: str
    team_tag: str
    team_name: str
    leader_id: Optional[str]
    available_players: List[RosterPlayer] = field(default_factory=list)
    unavailable_players: List[RosterPlayer] = field(default_factory=list)


@dataclass
class ComparisonResult:
    matches: Dict[SlotKey, List[OpponentMatch]] = field(default_factory=dict)
    user_counts: Dict[SlotKey, int] = field(default_factory=dict)


@dataclass
class ComparisonState:
    active: bool
    user_team_id: Optional[str]
    opponent_team_ids: List[str]
    weeks: List[str]
    filters: MinFilter
    matches: Dict[SlotKey, List[OpponentMatch]]


def _split_roster(roster: List[RosterPlayer], available_ids: List[str]):
    available = [p for p in roster if p.user_id in available_ids]
    unavailable = [p for p in roster if p.user_id not in available_ids]
    return available, unavailable


def _anonymized_roster(roster: List[RosterPlayer], available_ids: List[str]):
    available = [
        RosterPlayer(user_id=f"anon-{i}", anonymous=True) for i in range(len(available_ids))
    ]
    missing = [p for p in roster if p.user_id not in available_ids]
    unavailable = [
        RosterPlayer(user_id=f"anon-u-{i}", anonymous=True) for i in range(len(missing))
    ]
    return available, unavailable


def compute_matches(
    user_team_id: str,
    opponents: Iterable[Team],
    weeks: Iterable[str],
    records: Dict[SlotKey, AvailabilityRecord],
    filters: MinFilter,
    tracker: BlockedSlotTracker,
) -> ComparisonResult:
    """
    Find the slots where the user's team and each opponent both meet the filter

    Args:
        user_team_id: The comparing team
        opponents: Opponent teams (the user's own team is ignored if present)
        weeks: Week ids to compare
        records: Availability keyed by (team_id, week_id); missing means empty
        filters: Minimum headcounts for each side
        tracker: Blocked slots of the current match snapshot

    Returns:
        Candidate matches keyed by (week_id, slot_id) plus the user's headcounts
    """
    result = ComparisonResult()
    opponents = [team for team in opponents if team.id != user_team_id]

    for week_id in weeks:
        user_record = records.get((user_team_id, week_id))
        user_slots = user_record.slots if user_record else {}

        for slot_id, players in user_slots.items():
            if players:
                result.user_counts[(week_id, slot_id)] = len(players)

        user_blocked = tracker.blocked_slots_for_team(user_team_id, week_id)

        for opponent in opponents:
            if opponent.hide_from_comparison:
                continue

            opponent_record = records.get((opponent.id, week_id))
            opponent_slots = opponent_record.slots if opponent_record else {}
            blocked = user_blocked | tracker.blocked_slots_for_team(opponent.id, week_id)

            for slot_id in set(user_slots) | set(opponent_slots):
                if slot_id in blocked:
                    continue

                user_count = len(user_slots.get(slot_id, []))
                opponent_players = opponent_slots.get(slot_id, [])
                if user_count < filters.your_team or len(opponent_players) < filters.opponent:
                    continue

                if opponent.hide_roster_names:
                    available, unavailable = _anonymized_roster(opponent.roster, opponent_players)
                else:
                    available, unavailable = _split_roster(opponent.roster, opponent_players)

                result.matches.setdefault((week_id, slot_id), []).append(OpponentMatch(
                    team_id=opponent.id,
                    team_tag=opponent.tag,
                    team_name=opponent.name,
                    leader_id=opponent.leader_id,
                    hide_roster_names=opponent.hide_roster_names,
                    available_count=len(opponent_players),
                    available_players=available,
                    unavailable_players=unavailable,
                ))

    return result


def slot_match_info(result: ComparisonResult, week_id: str, slot_id: str) -> SlotMatchInfo:
    """Match info of one slot, including full-match detection"""
    matches = result.matches.get((week_id, slot_id), [])
    if not matches:
        return SlotMatchInfo()

    user_count = result.user_counts.get((week_id, slot_id), 0)
    is_full = user_count >= FULL_MATCH_THRESHOLD and any(
        m.available_count >= FULL_MATCH_THRESHOLD for m in matches
    )
    return SlotMatchInfo(has_match=True, is_full_match=is_full, matches=list(matches))


ComparisonListener = Callable[[ComparisonState], None]


class ComparisonEngine:
    """
    Stateful comparison between one team and a set of opponents

    Recomputes in full whenever the filters, the opponents, the anchor week,
    the scheduled matches or a relevant availability record change.
    """

    def __init__(
        self,
        availability: AvailabilityService,
        teams: TeamService,
        match_cache: ScheduledMatchCache,
        clock: Callable = now_utc,
    ):
        self.availability = availability
        self.teams = teams
        self.match_cache = match_cache
        self.clock = clock

        self._active = False
        self._user_team_id: Optional[str] = None
        self._opponent_team_ids: List[str] = []
        self._filters = MinFilter()
        self._anchor_week: Optional[str] = None
        self._result = ComparisonResult()
        self._listeners: List[ComparisonListener] = []
        self._pending_refresh: Optional[asyncio.Task] = None

        self._unsubscribers = [
            match_cache.subscribe(self._on_matches_changed),
            availability.subscribe(self._on_availability_changed),
        ]

    @property
    def active(self) -> bool:
        return self._active

    def visible_weeks(self) -> List[str]:
        """The anchor week (current ISO week by default) and the one after it"""
        anchor = self._anchor_week or current_week_id(self.clock())
        return [anchor, shift_week(anchor, 1)]

    async def start_comparison(
        self,
        user_team_id: str,
        opponent_team_ids: List[str],
        filters: Optional[MinFilter] = None,
    ) -> ComparisonState:
        """
        Start comparing a team against opponents

        Args:
            user_team_id: The comparing team
            opponent_team_ids: Teams to compare against
            filters: Minimum headcounts (defaults to 1 and 1)

        Returns:
            The state after the first computation
        """
        self._filters = validate_min_filter(filters or MinFilter())
        self._user_team_id = user_team_id
        self._opponent_team_ids = [t for t in dict.fromkeys(opponent_team_ids) if t != user_team_id]
        self._active = True
        logger.info(f"Comparison started: {user_team_id} vs {len(self._opponent_team_ids)} opponents")
        await self.refresh()
        return self.get_comparison_state()

    def end_comparison(self):
        self._active = False
        self._user_team_id = None
        self._opponent_team_ids = []
        self._result = ComparisonResult()
        self._notify()

    def close(self):
        """End any comparison and detach from the match and availability feeds"""
        if self._active:
            self.end_comparison()
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        if self._pending_refresh is not None and not self._pending_refresh.done():
            self._pending_refresh.cancel()
        self._pending_refresh = None
        self._listeners.clear()

    async def refresh(self):
        """Load every needed availability record concurrently, then recompute"""
        if not self._active:
            return
        team_ids = [self._user_team_id] + self._opponent_team_ids
        keys = [(team_id, week_id) for week_id in self.visible_weeks() for team_id in team_ids]
        await self.availability.load_many(keys)
        self.recompute_from_cache()

    def recompute_from_cache(self):
        """Recompute from cached availability only (missing records count as empty)"""
        if not self._active:
            return

        weeks = self.visible_weeks()
        records = {}
        for week_id in weeks:
            for team_id in [self._user_team_id] + self._opponent_team_ids:
                record = self.availability.get_cached(team_id, week_id)
                if record is not None:
                    records[(team_id, week_id)] = record

        opponents = []
        for team_id in self._opponent_team_ids:
            team = self.teams.get_team(team_id)
            opponents.append(team if team is not None else Team(id=team_id))

        self._result = compute_matches(
            self._user_team_id,
            opponents,
            weeks,
            records,
            self._filters,
            BlockedSlotTracker(self.match_cache.snapshot()),
        )
        logger.debug(f"Comparison recomputed: {len(self._result.matches)} matching slots")
        self._notify()

    def set_filters(self, filters: MinFilter):
        self._filters = validate_min_filter(filters)
        self.recompute_from_cache()

    async def set_opponents(self, opponent_team_ids: List[str]):
        self._opponent_team_ids = [
            t for t in dict.fromkeys(opponent_team_ids) if t != self._user_team_id
        ]
        await self.refresh()

    async def set_anchor_week(self, week_id: Optional[str]):
        """Navigate the two-week window; None returns to the current week"""
        if week_id is not None:
            parse_week_id(week_id)
        self._anchor_week = week_id
        await self.refresh()

    def get_slot_match_info(self, week_id: str, slot_id: str) -> SlotMatchInfo:
        if not self._active:
            return SlotMatchInfo()
        return slot_match_info(self._result, week_id, slot_id)

    def get_user_team_info(self, week_id: str, slot_id: str) -> Optional[UserTeamInfo]:
        """The user's own roster split for a slot, or None if nobody is available"""
        if not self._active or not self._result.user_counts.get((week_id, slot_id)):
            return None
        team = self.teams.get_team(self._user_team_id)
        if team is None:
            return None

        record = self.availability.get_cached(self._user_team_id, week_id)
        available_ids = record.players_in(slot_id) if record else []
        available, unavailable = _split_roster(team.roster, available_ids)
        return UserTeamInfo(
            team_id=team.id,
            team_tag=team.tag,
            team_name=team.name,
            leader_id=team.leader_id,
            available_players=available,
            unavailable_players=unavailable,
        )

    def get_comparison_state(self) -> ComparisonState:
        return ComparisonState(
            active=self._active,
            user_team_id=self._user_team_id,
            opponent_team_ids=list(self._opponent_team_ids),
            weeks=self.visible_weeks() if self._active else [],
            filters=replace(self._filters),
            matches={key: list(value) for key, value in self._result.matches.items()},
        )

    def subscribe(self, listener: ComparisonListener) -> Callable[[], None]:
        """Register a state listener; returns a function that unregisters it"""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _on_matches_changed(self, _snapshot):
        self.recompute_from_cache()

    def _on_availability_changed(self, team_id: str, week_id: str):
        if not self._active:
            return
        if team_id not in [self._user_team_id] + self._opponent_team_ids:
            return
        if week_id not in self.visible_weeks():
            return

        if self.availability.get_cached(team_id, week_id) is None:
            # Invalidated: reload when an event loop is available
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                self.recompute_from_cache()
                return
            self._pending_refresh = loop.create_task(self.refresh())
            self._pending_refresh.add_done_callback(self._on_refresh_done)
            return

        self.recompute_from_cache()

    def _on_refresh_done(self, task: asyncio.Task):
        if task is self._pending_refresh:
            self._pending_refresh = None
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Comparison refresh failed: {exc}", exc_info=exc)

    def _notify(self):
        state = self.get_comparison_state()
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception as e:
                logger.error(f"Comparison listener failed: {e}", exc_info=True)
