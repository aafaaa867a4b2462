"""Match proposals: propose, confirm, seal and cancel"""
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from ..errors import (
    AlreadyExistsError,
    FailedPreconditionError,
    NotFoundError,
    PermissionDeniedError,
    SlotAlreadyBookedError,
    ValidationError,
)
from ..storage.database import Database
from ..storage.models import (
    ACTIVE,
    CANCELLED,
    CONFIRMED,
    EVENT_MATCH_CANCELLED,
    EVENT_MATCH_SCHEDULED,
    EVENT_PROPOSAL_CANCELLED,
    EVENT_PROPOSAL_CREATED,
    EVENT_SLOT_CONFIRMED,
    GAME_TYPES,
    ORIGIN_PROPOSAL,
    ORIGIN_QUICK_ADD,
    UPCOMING,
    EventRecord,
    MatchProposal,
    MinFilter,
    ScheduledMatch,
    SlotConfirmation,
    Team,
)
from ..utils.logger import setup_logger
from ..utils.slots import DAYS, format_clock, validate_slot_id
from ..utils.timezone import now_utc, to_utc
from ..utils.weeks import is_within_week_range, parse_week_id, scheduled_date, week_expires_at, week_id_for
from .comparison_engine import validate_min_filter
from .match_cache import ScheduledMatchCache

logger = setup_logger(__name__)

MAX_WEEKS_AHEAD = 4


@dataclass
class ConfirmResult:
    proposal: MatchProposal
    matched: bool
    match: Optional[ScheduledMatch] = None


def _new_id() -> str:
    return uuid.uuid4().hex


def _validate_game_type(game_type: str):
    if game_type not in GAME_TYPES:
        raise ValidationError(f'game_type must be one of {", ".join(GAME_TYPES)}')


class ProposalService:
    """
    Proposal lifecycle between two teams

    Every write runs in one database transaction. Sealing a proposal creates
    the ScheduledMatch through the store's conflict-checked insert and pushes
    it into the live match cache so blocked slots update immediately.
    """

    def __init__(
        self,
        database: Database,
        match_cache: ScheduledMatchCache,
        clock: Callable = now_utc,
        id_factory: Callable[[], str] = _new_id,
    ):
        """
        Initialize proposal service

        Args:
            database: Document store
            match_cache: Live collection of upcoming matches
            clock: Returns the current UTC instant
            id_factory: Produces ids for new proposals and matches
        """
        self.database = database
        self.match_cache = match_cache
        self.clock = clock
        self.id_factory = id_factory

    def _get_team(self, team_id: str, label: str) -> Team:
        team = self.database.get_team(team_id)
        if team is None:
            raise NotFoundError(f"{label} not found", detail={"team_id": team_id})
        return team

    def _get_proposal(self, proposal_id: str) -> MatchProposal:
        if not proposal_id:
            raise ValidationError("proposal_id is required")
        proposal = self.database.get_proposal(proposal_id)
        if proposal is None:
            raise NotFoundError("Proposal not found", detail={"proposal_id": proposal_id})
        return proposal

    def _side_of(self, user_id: str, proposal: MatchProposal, action: str) -> str:
        proposer = self._get_team(proposal.proposer_team_id, "Proposer team")
        opponent = self._get_team(proposal.opponent_team_id, "Opponent team")
        if proposer.can_schedule(user_id):
            return "proposer"
        if opponent.can_schedule(user_id):
            return "opponent"
        raise PermissionDeniedError(f"Only leaders or schedulers can {action}")

    def _log_event(self, event_type: str, user_id: str, team_ids, proposal_id=None, match_id=None, **details):
        # Callers are inside the transaction of the change being logged
        self.database.log_event(EventRecord(
            type=event_type,
            proposal_id=proposal_id,
            match_id=match_id,
            team_ids=list(team_ids),
            user_id=user_id,
            details=details,
            created_at=self.clock(),
        ))

    def create_proposal(
        self,
        user_id: str,
        proposer_team_id: str,
        opponent_team_id: str,
        week_id: str,
        min_filter: MinFilter,
    ) -> MatchProposal:
        """
        Propose a match for a week

        Args:
            user_id: Acting user (leader or scheduler of the proposing team)
            proposer_team_id: Proposing team
            opponent_team_id: Team being challenged
            week_id: Current week or up to four weeks ahead
            min_filter: Headcount filter both sides see viable slots through

        Returns:
            The new active proposal
        """
        if not proposer_team_id:
            raise ValidationError("proposer_team_id is required")
        if not opponent_team_id:
            raise ValidationError("opponent_team_id is required")
        if proposer_team_id == opponent_team_id:
            raise ValidationError("Cannot propose a match against your own team")
        parse_week_id(week_id)
        now = self.clock()
        if not is_within_week_range(week_id, now, MAX_WEEKS_AHEAD):
            raise ValidationError(f"Week must be current or up to {MAX_WEEKS_AHEAD} weeks in the future")
        if min_filter is None:
            raise ValidationError("min_filter is required")
        validate_min_filter(min_filter)

        with self.database.transaction():
            proposer = self._get_team(proposer_team_id, "Proposer team")
            opponent = self._get_team(opponent_team_id, "Opponent team")
            if not proposer.active:
                raise FailedPreconditionError("Proposer team is not active")
            if not opponent.active:
                raise FailedPreconditionError("Opponent team is not active")
            if not proposer.is_member(user_id):
                raise PermissionDeniedError("You must be a member of the proposing team")
            if not proposer.can_schedule(user_id):
                raise PermissionDeniedError("Only leaders or schedulers can create proposals")

            if self.database.find_active_proposal(proposer_team_id, opponent_team_id, week_id):
                raise AlreadyExistsError("An active proposal already exists between these teams for this week")

            proposal = MatchProposal(
                id=self.id_factory(),
                proposer_team_id=proposer_team_id,
                opponent_team_id=opponent_team_id,
                week_id=week_id,
                min_filter=MinFilter(min_filter.your_team, min_filter.opponent),
                created_by=user_id,
                created_at=now,
                updated_at=now,
                expires_at=week_expires_at(week_id),
            )
            self.database.save_proposal(proposal)
            self._log_event(
                EVENT_PROPOSAL_CREATED, user_id, [proposer_team_id, opponent_team_id],
                proposal_id=proposal.id, week_id=week_id,
            )

        logger.info(f"Proposal {proposal.id} created: {proposer.name} vs {opponent.name} week {week_id}")
        return proposal

    def confirm_slot(self, user_id: str, proposal_id: str, slot_id: str, game_type: str) -> ConfirmResult:
        """
        Confirm a slot for the acting user's side

        When the other side has already confirmed the same slot the proposal
        is sealed into a ScheduledMatch.

        Raises:
            SlotAlreadyBookedError: either team already has an upcoming match
                in that slot
        """
        validate_slot_id(slot_id)
        _validate_game_type(game_type)
        now = self.clock()
        match = None

        with self.database.transaction():
            proposal = self._get_proposal(proposal_id)
            if proposal.status != ACTIVE:
                raise FailedPreconditionError("Proposal is no longer active")
            side = self._side_of(user_id, proposal, "confirm slots")

            team_ids = [proposal.proposer_team_id, proposal.opponent_team_id]
            conflicts = self.database.find_conflicting_matches(team_ids, proposal.week_id, slot_id)
            if conflicts:
                booked = sorted({t for m in conflicts for t in m.blocked_teams}.intersection(team_ids))
                raise SlotAlreadyBookedError(proposal.week_id, slot_id, booked)

            proposer_avail = self.database.get_availability(proposal.proposer_team_id, proposal.week_id)
            opponent_avail = self.database.get_availability(proposal.opponent_team_id, proposal.week_id)
            proposer_players = proposer_avail.players_in(slot_id) if proposer_avail else []
            opponent_players = opponent_avail.players_in(slot_id) if opponent_avail else []

            if side == "proposer":
                mine, theirs = proposal.proposer_confirmed_slots, proposal.opponent_confirmed_slots
                count_at_confirm = len(proposer_players)
            else:
                mine, theirs = proposal.opponent_confirmed_slots, proposal.proposer_confirmed_slots
                count_at_confirm = len(opponent_players)

            mine[slot_id] = SlotConfirmation(user_id, count_at_confirm, game_type)
            proposal.updated_at = now
            self._log_event(
                EVENT_SLOT_CONFIRMED, user_id, team_ids, proposal_id=proposal.id,
                slot_id=slot_id, side=side, game_type=game_type, count_at_confirm=count_at_confirm,
            )

            if slot_id in theirs:
                match = ScheduledMatch(
                    id=self.id_factory(),
                    team_a_id=proposal.proposer_team_id,
                    team_b_id=proposal.opponent_team_id,
                    week_id=proposal.week_id,
                    blocked_slot=slot_id,
                    scheduled_date=scheduled_date(proposal.week_id, slot_id),
                    game_type=game_type,
                    origin=ORIGIN_PROPOSAL,
                    proposal_id=proposal.id,
                    team_a_roster=list(proposer_players),
                    team_b_roster=list(opponent_players),
                    created_at=now,
                    confirmed_by_a=proposal.proposer_confirmed_slots[slot_id].user_id,
                    confirmed_by_b=proposal.opponent_confirmed_slots[slot_id].user_id,
                    game_type_set_by=user_id,
                )
                self.database.insert_scheduled_match(match)
                self._log_event(
                    EVENT_MATCH_SCHEDULED, user_id, team_ids, proposal_id=proposal.id, match_id=match.id,
                    slot_id=slot_id, week_id=proposal.week_id, game_type=game_type, origin=ORIGIN_PROPOSAL,
                )
                proposal.status = CONFIRMED
                proposal.confirmed_slot_id = slot_id
                proposal.scheduled_match_id = match.id

            self.database.save_proposal(proposal)

        if match is not None:
            self.match_cache.update(match)
            logger.info(f"Proposal {proposal.id} sealed: match {match.id} at {slot_id} week {proposal.week_id}")
        else:
            logger.info(f"Proposal {proposal.id}: {side} confirmed {slot_id} ({count_at_confirm} players)")
        return ConfirmResult(proposal=proposal, matched=match is not None, match=match)

    def withdraw_confirmation(self, user_id: str, proposal_id: str, slot_id: str) -> MatchProposal:
        validate_slot_id(slot_id)

        with self.database.transaction():
            proposal = self._get_proposal(proposal_id)
            if proposal.status != ACTIVE:
                raise FailedPreconditionError("Can only withdraw from active proposals")
            side = self._side_of(user_id, proposal, "withdraw confirmations")

            mine = (proposal.proposer_confirmed_slots if side == "proposer"
                    else proposal.opponent_confirmed_slots)
            if slot_id not in mine:
                raise FailedPreconditionError("This slot has not been confirmed by your side")

            del mine[slot_id]
            proposal.updated_at = self.clock()
            self.database.save_proposal(proposal)

        logger.info(f"Proposal {proposal.id}: {side} withdrew {slot_id}")
        return proposal

    def cancel_proposal(self, user_id: str, proposal_id: str) -> MatchProposal:
        """Either side's leader or scheduler may cancel an active proposal"""
        with self.database.transaction():
            proposal = self._get_proposal(proposal_id)
            if proposal.status != ACTIVE:
                raise FailedPreconditionError("Only active proposals can be cancelled")
            self._side_of(user_id, proposal, "cancel proposals")

            proposal.status = CANCELLED
            proposal.cancelled_by = user_id
            proposal.updated_at = self.clock()
            self.database.save_proposal(proposal)
            self._log_event(
                EVENT_PROPOSAL_CANCELLED, user_id,
                [proposal.proposer_team_id, proposal.opponent_team_id], proposal_id=proposal.id,
            )

        logger.info(f"Proposal {proposal.id} cancelled by {user_id}")
        return proposal

    def cancel_scheduled_match(self, user_id: str, match_id: str) -> ScheduledMatch:
        """
        Cancel an upcoming match

        A match that came from a proposal reverts that proposal to active and
        clears the cancelled slot from both sides' confirmations.
        """
        if not match_id:
            raise ValidationError("match_id is required")
        now = self.clock()

        with self.database.transaction():
            match = self.database.get_scheduled_match(match_id)
            if match is None:
                raise NotFoundError("Match not found", detail={"match_id": match_id})
            if match.status == CANCELLED:
                raise FailedPreconditionError("Match already cancelled")
            if match.status != UPCOMING:
                raise FailedPreconditionError("Only upcoming matches can be cancelled")

            team_a = self.database.get_team(match.team_a_id)
            team_b = self.database.get_team(match.team_b_id)
            if not any(team and team.can_schedule(user_id) for team in (team_a, team_b)):
                raise PermissionDeniedError("Only leaders or schedulers can cancel matches")

            match.status = CANCELLED
            match.cancelled_by = user_id
            match.cancelled_at = now
            self.database.update_scheduled_match(match)
            self._log_event(
                EVENT_MATCH_CANCELLED, user_id, match.blocked_teams,
                proposal_id=match.proposal_id, match_id=match.id,
                slot_id=match.blocked_slot, week_id=match.week_id,
            )

            proposal = self.database.get_proposal(match.proposal_id) if match.proposal_id else None
            if proposal is not None:
                proposal.status = ACTIVE
                proposal.confirmed_slot_id = None
                proposal.scheduled_match_id = None
                proposal.proposer_confirmed_slots.pop(match.blocked_slot, None)
                proposal.opponent_confirmed_slots.pop(match.blocked_slot, None)
                proposal.updated_at = now
                self.database.save_proposal(proposal)

        self.match_cache.remove(match.id)
        logger.info(f"Match {match.id} cancelled by {user_id}")
        return match

    def quick_add_match(
        self,
        user_id: str,
        team_id: str,
        opponent_team_id: str,
        start: datetime,
        game_type: str,
    ) -> ScheduledMatch:
        """
        Record a match arranged outside the proposal flow

        Args:
            user_id: Leader or scheduler of team_id
            team_id: Acting team
            opponent_team_id: The other team
            start: Start instant; must fall on a half-hour boundary
            game_type: "official" or "practice"
        """
        _validate_game_type(game_type)
        if not team_id or not opponent_team_id:
            raise ValidationError("team_id and opponent_team_id are required")
        if team_id == opponent_team_id:
            raise ValidationError("Cannot schedule a match against your own team")

        start = to_utc(start)
        if start.minute % 30 or start.second or start.microsecond:
            raise ValidationError("Match time must fall on a :00 or :30 boundary")
        now = self.clock()
        if start < now:
            raise ValidationError("Match time is in the past")

        week_id = week_id_for(start)
        slot_id = f"{DAYS[start.weekday()]}_{format_clock(start.hour, start.minute)}"

        with self.database.transaction():
            team = self._get_team(team_id, "Team")
            opponent = self._get_team(opponent_team_id, "Opponent team")
            if not opponent.active:
                raise FailedPreconditionError("Opponent team is not active")
            if not team.can_schedule(user_id):
                raise PermissionDeniedError("Only leaders or schedulers can add matches")

            match = ScheduledMatch(
                id=self.id_factory(),
                team_a_id=team_id,
                team_b_id=opponent_team_id,
                week_id=week_id,
                blocked_slot=slot_id,
                scheduled_date=start.date(),
                game_type=game_type,
                origin=ORIGIN_QUICK_ADD,
                created_at=now,
                confirmed_by_a=user_id,
                game_type_set_by=user_id,
            )
            self.database.insert_scheduled_match(match)
            self._log_event(
                EVENT_MATCH_SCHEDULED, user_id, match.blocked_teams, match_id=match.id,
                slot_id=slot_id, week_id=week_id, game_type=game_type, origin=ORIGIN_QUICK_ADD,
            )

        self.match_cache.update(match)
        logger.info(f"Quick-added match {match.id}: {team.name} vs {opponent.name} at {slot_id} week {week_id}")
        return match
