"""Data models for teams, availability, templates, proposals and scheduled matches"""
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, List, Optional

# ScheduledMatch.status
UPCOMING = "upcoming"
COMPLETED = "completed"
CANCELLED = "cancelled"

# MatchProposal.status
ACTIVE = "active"
CONFIRMED = "confirmed"
EXPIRED = "expired"

GAME_TYPES = ("official", "practice")

# ScheduledMatch.origin
ORIGIN_PROPOSAL = "proposal"
ORIGIN_QUICK_ADD = "quick_add"
ORIGIN_IMPORT = "import"

# EventRecord.type
EVENT_PROPOSAL_CREATED = "PROPOSAL_CREATED"
EVENT_PROPOSAL_CANCELLED = "PROPOSAL_CANCELLED"
EVENT_SLOT_CONFIRMED = "SLOT_CONFIRMED"
EVENT_MATCH_SCHEDULED = "MATCH_SCHEDULED"
EVENT_MATCH_CANCELLED = "MATCH_CANCELLED"

FULL_MATCH_THRESHOLD = 4  # 4v4 game requirement


@dataclass
class RosterPlayer:
    user_id: str
    display_name: Optional[str] = None
    initials: Optional[str] = None
    photo_url: Optional[str] = None
    anonymous: bool = False


@dataclass
class Team:
    """A team with its roster and privacy flags"""
    id: str
    name: str = "Unknown"
    tag: str = "??"
    leader_id: Optional[str] = None
    schedulers: List[str] = field(default_factory=list)
    roster: List[RosterPlayer] = field(default_factory=list)
    hide_roster_names: bool = False
    hide_from_comparison: bool = False
    active: bool = True

    def is_member(self, user_id: str) -> bool:
        return any(p.user_id == user_id for p in self.roster)

    def can_schedule(self, user_id: str) -> bool:
        """Leaders and delegated schedulers may propose, confirm and cancel"""
        return self.leader_id == user_id or user_id in self.schedulers


@dataclass
class AvailabilityRecord:
    """Who is available (or explicitly not) per UTC slot, for one team and week"""
    team_id: str
    week_id: str
    slots: Dict[str, List[str]] = field(default_factory=dict)
    unavailable: Dict[str, List[str]] = field(default_factory=dict)
    last_updated: Optional[datetime] = None

    def players_in(self, slot_id: str) -> List[str]:
        return self.slots.get(slot_id, [])

    def has_user(self, user_id: str) -> bool:
        """True if the user is available in any slot of the week"""
        return any(user_id in users for users in self.slots.values())


@dataclass
class Template:
    slots: List[str] = field(default_factory=list)
    recurring: bool = False
    last_applied_week_id: str = ""
    updated_at: Optional[datetime] = None


@dataclass
class UserProfile:
    id: str
    display_name: Optional[str] = None
    team_ids: List[str] = field(default_factory=list)
    template: Optional[Template] = None


@dataclass
class MinFilter:
    your_team: int = 1
    opponent: int = 1


@dataclass
class SlotConfirmation:
    user_id: str
    count_at_confirm: int
    game_type: str


@dataclass
class MatchProposal:
    id: str
    proposer_team_id: str
    opponent_team_id: str
    week_id: str
    min_filter: MinFilter
    status: str = ACTIVE
    proposer_confirmed_slots: Dict[str, SlotConfirmation] = field(default_factory=dict)
    opponent_confirmed_slots: Dict[str, SlotConfirmation] = field(default_factory=dict)
    confirmed_slot_id: Optional[str] = None
    scheduled_match_id: Optional[str] = None
    created_by: Optional[str] = None
    cancelled_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None


@dataclass
class ScheduledMatch:
    """A fixed match occupying one UTC slot of one week"""
    id: str
    team_a_id: str
    team_b_id: str
    week_id: str
    blocked_slot: str
    scheduled_date: date
    status: str = UPCOMING
    game_type: str = "official"
    origin: str = ORIGIN_PROPOSAL
    blocked_teams: List[str] = field(default_factory=list)
    proposal_id: Optional[str] = None
    team_a_roster: List[str] = field(default_factory=list)
    team_b_roster: List[str] = field(default_factory=list)
    external_ref: Optional[str] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[str] = None
    confirmed_by_a: Optional[str] = None
    confirmed_by_b: Optional[str] = None
    game_type_set_by: Optional[str] = None

    def __post_init__(self):
        if not self.blocked_teams:
            self.blocked_teams = [self.team_a_id, self.team_b_id]

    def __hash__(self):
        return hash(self.id)

    def __eq__(self, other):
        if not isinstance(other, ScheduledMatch):
            return False
        return self.id == other.id


@dataclass
class EventRecord:
    """One audit log entry written alongside a proposal or match change"""
    type: str
    proposal_id: Optional[str] = None
    match_id: Optional[str] = None
    team_ids: List[str] = field(default_factory=list)
    user_id: Optional[str] = None
    details: Dict = field(default_factory=dict)
    created_at: Optional[datetime] = None
    id: Optional[int] = None
