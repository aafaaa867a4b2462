"""SQLite document store for teams, availability, templates, proposals and matches"""
import json
import sqlite3
import threading
from contextlib import contextmanager
from datetime import date, datetime
from pathlib import Path
from typing import Iterable, List, Optional

from ..errors import SlotAlreadyBookedError, ValidationError
from ..utils.logger import setup_logger
from .models import (
    ACTIVE,
    COMPLETED,
    EXPIRED,
    UPCOMING,
    AvailabilityRecord,
    EventRecord,
    MatchProposal,
    MinFilter,
    RosterPlayer,
    ScheduledMatch,
    SlotConfirmation,
    Team,
    Template,
    UserProfile,
)

logger = setup_logger(__name__)

SLOT_ACTIONS = ("add", "remove", "unavailable")


def _dt(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _add_unique(users: List[str], user_id: str) -> List[str]:
    return users if user_id in users else users + [user_id]


def _without(users: List[str], user_id: str) -> List[str]:
    return [u for u in users if u != user_id]


class Database:
    """SQLite database manager for the scheduling collections"""

    def __init__(self, db_path: str = "data/matchscheduler.db"):
        """Initialize database connection"""
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._local = threading.local()
        self._init_db()

    def _init_db(self):
        """Create tables if they don't exist"""
        with self._get_connection() as conn:
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS teams (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    tag TEXT NOT NULL,
                    leader_id TEXT,
                    schedulers TEXT NOT NULL DEFAULT '[]',
                    roster TEXT NOT NULL DEFAULT '[]',
                    hide_roster_names INTEGER NOT NULL DEFAULT 0,
                    hide_from_comparison INTEGER NOT NULL DEFAULT 0,
                    active INTEGER NOT NULL DEFAULT 1
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id TEXT PRIMARY KEY,
                    display_name TEXT,
                    team_ids TEXT NOT NULL DEFAULT '[]',
                    template TEXT
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS availability (
                    team_id TEXT NOT NULL,
                    week_id TEXT NOT NULL,
                    slots TEXT NOT NULL DEFAULT '{}',
                    unavailable TEXT NOT NULL DEFAULT '{}',
                    last_updated TEXT,
                    PRIMARY KEY (team_id, week_id)
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS scheduled_matches (
                    id TEXT PRIMARY KEY,
                    team_a_id TEXT NOT NULL,
                    team_b_id TEXT NOT NULL,
                    week_id TEXT NOT NULL,
                    blocked_slot TEXT NOT NULL,
                    blocked_teams TEXT NOT NULL,
                    scheduled_date TEXT NOT NULL,
                    status TEXT NOT NULL,
                    game_type TEXT NOT NULL,
                    origin TEXT NOT NULL,
                    proposal_id TEXT,
                    team_a_roster TEXT NOT NULL DEFAULT '[]',
                    team_b_roster TEXT NOT NULL DEFAULT '[]',
                    external_ref TEXT,
                    created_at TEXT,
                    completed_at TEXT,
                    cancelled_at TEXT,
                    cancelled_by TEXT,
                    confirmed_by_a TEXT,
                    confirmed_by_b TEXT,
                    game_type_set_by TEXT
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS proposals (
                    id TEXT PRIMARY KEY,
                    proposer_team_id TEXT NOT NULL,
                    opponent_team_id TEXT NOT NULL,
                    week_id TEXT NOT NULL,
                    min_your_team INTEGER NOT NULL,
                    min_opponent INTEGER NOT NULL,
                    status TEXT NOT NULL,
                    proposer_confirmed TEXT NOT NULL DEFAULT '{}',
                    opponent_confirmed TEXT NOT NULL DEFAULT '{}',
                    confirmed_slot_id TEXT,
                    scheduled_match_id TEXT,
                    created_by TEXT,
                    cancelled_by TEXT,
                    created_at TEXT,
                    updated_at TEXT,
                    expires_at TEXT
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS events (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    type TEXT NOT NULL,
                    proposal_id TEXT,
                    match_id TEXT,
                    team_ids TEXT NOT NULL DEFAULT '[]',
                    user_id TEXT,
                    details TEXT NOT NULL DEFAULT '{}',
                    created_at TEXT
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS notifications (
                    match_id TEXT NOT NULL,
                    channel_id TEXT NOT NULL,
                    notified_at TEXT NOT NULL,
                    PRIMARY KEY (match_id, channel_id)
                )
            """)

            # Indexes for the sweep and conflict queries
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_matches_status_week
                ON scheduled_matches(status, week_id)
            """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_proposals_status
                ON proposals(status)
            """)

    @contextmanager
    def _get_connection(self):
        """Get a connection; joins the open transaction on this thread if any"""
        tx_conn = getattr(self._local, "conn", None)
        if tx_conn is not None:
            yield tx_conn
            return

        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    @contextmanager
    def transaction(self):
        """
        Run several operations atomically

        Opens BEGIN IMMEDIATE so the write lock is held from the first read;
        a check-then-insert inside the block cannot interleave with another
        writer.
        """
        if getattr(self._local, "conn", None) is not None:
            # Nested use joins the outer transaction
            yield self
            return

        conn = sqlite3.connect(str(self.db_path), isolation_level=None)
        conn.row_factory = sqlite3.Row
        conn.execute("BEGIN IMMEDIATE")
        self._local.conn = conn
        try:
            yield self
            conn.execute("COMMIT")
        except Exception:
            conn.execute("ROLLBACK")
            raise
        finally:
            self._local.conn = None
            conn.close()

    # ── Teams ──────────────────────────────────────────────────────────

    def upsert_team(self, team: Team):
        """Insert or update a team"""
        roster = [vars(p) for p in team.roster]
        with self._get_connection() as conn:
            conn.execute("""
                INSERT OR REPLACE INTO teams
                (id, name, tag, leader_id, schedulers, roster,
                 hide_roster_names, hide_from_comparison, active)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                team.id,
                team.name,
                team.tag,
                team.leader_id,
                json.dumps(team.schedulers),
                json.dumps(roster),
                int(team.hide_roster_names),
                int(team.hide_from_comparison),
                int(team.active),
            ))

    def get_team(self, team_id: str) -> Optional[Team]:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM teams WHERE id = ?", (team_id,)).fetchone()
            return self._row_to_team(row) if row else None

    def list_teams(self) -> List[Team]:
        with self._get_connection() as conn:
            rows = conn.execute("SELECT * FROM teams ORDER BY name").fetchall()
            return [self._row_to_team(row) for row in rows]

    # ── Users and templates ────────────────────────────────────────────

    def upsert_user(self, user: UserProfile):
        with self._get_connection() as conn:
            conn.execute("""
                INSERT OR REPLACE INTO users (id, display_name, team_ids, template)
                VALUES (?, ?, ?, ?)
            """, (
                user.id,
                user.display_name,
                json.dumps(user.team_ids),
                self._template_to_json(user.template),
            ))

    def get_user(self, user_id: str) -> Optional[UserProfile]:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
            return self._row_to_user(row) if row else None

    def save_template(self, user_id: str, template: Optional[Template]):
        """Replace (or with None, delete) a user's template"""
        with self._get_connection() as conn:
            conn.execute(
                "UPDATE users SET template = ? WHERE id = ?",
                (self._template_to_json(template), user_id),
            )

    def get_users_with_recurring_templates(self) -> List[UserProfile]:
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM users WHERE template IS NOT NULL ORDER BY id"
            ).fetchall()
        users = [self._row_to_user(row) for row in rows]
        return [u for u in users if u.template and u.template.recurring]

    # ── Availability ───────────────────────────────────────────────────

    def get_availability(self, team_id: str, week_id: str) -> Optional[AvailabilityRecord]:
        """Get a team's availability for a week, or None if never written"""
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM availability WHERE team_id = ? AND week_id = ?",
                (team_id, week_id),
            ).fetchone()
            return self._row_to_availability(row) if row else None

    def save_slot_update(
        self,
        team_id: str,
        week_id: str,
        slot_id: str,
        user_id: str,
        action: str,
        updated_at: Optional[datetime] = None,
    ) -> AvailabilityRecord:
        """
        Apply one user/slot change to an availability record

        The record is created on first write. A user is never left both in
        slots[s] and unavailable[s].

        Args:
            action: "add", "remove" or "unavailable"

        Returns:
            The record after the change
        """
        if action not in SLOT_ACTIONS:
            raise ValidationError(f'Action must be one of {", ".join(SLOT_ACTIONS)}')

        with self.transaction():
            record = self.get_availability(team_id, week_id) or AvailabilityRecord(team_id, week_id)
            available = record.slots.get(slot_id, [])
            unavailable = record.unavailable.get(slot_id, [])

            if action == "add":
                available = _add_unique(available, user_id)
                unavailable = _without(unavailable, user_id)
            elif action == "remove":
                available = _without(available, user_id)
            else:
                available = _without(available, user_id)
                unavailable = _add_unique(unavailable, user_id)

            for mapping, users in ((record.slots, available), (record.unavailable, unavailable)):
                if users:
                    mapping[slot_id] = users
                else:
                    mapping.pop(slot_id, None)
            record.last_updated = updated_at

            with self._get_connection() as conn:
                conn.execute("""
                    INSERT OR REPLACE INTO availability
                    (team_id, week_id, slots, unavailable, last_updated)
                    VALUES (?, ?, ?, ?, ?)
                """, (
                    team_id,
                    week_id,
                    json.dumps(record.slots),
                    json.dumps(record.unavailable),
                    _dt(updated_at),
                ))
        return record

    # ── Scheduled matches ──────────────────────────────────────────────

    def find_conflicting_matches(
        self, team_ids: Iterable[str], week_id: str, slot_id: str
    ) -> List[ScheduledMatch]:
        """Upcoming matches in the week/slot that block any of the given teams"""
        wanted = set(team_ids)
        with self._get_connection() as conn:
            rows = conn.execute("""
                SELECT * FROM scheduled_matches
                WHERE status = ? AND week_id = ? AND blocked_slot = ?
            """, (UPCOMING, week_id, slot_id)).fetchall()
        matches = [self._row_to_match(row) for row in rows]
        return [m for m in matches if wanted.intersection(m.blocked_teams)]

    def insert_scheduled_match(self, match: ScheduledMatch) -> ScheduledMatch:
        """
        Create a scheduled match unless either team is already booked

        The conflict check and the insert share one transaction.

        Raises:
            SlotAlreadyBookedError: an upcoming match already blocks the slot
        """
        with self.transaction():
            conflicts = self.find_conflicting_matches(
                match.blocked_teams, match.week_id, match.blocked_slot
            )
            if conflicts:
                taken = set()
                for conflict in conflicts:
                    taken.update(conflict.blocked_teams)
                booked = sorted(taken.intersection(match.blocked_teams))
                logger.warning(
                    f"Refused match {match.id}: {match.blocked_slot} in {match.week_id} "
                    f"already booked for {', '.join(booked)}"
                )
                raise SlotAlreadyBookedError(match.week_id, match.blocked_slot, booked)
            self._write_match(match)
        return match

    def update_scheduled_match(self, match: ScheduledMatch):
        self._write_match(match)

    def _write_match(self, match: ScheduledMatch):
        with self._get_connection() as conn:
            conn.execute("""
                INSERT OR REPLACE INTO scheduled_matches
                (id, team_a_id, team_b_id, week_id, blocked_slot, blocked_teams,
                 scheduled_date, status, game_type, origin, proposal_id,
                 team_a_roster, team_b_roster, external_ref, created_at,
                 completed_at, cancelled_at, cancelled_by, confirmed_by_a,
                 confirmed_by_b, game_type_set_by)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                match.id,
                match.team_a_id,
                match.team_b_id,
                match.week_id,
                match.blocked_slot,
                json.dumps(match.blocked_teams),
                match.scheduled_date.isoformat(),
                match.status,
                match.game_type,
                match.origin,
                match.proposal_id,
                json.dumps(match.team_a_roster),
                json.dumps(match.team_b_roster),
                match.external_ref,
                _dt(match.created_at),
                _dt(match.completed_at),
                _dt(match.cancelled_at),
                match.cancelled_by,
                match.confirmed_by_a,
                match.confirmed_by_b,
                match.game_type_set_by,
            ))

    def get_scheduled_match(self, match_id: str) -> Optional[ScheduledMatch]:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM scheduled_matches WHERE id = ?", (match_id,)
            ).fetchone()
            return self._row_to_match(row) if row else None

    def get_matches_by_status(self, status: str) -> List[ScheduledMatch]:
        with self._get_connection() as conn:
            rows = conn.execute("""
                SELECT * FROM scheduled_matches
                WHERE status = ?
                ORDER BY scheduled_date ASC, blocked_slot ASC
            """, (status,)).fetchall()
            return [self._row_to_match(row) for row in rows]

    def find_match_by_external_ref(self, external_ref: str) -> Optional[ScheduledMatch]:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM scheduled_matches WHERE external_ref = ?", (external_ref,)
            ).fetchone()
            return self._row_to_match(row) if row else None

    def complete_matches(self, match_ids: List[str], completed_at: datetime) -> int:
        """Mark a batch of upcoming matches completed; all or nothing"""
        if not match_ids:
            return 0
        with self.transaction():
            with self._get_connection() as conn:
                cursor = conn.executemany("""
                    UPDATE scheduled_matches
                    SET status = ?, completed_at = ?
                    WHERE id = ? AND status = ?
                """, [(COMPLETED, _dt(completed_at), match_id, UPCOMING) for match_id in match_ids])
                return cursor.rowcount

    # ── Proposals ──────────────────────────────────────────────────────

    def save_proposal(self, proposal: MatchProposal):
        """Insert or replace a proposal"""
        with self._get_connection() as conn:
            conn.execute("""
                INSERT OR REPLACE INTO proposals
                (id, proposer_team_id, opponent_team_id, week_id, min_your_team,
                 min_opponent, status, proposer_confirmed, opponent_confirmed,
                 confirmed_slot_id, scheduled_match_id, created_by, cancelled_by,
                 created_at, updated_at, expires_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                proposal.id,
                proposal.proposer_team_id,
                proposal.opponent_team_id,
                proposal.week_id,
                proposal.min_filter.your_team,
                proposal.min_filter.opponent,
                proposal.status,
                json.dumps({s: vars(c) for s, c in proposal.proposer_confirmed_slots.items()}),
                json.dumps({s: vars(c) for s, c in proposal.opponent_confirmed_slots.items()}),
                proposal.confirmed_slot_id,
                proposal.scheduled_match_id,
                proposal.created_by,
                proposal.cancelled_by,
                _dt(proposal.created_at),
                _dt(proposal.updated_at),
                _dt(proposal.expires_at),
            ))

    def get_proposal(self, proposal_id: str) -> Optional[MatchProposal]:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM proposals WHERE id = ?", (proposal_id,)).fetchone()
            return self._row_to_proposal(row) if row else None

    def find_active_proposal(self, team_a_id: str, team_b_id: str, week_id: str) -> Optional[MatchProposal]:
        """Active proposal between two teams for a week, in either direction"""
        with self._get_connection() as conn:
            row = conn.execute("""
                SELECT * FROM proposals
                WHERE status = ? AND week_id = ?
                AND ((proposer_team_id = ? AND opponent_team_id = ?)
                     OR (proposer_team_id = ? AND opponent_team_id = ?))
                LIMIT 1
            """, (ACTIVE, week_id, team_a_id, team_b_id, team_b_id, team_a_id)).fetchone()
            return self._row_to_proposal(row) if row else None

    def get_proposals_by_status(self, status: str) -> List[MatchProposal]:
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM proposals WHERE status = ? ORDER BY created_at", (status,)
            ).fetchall()
            return [self._row_to_proposal(row) for row in rows]

    def expire_proposals(self, proposal_ids: List[str], now: datetime) -> int:
        """Mark a batch of active proposals expired; all or nothing"""
        if not proposal_ids:
            return 0
        with self.transaction():
            with self._get_connection() as conn:
                cursor = conn.executemany("""
                    UPDATE proposals SET status = ?, updated_at = ?
                    WHERE id = ? AND status = ?
                """, [(EXPIRED, _dt(now), proposal_id, ACTIVE) for proposal_id in proposal_ids])
                return cursor.rowcount

    # ── Audit log ──────────────────────────────────────────────────────

    def log_event(self, event: EventRecord) -> EventRecord:
        """
        Append an audit event

        Called inside the transaction of the change it describes, so the
        event is written or rolled back together with it.
        """
        with self._get_connection() as conn:
            cursor = conn.execute("""
                INSERT INTO events
                (type, proposal_id, match_id, team_ids, user_id, details, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (
                event.type,
                event.proposal_id,
                event.match_id,
                json.dumps(event.team_ids),
                event.user_id,
                json.dumps(event.details),
                _dt(event.created_at),
            ))
            event.id = cursor.lastrowid
        return event

    def get_events(
        self,
        proposal_id: Optional[str] = None,
        match_id: Optional[str] = None,
        event_type: Optional[str] = None,
    ) -> List[EventRecord]:
        """Audit events in insertion order, optionally filtered"""
        clauses, params = [], []
        for column, value in (("proposal_id", proposal_id), ("match_id", match_id), ("type", event_type)):
            if value is not None:
                clauses.append(f"{column} = ?")
                params.append(value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._get_connection() as conn:
            rows = conn.execute(f"SELECT * FROM events {where} ORDER BY id ASC", params).fetchall()
            return [self._row_to_event(row) for row in rows]

    # ── Reminder bookkeeping ───────────────────────────────────────────

    def mark_notified(self, match_id: str, channel_id: str, notified_at: datetime):
        """Mark a match as notified for a channel"""
        with self._get_connection() as conn:
            conn.execute("""
                INSERT OR REPLACE INTO notifications
                (match_id, channel_id, notified_at)
                VALUES (?, ?, ?)
            """, (match_id, channel_id, notified_at.isoformat()))

    def is_notified(self, match_id: str, channel_id: str) -> bool:
        """Check if a match has been notified for a channel"""
        with self._get_connection() as conn:
            row = conn.execute("""
                SELECT 1 FROM notifications
                WHERE match_id = ? AND channel_id = ?
            """, (match_id, channel_id)).fetchone()
            return row is not None

    # ── Row conversion ─────────────────────────────────────────────────

    def _row_to_team(self, row: sqlite3.Row) -> Team:
        return Team(
            id=row['id'],
            name=row['name'],
            tag=row['tag'],
            leader_id=row['leader_id'],
            schedulers=json.loads(row['schedulers']),
            roster=[RosterPlayer(**p) for p in json.loads(row['roster'])],
            hide_roster_names=bool(row['hide_roster_names']),
            hide_from_comparison=bool(row['hide_from_comparison']),
            active=bool(row['active']),
        )

    def _template_to_json(self, template: Optional[Template]) -> Optional[str]:
        if template is None:
            return None
        return json.dumps({
            'slots': template.slots,
            'recurring': template.recurring,
            'last_applied_week_id': template.last_applied_week_id,
            'updated_at': _dt(template.updated_at),
        })

    def _row_to_user(self, row: sqlite3.Row) -> UserProfile:
        template = None
        if row['template']:
            raw = json.loads(row['template'])
            template = Template(
                slots=raw.get('slots', []),
                recurring=raw.get('recurring', False),
                last_applied_week_id=raw.get('last_applied_week_id', ''),
                updated_at=_parse_dt(raw.get('updated_at')),
            )
        return UserProfile(
            id=row['id'],
            display_name=row['display_name'],
            team_ids=json.loads(row['team_ids']),
            template=template,
        )

    def _row_to_availability(self, row: sqlite3.Row) -> AvailabilityRecord:
        return AvailabilityRecord(
            team_id=row['team_id'],
            week_id=row['week_id'],
            slots=json.loads(row['slots']),
            unavailable=json.loads(row['unavailable']),
            last_updated=_parse_dt(row['last_updated']),
        )

    def _row_to_match(self, row: sqlite3.Row) -> ScheduledMatch:
        return ScheduledMatch(
            id=row['id'],
            team_a_id=row['team_a_id'],
            team_b_id=row['team_b_id'],
            week_id=row['week_id'],
            blocked_slot=row['blocked_slot'],
            blocked_teams=json.loads(row['blocked_teams']),
            scheduled_date=date.fromisoformat(row['scheduled_date']),
            status=row['status'],
            game_type=row['game_type'],
            origin=row['origin'],
            proposal_id=row['proposal_id'],
            team_a_roster=json.loads(row['team_a_roster']),
            team_b_roster=json.loads(row['team_b_roster']),
            external_ref=row['external_ref'],
            created_at=_parse_dt(row['created_at']),
            completed_at=_parse_dt(row['completed_at']),
            cancelled_at=_parse_dt(row['cancelled_at']),
            cancelled_by=row['cancelled_by'],
            confirmed_by_a=row['confirmed_by_a'],
            confirmed_by_b=row['confirmed_by_b'],
            game_type_set_by=row['game_type_set_by'],
        )

    def _row_to_event(self, row: sqlite3.Row) -> EventRecord:
        return EventRecord(
            id=row['id'],
            type=row['type'],
            proposal_id=row['proposal_id'],
            match_id=row['match_id'],
            team_ids=json.loads(row['team_ids']),
            user_id=row['user_id'],
            details=json.loads(row['details']),
            created_at=_parse_dt(row['created_at']),
        )

    def _row_to_proposal(self, row: sqlite3.Row) -> MatchProposal:
        return MatchProposal(
            id=row['id'],
            proposer_team_id=row['proposer_team_id'],
            opponent_team_id=row['opponent_team_id'],
            week_id=row['week_id'],
            min_filter=MinFilter(row['min_your_team'], row['min_opponent']),
            status=row['status'],
            proposer_confirmed_slots={
                s: SlotConfirmation(**c) for s, c in json.loads(row['proposer_confirmed']).items()
            },
            opponent_confirmed_slots={
                s: SlotConfirmation(**c) for s, c in json.loads(row['opponent_confirmed']).items()
            },
            confirmed_slot_id=row['confirmed_slot_id'],
            scheduled_match_id=row['scheduled_match_id'],
            created_by=row['created_by'],
            cancelled_by=row['cancelled_by'],
            created_at=_parse_dt(row['created_at']),
            updated_at=_parse_dt(row['updated_at']),
            expires_at=_parse_dt(row['expires_at']),
        )
