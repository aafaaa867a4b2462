from datetime import datetime

import pytest
import pytz

from matchscheduler.services.availability_service import AvailabilityService
from matchscheduler.services.match_cache import ScheduledMatchCache
from matchscheduler.services.team_service import TeamService
from matchscheduler.storage.database import Database
from matchscheduler.storage.models import RosterPlayer, Team, UserProfile


class FixedClock:
    """Callable clock tests can move forward"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock():
    # Thursday of ISO week 2026-03
    return FixedClock(pytz.UTC.localize(datetime(2026, 1, 15, 12, 0)))


@pytest.fixture
def database(tmp_path):
    return Database(db_path=str(tmp_path / "test.db"))


@pytest.fixture
def make_team(database):
    """Create and store a team with players p1..pN (leader is the first)"""

    def factory(team_id, players=4, name=None, tag=None, **kwargs):
        roster = [
            RosterPlayer(user_id=f"{team_id}-p{i}", display_name=f"{team_id} player {i}")
            for i in range(1, players + 1)
        ]
        kwargs.setdefault("leader_id", roster[0].user_id if roster else None)
        team = Team(
            id=team_id,
            name=name or f"Team {team_id}",
            tag=tag or team_id.upper()[:4],
            roster=roster,
            **kwargs,
        )
        database.upsert_team(team)
        return team

    return factory


@pytest.fixture
def make_user(database):
    def factory(user_id, team_ids=(), template=None):
        user = UserProfile(id=user_id, display_name=user_id, team_ids=list(team_ids), template=template)
        database.upsert_user(user)
        return user

    return factory


@pytest.fixture
def match_cache(database):
    return ScheduledMatchCache(database)


@pytest.fixture
def availability(database, clock):
    return AvailabilityService(database, clock=clock)


@pytest.fixture
def teams(database):
    return TeamService(database)


@pytest.fixture
def fill_slot(availability):
    """Put players into a slot through the availability write path"""

    def fill(team_id, week_id, slot_id, user_ids):
        for user_id in user_ids:
            availability.save_slot_update(team_id, week_id, slot_id, user_id, "add")

    return fill
