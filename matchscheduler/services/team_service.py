"""Cache-backed team directory"""
from typing import Dict, List, Optional, Tuple

from ..storage.database import Database
from ..storage.models import RosterPlayer, Team
from ..utils.logger import setup_logger

logger = setup_logger(__name__)


def _normalize(text: Optional[str]) -> str:
    # Case and runs of whitespace do not distinguish team names
    return " ".join((text or "").split()).lower()


class TeamService:
    """Synchronous roster lookups backed by an in-memory cache"""

    def __init__(self, database: Database):
        self.database = database
        self._cache: Dict[str, Team] = {}

    def refresh(self) -> int:
        """Reload every team from the database"""
        self._cache = {team.id: team for team in self.database.list_teams()}
        logger.debug(f"Loaded {len(self._cache)} teams into cache")
        return len(self._cache)

    def get_team(self, team_id: str) -> Optional[Team]:
        team = self._cache.get(team_id)
        if team is None:
            team = self.database.get_team(team_id)
            if team is not None:
                self._cache[team_id] = team
        return team

    def get_team_roster(self, team_id: str) -> Tuple[List[RosterPlayer], Dict[str, bool]]:
        """
        Roster and privacy flags of a team

        Unknown teams yield an empty roster and no privacy flags.
        """
        team = self.get_team(team_id)
        if team is None:
            return [], {"hide_roster_names": False, "hide_from_comparison": False}
        return list(team.roster), {
            "hide_roster_names": team.hide_roster_names,
            "hide_from_comparison": team.hide_from_comparison,
        }

    def update_cache(self, team: Team):
        self._cache[team.id] = team

    def find_team_by_name(self, name: str) -> Optional[Team]:
        """Case-insensitive lookup by team name or tag"""
        wanted = _normalize(name)
        if not self._cache:
            self.refresh()
        for team in self._cache.values():
            if _normalize(team.name) == wanted or _normalize(team.tag) == wanted:
                return team
        return None
