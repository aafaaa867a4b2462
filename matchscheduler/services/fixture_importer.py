"""Imports fixtures from iCalendar feeds as scheduled matches"""
import hashlib
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional, Tuple

import requests
from icalendar import Calendar

from ..errors import SchedulingError
from ..storage.database import Database
from ..storage.models import ORIGIN_IMPORT, ScheduledMatch
from ..utils.logger import setup_logger
from ..utils.slots import DAYS, format_clock
from ..utils.timezone import now_utc, to_utc
from ..utils.weeks import week_id_for
from .match_cache import ScheduledMatchCache
from .team_service import TeamService

logger = setup_logger(__name__)

_SEPARATORS = (" vs ", " v ", " @ ", " VS ", " V ")


@dataclass
class Fixture:
    """One parsed feed event"""
    home: str
    away: str
    start_utc: datetime
    uid: Optional[str] = None

    @property
    def external_ref(self) -> str:
        """
        Stable reference of a fixture

        Team order does not matter; the start instant is included so a
        rescheduled fixture becomes a new reference.
        """
        pair = sorted([self.home.lower().strip(), self.away.lower().strip()])
        content = f"{pair[0]}|{pair[1]}|{self.start_utc.strftime('%Y-%m-%dT%H:%M')}"
        return f"fixture_{hashlib.md5(content.encode()).hexdigest()[:16]}"


@dataclass
class ImportResult:
    fetched: int = 0
    created: int = 0
    existing: int = 0
    skipped: int = 0
    failed: int = 0


def parse_teams_from_summary(summary: str) -> Tuple[Optional[str], Optional[str]]:
    """
    Split an event SUMMARY into two team names

    Accepts "A vs B", "A v B" and "A @ B".
    """
    for sep in _SEPARATORS:
        if sep in summary:
            home, away = summary.split(sep, 1)
            home = re.sub(r'^vs\s+', '', home.strip(), flags=re.IGNORECASE).strip()
            away = re.sub(r'^vs\s+', '', away.strip(), flags=re.IGNORECASE).strip()
            if home and away:
                return home, away

    match = re.search(r'(.+?)\s+(?:vs|v|@)\s+(.+)', summary, re.IGNORECASE)
    if match:
        return match.group(1).strip(), match.group(2).strip()
    return None, None


def parse_fixtures(ics_content: str) -> List[Fixture]:
    """Parse every timed VEVENT of a feed; unreadable events are skipped"""
    calendar = Calendar.from_ical(ics_content)
    fixtures = []

    for event in calendar.walk('VEVENT'):
        dtstart = event.get('DTSTART')
        if not dtstart or not isinstance(dtstart.dt, datetime):
            logger.debug("Skipping event without a start time")
            continue

        summary = str(event.get('SUMMARY', ''))
        home, away = parse_teams_from_summary(summary)
        if not home or not away:
            logger.warning(f"Could not parse teams from summary: {summary}")
            continue

        uid = str(event.get('UID')) if event.get('UID') else None
        fixtures.append(Fixture(home=home, away=away, start_utc=to_utc(dtstart.dt), uid=uid))

    logger.info(f"Parsed {len(fixtures)} fixtures from feed")
    return fixtures


class FixtureImporter:
    """One-way import of external fixtures into the match store"""

    def __init__(
        self,
        database: Database,
        teams: TeamService,
        match_cache: ScheduledMatchCache,
        feed_urls: List[str],
        clock: Callable = now_utc,
    ):
        """
        Initialize fixture importer

        Args:
            database: Document store
            teams: Team directory used to resolve names and tags
            match_cache: Live match collection to push new matches into
            feed_urls: iCalendar feed URLs (webcal:// is fetched over https)
            clock: Returns the current UTC instant
        """
        self.database = database
        self.teams = teams
        self.match_cache = match_cache
        self.feed_urls = feed_urls
        self.clock = clock

    def fetch_feed(self, url: str) -> Optional[str]:
        if url.startswith("webcal://"):
            url = url.replace("webcal://", "https://", 1)

        try:
            logger.debug(f"Fetching fixture feed: {url}")
            response = requests.get(url, timeout=30)
            response.raise_for_status()
            return response.text
        except requests.RequestException as e:
            logger.error(f"Failed to fetch fixture feed {url}: {e}")
            return None

    def import_all(self) -> ImportResult:
        """Fetch and import every configured feed"""
        total = ImportResult()
        self.teams.refresh()

        for url in self.feed_urls:
            content = self.fetch_feed(url)
            if content is None:
                total.failed += 1
                continue
            try:
                result = self.import_ics(content)
            except ValueError as e:
                logger.error(f"Failed to parse fixture feed {url}: {e}")
                total.failed += 1
                continue

            for name in ("fetched", "created", "existing", "skipped", "failed"):
                setattr(total, name, getattr(total, name) + getattr(result, name))

        logger.info(
            f"Fixture import: {total.created} created, {total.existing} existing, "
            f"{total.skipped} skipped, {total.failed} failed"
        )
        return total

    def import_ics(self, ics_content: str) -> ImportResult:
        """Import the fixtures of one feed's content"""
        fixtures = parse_fixtures(ics_content)
        result = ImportResult(fetched=len(fixtures))

        for fixture in fixtures:
            try:
                outcome = self.import_fixture(fixture)
            except SchedulingError as e:
                logger.warning(f"Fixture {fixture.home} vs {fixture.away} not imported: {e}")
                result.failed += 1
                continue
            setattr(result, outcome, getattr(result, outcome) + 1)

        return result

    def import_fixture(self, fixture: Fixture) -> str:
        """
        Import one fixture

        Returns:
            "created", "existing" or "skipped"
        """
        start = fixture.start_utc
        if start.minute % 30 or start.second or start.microsecond:
            logger.info(f"Skipping {fixture.home} vs {fixture.away}: {start} is not on a slot boundary")
            return "skipped"
        if start < self.clock():
            logger.debug(f"Skipping past fixture {fixture.home} vs {fixture.away} at {start}")
            return "skipped"

        team_a = self.teams.find_team_by_name(fixture.home)
        team_b = self.teams.find_team_by_name(fixture.away)
        if team_a is None or team_b is None or team_a.id == team_b.id:
            logger.info(f"Skipping {fixture.home} vs {fixture.away}: teams not resolved")
            return "skipped"

        external_ref = fixture.external_ref
        if self.database.find_match_by_external_ref(external_ref):
            return "existing"

        match = ScheduledMatch(
            id=external_ref,
            team_a_id=team_a.id,
            team_b_id=team_b.id,
            week_id=week_id_for(start),
            blocked_slot=f"{DAYS[start.weekday()]}_{format_clock(start.hour, start.minute)}",
            scheduled_date=start.date(),
            origin=ORIGIN_IMPORT,
            external_ref=external_ref,
            created_at=self.clock(),
        )
        self.database.insert_scheduled_match(match)
        self.match_cache.update(match)
        logger.info(f"Imported fixture {team_a.name} vs {team_b.name} at {match.blocked_slot} week {match.week_id}")
        return "created"
