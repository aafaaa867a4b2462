"""Reminders for scheduled matches that are about to start"""
from datetime import datetime, timedelta
from typing import Callable, List

from ..storage.database import Database
from ..storage.models import UPCOMING, ScheduledMatch
from ..utils.logger import setup_logger
from ..utils.timezone import now_utc
from .discord_client import DiscordClient
from .expiration_service import match_start_utc
from .team_service import TeamService

logger = setup_logger(__name__)


class NotificationService:
    """Sends one reminder per match and channel inside the reminder window"""

    def __init__(
        self,
        database: Database,
        teams: TeamService,
        discord_client: DiscordClient,
        notify_minutes_before: int = 15,
        clock: Callable = now_utc,
    ):
        """
        Initialize notification service

        Args:
            database: Document store (matches and sent-reminder bookkeeping)
            teams: Team directory for names in the message
            discord_client: Client that delivers the message
            notify_minutes_before: Lead time before a match starts
            clock: Returns the current UTC instant
        """
        self.database = database
        self.teams = teams
        self.discord_client = discord_client
        self.notify_minutes_before = notify_minutes_before
        self.clock = clock

    def due_matches(self, now: datetime) -> List[ScheduledMatch]:
        """Upcoming matches starting within the lead time that were not reminded yet"""
        lead = timedelta(minutes=self.notify_minutes_before)
        channel = str(self.discord_client.channel_id)
        due = []
        for match in self.database.get_matches_by_status(UPCOMING):
            try:
                start = match_start_utc(match)
            except ValueError as e:
                logger.error(f"Skipping reminder for match {match.id} with unreadable slot {match.blocked_slot!r}: {e}")
                continue
            if start - lead <= now < start and not self.database.is_notified(match.id, channel):
                due.append(match)
        return due

    def format_reminder(self, match: ScheduledMatch) -> str:
        team_a = self.teams.get_team(match.team_a_id)
        team_b = self.teams.get_team(match.team_b_id)
        name_a = team_a.name if team_a else match.team_a_id
        name_b = team_b.name if team_b else match.team_b_id
        timestamp = int(match_start_utc(match).timestamp())

        return "\n".join([
            f"🔔 **{match.game_type.capitalize()} match starting soon!**",
            f"{name_a} vs {name_b}",
            f"Start time: <t:{timestamp}:F> (<t:{timestamp}:R>)",
        ])

    async def check_and_notify(self) -> int:
        """
        Send reminders for every due match

        Returns:
            Number of reminders sent
        """
        now = self.clock()
        due = self.due_matches(now)
        if not due:
            return 0

        logger.info(f"Found {len(due)} matches to remind")
        channel = str(self.discord_client.channel_id)
        sent = 0
        for match in due:
            if await self.discord_client.send_with_retry(self.format_reminder(match)):
                self.database.mark_notified(match.id, channel, self.clock())
                sent += 1
                logger.info(f"Reminded match {match.id} ({match.blocked_slot} week {match.week_id})")
        return sent
