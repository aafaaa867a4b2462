"""Main entry point for the match scheduler sweeps"""
import asyncio
import signal
import sys
from datetime import datetime
from typing import Awaitable, Callable, List, Optional

from .config import Config
from .storage.database import Database
from .services.availability_service import AvailabilityService
from .services.discord_client import DiscordClient
from .services.expiration_service import ExpirationService
from .services.fixture_importer import FixtureImporter
from .services.match_cache import ScheduledMatchCache
from .services.notification_service import NotificationService
from .services.team_service import TeamService
from .services.template_service import TemplateService
from .utils.cadence import next_half_hour_run, next_weekly_run, seconds_until
from .utils.logger import quiet_libraries, setup_logger
from .utils.timezone import now_utc

logger = setup_logger(__name__)

REMINDER_CHECK_INTERVAL = 30  # seconds


class MatchSchedulerApp:
    """Wires the services together and runs the periodic sweeps"""

    def __init__(self, config: Optional[Config] = None, clock: Callable[[], datetime] = now_utc):
        """Initialize components"""
        self.config = config or Config()
        self.clock = clock
        self.database = Database(db_path=self.config.database_path)
        self.running = False
        self._tasks: List[asyncio.Task] = []

        # Initialize services
        self.match_cache = ScheduledMatchCache(self.database)
        self.teams = TeamService(self.database)
        self.availability = AvailabilityService(self.database, clock=clock)
        self.templates = TemplateService(self.database, self.availability, clock=clock)
        self.expiration = ExpirationService(self.database, self.match_cache, clock=clock)
        self.fixture_importer = FixtureImporter(
            self.database, self.teams, self.match_cache, self.config.fixture_feeds, clock=clock
        )

        self.discord_client: Optional[DiscordClient] = None
        self.notification_service: Optional[NotificationService] = None
        if self.config.reminders_enabled:
            self.discord_client = DiscordClient(
                token=self.config.discord_bot_token,
                channel_id=int(self.config.discord_channel_id),
                mention_role_id=self.config.discord_mention_role_id,
            )
            self.notification_service = NotificationService(
                database=self.database,
                teams=self.teams,
                discord_client=self.discord_client,
                notify_minutes_before=self.config.notify_minutes_before,
                clock=clock,
            )

    def _signal_handler(self, signum, frame):
        """Handle shutdown signals"""
        logger.info(f"Received signal {signum}, shutting down gracefully...")
        self.running = False

    async def start(self):
        """Run until SIGINT/SIGTERM"""
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

        self.running = True
        logger.info("Starting match scheduler...")
        self.teams.refresh()
        self.match_cache.refresh()

        discord_task = None
        if self.discord_client is not None:
            discord_task = asyncio.create_task(self.discord_client.start())
            # Wait a bit for Discord to connect
            await asyncio.sleep(2)

        self._tasks = [
            asyncio.create_task(self._half_hourly_loop(
                "expiration sweep", self.config.expiration_sweep_offset_minutes, self.run_expiration_sweep
            )),
            asyncio.create_task(self._weekly_loop(
                "recurring sweep",
                self.config.recurring_sweep_weekday,
                self.config.recurring_sweep_time,
                self.run_recurring_sweep,
            )),
            asyncio.create_task(self._weekly_loop(
                "proposal expiry",
                self.config.proposal_expiry_weekday,
                self.config.proposal_expiry_time,
                self.run_proposal_expiry,
            )),
        ]
        if self.config.fixture_feeds:
            self._tasks.append(asyncio.create_task(self._fixture_loop()))
        else:
            logger.info("No fixture feeds configured; set FIXTURE_FEEDS_FILE or FIXTURE_FEEDS to import fixtures")
        if self.notification_service is not None:
            self._tasks.append(asyncio.create_task(self._reminder_loop()))

        try:
            while self.running:
                await asyncio.sleep(1)
        finally:
            logger.info("Stopping services...")
            for task in self._tasks:
                task.cancel()
            await asyncio.gather(*self._tasks, return_exceptions=True)

            if self.discord_client is not None:
                await self.discord_client.close()
                discord_task.cancel()

            logger.info("Match scheduler stopped")

    async def run_expiration_sweep(self):
        await asyncio.to_thread(self.expiration.expire_scheduled_matches)

    async def run_recurring_sweep(self):
        await asyncio.to_thread(self.templates.apply_recurring_templates)

    async def run_proposal_expiry(self):
        await asyncio.to_thread(self.expiration.expire_proposals)

    async def run_fixture_import(self):
        await asyncio.to_thread(self.fixture_importer.import_all)

    async def _run_job(self, name: str, job: Callable[[], Awaitable]):
        try:
            await job()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error in {name}: {e}", exc_info=True)

    async def _half_hourly_loop(self, name: str, offset_minutes: int, job: Callable[[], Awaitable]):
        logger.info(f"Starting {name} loop (:{offset_minutes:02d} and :{30 + offset_minutes:02d})")
        while self.running:
            now = self.clock()
            await asyncio.sleep(seconds_until(next_half_hour_run(now, offset_minutes), now))
            if self.running:
                await self._run_job(name, job)

    async def _weekly_loop(self, name: str, weekday: str, at: str, job: Callable[[], Awaitable]):
        logger.info(f"Starting {name} loop (every {weekday} {at} UTC)")
        while self.running:
            now = self.clock()
            target = next_weekly_run(now, weekday, at)
            logger.debug(f"Next {name} at {target}")
            await asyncio.sleep(seconds_until(target, now))
            if self.running:
                await self._run_job(name, job)

    async def _fixture_loop(self):
        """Import immediately on startup, then on interval"""
        logger.info("Starting fixture import loop...")
        await self._run_job("fixture import", self.run_fixture_import)
        while self.running:
            await asyncio.sleep(self.config.fixture_fetch_interval * 60)
            if self.running:
                await self._run_job("fixture import", self.run_fixture_import)

    async def _reminder_loop(self):
        logger.info(f"Starting reminder loop (check every {REMINDER_CHECK_INTERVAL}s)")
        while self.running:
            await self._run_job("reminder check", self.notification_service.check_and_notify)
            await asyncio.sleep(REMINDER_CHECK_INTERVAL)


async def main():
    """Main entry point"""
    try:
        app = MatchSchedulerApp()
        await app.start()
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


def run():
    """Console script entry point"""
    quiet_libraries()
    asyncio.run(main())


if __name__ == "__main__":
    run()
