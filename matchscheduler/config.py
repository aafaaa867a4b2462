"""Configuration loading and validation"""
import os
from typing import List, Optional
from dotenv import load_dotenv

from .utils.cadence import next_weekly_run
from .utils.feed_loader import merge_feed_urls, parse_feed_links_file
from .utils.logger import setup_logger
from .utils.slots import parse_clock, parse_day
from .utils.timezone import BASE_TIMEZONE, get_timezone, now_utc

logger = setup_logger(__name__)

# Load environment variables from .env file
load_dotenv()


class Config:
    """Application configuration"""

    def __init__(self):
        """Load and validate configuration"""
        self.database_path = os.getenv("DATABASE_PATH", "data/matchscheduler.db")
        self.base_timezone = os.getenv("BASE_TIMEZONE", BASE_TIMEZONE)

        # Sweep cadence
        self.expiration_sweep_offset_minutes = self._get_int("EXPIRATION_SWEEP_OFFSET_MINUTES", 1)
        self.recurring_sweep_weekday = os.getenv("RECURRING_SWEEP_WEEKDAY", "mon").strip().lower()
        self.recurring_sweep_time = os.getenv("RECURRING_SWEEP_TIME", "04:00").strip()
        self.proposal_expiry_weekday = os.getenv("PROPOSAL_EXPIRY_WEEKDAY", "mon").strip().lower()
        self.proposal_expiry_time = os.getenv("PROPOSAL_EXPIRY_TIME", "00:15").strip()

        # Fixture feeds - can come from file or env var
        self.fixture_feeds_file = os.getenv("FIXTURE_FEEDS_FILE", "fixture_feeds.txt")
        file_feeds = parse_feed_links_file(self.fixture_feeds_file)
        feeds_str = os.getenv("FIXTURE_FEEDS", "")
        env_feeds = [url.strip() for url in feeds_str.split(",") if url.strip()]
        self.fixture_feeds: List[str] = merge_feed_urls(file_feeds, env_feeds)
        self.fixture_fetch_interval = self._get_int("FIXTURE_FETCH_INTERVAL", 60)

        # Discord reminders (optional)
        self.discord_bot_token: Optional[str] = os.getenv("DISCORD_BOT_TOKEN") or None
        self.discord_channel_id: Optional[str] = os.getenv("DISCORD_CHANNEL_ID") or None
        self.discord_mention_role_id: Optional[str] = os.getenv("DISCORD_MENTION_ROLE_ID") or None
        self.notify_minutes_before = self._get_int("NOTIFY_MINUTES_BEFORE", 15)

        self._validate()
        logger.info("Configuration loaded successfully")

    @property
    def reminders_enabled(self) -> bool:
        return bool(self.discord_bot_token and self.discord_channel_id)

    def _get_int(self, key: str, default: int) -> int:
        value = os.getenv(key)
        if value is None or not value.strip():
            return default
        try:
            return int(value)
        except ValueError:
            raise ValueError(f"{key} must be an integer, got {value!r}") from None

    def _validate(self):
        """Validate configuration values"""
        try:
            get_timezone(self.base_timezone)
        except ValueError:
            raise ValueError(f"BASE_TIMEZONE {self.base_timezone!r} is not a known timezone") from None

        if not 0 <= self.expiration_sweep_offset_minutes < 30:
            raise ValueError("EXPIRATION_SWEEP_OFFSET_MINUTES must be between 0 and 29")

        for prefix, weekday, at in (
            ("RECURRING_SWEEP", self.recurring_sweep_weekday, self.recurring_sweep_time),
            ("PROPOSAL_EXPIRY", self.proposal_expiry_weekday, self.proposal_expiry_time),
        ):
            try:
                parse_day(weekday)
            except ValueError:
                raise ValueError(f"{prefix}_WEEKDAY must be one of mon..sun, got {weekday!r}") from None
            try:
                parse_clock(at)
            except ValueError:
                raise ValueError(f"{prefix}_TIME must be HH:MM, got {at!r}") from None

        if self.fixture_fetch_interval < 1:
            raise ValueError("FIXTURE_FETCH_INTERVAL must be at least 1 minute")

        if self.notify_minutes_before < 0:
            raise ValueError("NOTIFY_MINUTES_BEFORE must be non-negative")

        # Validate Discord ids are numeric
        if self.discord_channel_id is not None:
            try:
                int(self.discord_channel_id)
            except ValueError:
                raise ValueError("DISCORD_CHANNEL_ID must be a numeric channel ID") from None
        if self.discord_mention_role_id is not None:
            try:
                int(self.discord_mention_role_id)
            except ValueError:
                raise ValueError("DISCORD_MENTION_ROLE_ID must be a numeric role ID") from None

        logger.info(f"Database: {self.database_path}")
        logger.info(f"Grid timezone: {self.base_timezone}")
        logger.info(
            f"Recurring sweep: next run {next_weekly_run(now_utc(), self.recurring_sweep_weekday, self.recurring_sweep_time)}"
        )
        logger.info(f"Fixture feeds: {len(self.fixture_feeds)} (every {self.fixture_fetch_interval} minutes)")
        if self.reminders_enabled:
            logger.info(f"Match reminders: {self.notify_minutes_before} minutes before start")
        else:
            logger.info("Match reminders: disabled (DISCORD_BOT_TOKEN / DISCORD_CHANNEL_ID not set)")
