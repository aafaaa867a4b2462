"""Discord bot client for match reminders"""
import asyncio
from typing import Optional

import discord
from discord.ext import commands

from ..utils.logger import setup_logger

logger = setup_logger(__name__)


class DiscordClient:
    """Posts messages into one channel"""

    def __init__(self, token: str, channel_id: int, mention_role_id: Optional[int] = None):
        """
        Initialize Discord client

        Args:
            token: Discord bot token
            channel_id: Channel ID to post reminders in
            mention_role_id: Optional role ID mentioned at the top of each message
        """
        self.token = token
        self.channel_id = int(channel_id)
        self.mention_role_id = int(mention_role_id) if mention_role_id else None

        intents = discord.Intents.default()
        self.bot = commands.Bot(command_prefix='!', intents=intents)

        @self.bot.event
        async def on_ready():
            logger.info(f"Discord bot logged in as {self.bot.user}, posting to channel {self.channel_id}")

    async def start(self):
        await self.bot.start(self.token)

    async def close(self):
        await self.bot.close()

    def with_mentions(self, text: str) -> str:
        if self.mention_role_id:
            return f"<@&{self.mention_role_id}>\n{text}"
        return text

    async def send_message(self, text: str) -> bool:
        """
        Send a message to the configured channel

        Returns:
            True if the message was sent
        """
        try:
            channel = self.bot.get_channel(self.channel_id)
            if not channel:
                logger.error(f"Channel {self.channel_id} not found; is the bot in the server?")
                return False

            if not channel.permissions_for(channel.guild.me).send_messages:
                logger.error(f"Bot lacks 'Send Messages' permission in channel {self.channel_id}")
                return False

            await channel.send(self.with_mentions(text))
            return True

        except discord.errors.Forbidden as e:
            logger.error(f"Permission denied posting to channel {self.channel_id}: {e}")
            return False
        except discord.errors.HTTPException as e:
            logger.error(f"Discord API error sending message: {e}")
            return False

    async def send_with_retry(self, text: str, max_retries: int = 3) -> bool:
        """Send with exponential backoff between attempts"""
        for attempt in range(max_retries):
            if await self.send_message(text):
                return True

            if attempt < max_retries - 1:
                wait_time = 2 ** attempt
                logger.info(f"Retrying message in {wait_time} seconds...")
                await asyncio.sleep(wait_time)

        logger.error(f"Failed to send message after {max_retries} attempts")
        return False
