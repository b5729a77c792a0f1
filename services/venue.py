"""
Discord side of the venue: channel lookup, plain messages, moderator checks.
"""

from __future__ import annotations

from typing import Optional

import discord

import config
from logger import setup_logger
from services.retry import LOW, MEDIUM, with_retry, with_retry_or_none


logger = setup_logger(__name__, config.LOG_FILE, config.LOG_LEVEL)


async def resolve_channel(client: discord.Client, channel_id: str) -> Optional[discord.abc.GuildChannel]:
    """Cache first, then the API."""
    channel = client.get_channel(int(channel_id))
    if channel is not None:
        return channel
    return await with_retry_or_none(lambda: client.fetch_channel(int(channel_id)), LOW)


def is_moderator(member: object) -> bool:
    perms = getattr(member, "guild_permissions", None)
    if perms is None:
        return False
    return any(getattr(perms, name, False) for name in config.ADMIN_PERMISSIONS)


class DiscordVenue:
    def __init__(self, client: discord.Client) -> None:
        self.client = client

    async def send_message(self, channel_id: str, content: str) -> Optional[str]:
        channel = await resolve_channel(self.client, channel_id)
        if channel is None or not isinstance(channel, discord.abc.Messageable):
            logger.warning(f"Channel {channel_id} not found, message not sent")
            return None
        message = await with_retry(
            lambda: channel.send(content, allowed_mentions=discord.AllowedMentions(roles=True, users=True)),
            MEDIUM,
        )
        return str(message.id)

    async def delete_message(self, channel_id: str, message_id: str) -> bool:
        channel = await resolve_channel(self.client, channel_id)
        if channel is None or not isinstance(channel, discord.abc.Messageable):
            return False
        try:
            message = channel.get_partial_message(int(message_id))
            await with_retry(message.delete, LOW)
            return True
        except discord.NotFound:
            # Already gone.
            return True

    async def notify_author(self, content: str) -> bool:
        """DM the bot author (shutdown notices); False when unset or unreachable."""
        if not config.AUTHOR_ID:
            return False
        user = self.client.get_user(int(config.AUTHOR_ID))
        if user is None:
            user = await with_retry_or_none(lambda: self.client.fetch_user(int(config.AUTHOR_ID)), LOW)
        if user is None:
            return False
        return await with_retry_or_none(lambda: user.send(content), LOW) is not None
