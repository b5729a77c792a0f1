"""
Private discussion threads for started sessions.
"""

from __future__ import annotations

from typing import Optional

import discord

import config
from logger import setup_logger
from services.retry import HIGH, LOW, MEDIUM, with_retry
from services.venue import resolve_channel


logger = setup_logger(__name__, config.LOG_FILE, config.LOG_LEVEL)

THREAD_ARCHIVE_MINUTES = 60


class DiscordThreads:
    def __init__(self, client: discord.Client) -> None:
        self.client = client

    async def _thread(self, thread_id: str) -> Optional[discord.Thread]:
        channel = await resolve_channel(self.client, thread_id)
        return channel if isinstance(channel, discord.Thread) else None

    async def create_thread(self, channel_id: str, name: str) -> Optional[str]:
        parent = await resolve_channel(self.client, channel_id)
        if not isinstance(parent, discord.TextChannel):
            logger.warning(f"Cannot create thread: {channel_id} is not a text channel")
            return None
        thread = await with_retry(
            lambda: parent.create_thread(
                name=name,
                type=discord.ChannelType.private_thread,
                invitable=False,
                auto_archive_duration=THREAD_ARCHIVE_MINUTES,
            ),
            HIGH,
        )
        logger.info(f"Created thread {thread.id} ({name})")
        return str(thread.id)

    async def add_member(self, thread_id: str, user_id: str) -> bool:
        thread = await self._thread(thread_id)
        if thread is None:
            return False
        await with_retry(lambda: thread.add_user(discord.Object(id=int(user_id))), MEDIUM)
        return True

    async def remove_member(self, thread_id: str, user_id: str) -> bool:
        thread = await self._thread(thread_id)
        if thread is None:
            return False
        try:
            await with_retry(lambda: thread.remove_user(discord.Object(id=int(user_id))), LOW)
        except discord.NotFound:
            return False
        return True

    async def send(self, thread_id: str, content: str) -> bool:
        thread = await self._thread(thread_id)
        if thread is None:
            return False
        await with_retry(lambda: thread.send(content), MEDIUM)
        return True

    async def lock_and_archive(self, thread_id: str) -> bool:
        thread = await self._thread(thread_id)
        if thread is None:
            return False
        await with_retry(lambda: thread.edit(locked=True, archived=True), MEDIUM)
        logger.info(f"Locked and archived thread {thread_id}")
        return True
