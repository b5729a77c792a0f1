"""
Voice rooms of a started session: one group room and two team rooms.

Rooms are hidden from @everyone; participants (and spectators) get per-member
overwrites which are flipped on drop in / drop out.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Sequence

import discord

import config
from logger import setup_logger
from lobby.errors import Severity, report_error
from services.retry import HIGH, LOW, MEDIUM, with_retry, with_retry_or_none
from services.venue import resolve_channel


logger = setup_logger(__name__, config.LOG_FILE, config.LOG_LEVEL)

VOICE_NAMES = ["👥 Group", "🔵 Team A", "🔴 Team B"]

MEMBER_ALLOW = discord.PermissionOverwrite(connect=True, view_channel=True, speak=True)
MEMBER_DENY = discord.PermissionOverwrite(connect=False, view_channel=False, speak=False)


class DiscordVoiceRooms:
    def __init__(self, client: discord.Client) -> None:
        self.client = client

    async def _room(self, channel_id: str) -> Optional[discord.VoiceChannel]:
        channel = await resolve_channel(self.client, channel_id)
        return channel if isinstance(channel, discord.VoiceChannel) else None

    async def create_rooms(
        self, guild_id: str, channel_id: str, member_ids: Sequence[str], short_id: str
    ) -> List[str]:
        guild = self.client.get_guild(int(guild_id))
        if guild is None:
            logger.warning(f"Guild {guild_id} not cached, no voice channels created")
            return []
        parent = await resolve_channel(self.client, channel_id)
        category = getattr(parent, "category", None)

        overwrites: Dict[object, discord.PermissionOverwrite] = {
            guild.default_role: discord.PermissionOverwrite(connect=False, view_channel=False),
            guild.me: discord.PermissionOverwrite(connect=True, view_channel=True, manage_channels=True),
        }
        for user_id in member_ids:
            overwrites[discord.Object(id=int(user_id), type=discord.Member)] = MEMBER_ALLOW

        created: List[str] = []
        for name in VOICE_NAMES:
            try:
                room = await with_retry(
                    lambda: guild.create_voice_channel(f"{name} - {short_id}", category=category, overwrites=overwrites),
                    HIGH,
                )
                created.append(str(room.id))
            except Exception as e:
                report_error(logger, f"Failed to create voice channel {name}", Severity.HIGH, e, short_id=short_id)
        return created

    async def grant_access(self, channel_ids: Sequence[str], user_id: str) -> None:
        member = discord.Object(id=int(user_id), type=discord.Member)
        for channel_id in channel_ids:
            room = await self._room(channel_id)
            if room is None:
                continue
            await with_retry_or_none(lambda: room.set_permissions(member, overwrite=MEMBER_ALLOW), MEDIUM)

    async def revoke_access(self, channel_ids: Sequence[str], user_id: str, disconnect: bool = True) -> None:
        member = discord.Object(id=int(user_id), type=discord.Member)
        for channel_id in channel_ids:
            room = await self._room(channel_id)
            if room is None:
                continue
            await with_retry_or_none(lambda: room.set_permissions(member, overwrite=MEMBER_DENY), MEDIUM)

            if disconnect:
                connected = next((m for m in room.members if str(m.id) == str(user_id)), None)
                if connected is not None:
                    await with_retry_or_none(lambda: connected.move_to(None), LOW)
                    logger.info(f"Disconnected {user_id} from voice channel {channel_id}")

    async def delete_rooms(self, channel_ids: Sequence[str]) -> None:
        for channel_id in channel_ids:
            room = await self._room(channel_id)
            if room is None:
                continue
            try:
                await with_retry(room.delete, MEDIUM)
            except discord.NotFound:
                continue
            except Exception as e:
                report_error(logger, "Failed to delete voice channel", Severity.MEDIUM, e, channel_id=channel_id)
