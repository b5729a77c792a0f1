"""
Announcement rendering: embed, buttons, role select and the short texts posted
around a session (reping, voice list, thread notices).
"""

from __future__ import annotations

import time
from typing import List, Optional, Sequence

import discord

import config
from logger import setup_logger
from lobby.models import LifecycleEvent, SessionSnapshot, SessionStatus
from services.retry import MEDIUM, with_retry
from services.venue import resolve_channel


logger = setup_logger(__name__, config.LOG_FILE, config.LOG_LEVEL)

# custom_id values dispatched by cogs/sessions.py
SIGN_UP = "signup"
SIGN_OUT = "signout"
START_NOW = "startnow"
CANCEL = "cancel"
DROP_IN = "dropin"
DROP_OUT = "dropout"
JOIN_QUEUE = "joinqueue"
LEAVE_QUEUE = "leavequeue"
FINISH = "finish"
SPECTATE = "spectate"
STOP_SPECTATE = "stopspectate"
ROLE_SELECT = "select"


def event_link(snapshot: SessionSnapshot) -> str:
    return f"https://discord.com/channels/{snapshot.guild_id or '@me'}/{snapshot.channel_id}/{snapshot.event_id}"


def ping_role_name(casual: bool) -> str:
    return config.PING_ROLE_NAMES["casual" if casual else "competitive"]


def start_field(snapshot: SessionSnapshot) -> str:
    if snapshot.status is SessionStatus.STARTED or snapshot.has_started:
        return "✅ Started"
    if snapshot.duration is not None:
        return f"⏳ <t:{int(snapshot.start_time + snapshot.duration)}:R>"
    return f"👥 When {snapshot.capacity} players have signed up"


def participants_field(snapshot: SessionSnapshot) -> str:
    if not snapshot.participants:
        return "-"
    lines = []
    for i, p in enumerate(snapshot.participants, start=1):
        line = f"{i}. <@{p.user_id}>"
        if p.role:
            line += f" - {p.role}"
        if p.rank:
            line += f" ({p.rank})"
        if p.user_id == snapshot.creator:
            line += " 👑"
        lines.append(line)
    return "\n".join(lines)


def build_embed(snapshot: SessionSnapshot) -> discord.Embed:
    status = snapshot.status.value
    embed = discord.Embed(
        title=config.TITLES["casual" if snapshot.casual else "competitive"],
        color=config.COLORS[status],
        description=snapshot.info or None,
    )
    embed.add_field(name="Status", value=config.STATUS_MESSAGES[status], inline=True)
    embed.add_field(name="Start", value=start_field(snapshot), inline=True)
    embed.add_field(
        name=f"Participants ({len(snapshot.participants)}/{snapshot.capacity})",
        value=participants_field(snapshot),
        inline=False,
    )
    if snapshot.queue:
        embed.add_field(
            name=f"Queue ({len(snapshot.queue)})",
            value="\n".join(f"{i}. <@{u}>" for i, u in enumerate(snapshot.queue, start=1)),
            inline=False,
        )
    if snapshot.spectators_enabled:
        embed.add_field(
            name=f"Spectators ({len(snapshot.spectators)}/{config.MAX_SPECTATORS})",
            value="\n".join(f"<@{u}>" for u in snapshot.spectators) or "-",
            inline=False,
        )
    embed.set_footer(text=f"Match {snapshot.short_id}")
    return embed


def _button(label: str, custom_id: str, style: discord.ButtonStyle, row: int) -> discord.ui.Button:
    return discord.ui.Button(label=label, custom_id=custom_id, style=style, row=row)


def build_view(snapshot: SessionSnapshot) -> Optional[discord.ui.View]:
    """Components for the current phase; None once the session is over."""
    if snapshot.status.is_terminal:
        return None

    view = discord.ui.View(timeout=None)
    if snapshot.status is SessionStatus.STARTED:
        view.add_item(_button("Drop In", DROP_IN, discord.ButtonStyle.success, 0))
        view.add_item(_button("Drop Out", DROP_OUT, discord.ButtonStyle.secondary, 0))
        view.add_item(_button("Join Queue", JOIN_QUEUE, discord.ButtonStyle.primary, 0))
        view.add_item(_button("Leave Queue", LEAVE_QUEUE, discord.ButtonStyle.secondary, 0))
        view.add_item(_button("Finish", FINISH, discord.ButtonStyle.danger, 0))
    else:
        view.add_item(_button("Sign Up", SIGN_UP, discord.ButtonStyle.success, 0))
        view.add_item(_button("Sign Out", SIGN_OUT, discord.ButtonStyle.secondary, 0))
        view.add_item(_button("Start Now", START_NOW, discord.ButtonStyle.primary, 0))
        view.add_item(_button("Cancel", CANCEL, discord.ButtonStyle.danger, 0))

    if snapshot.spectators_enabled:
        view.add_item(_button("Spectate", SPECTATE, discord.ButtonStyle.secondary, 1))
        view.add_item(_button("Stop Spectating", STOP_SPECTATE, discord.ButtonStyle.secondary, 1))

    view.add_item(
        discord.ui.Select(
            custom_id=ROLE_SELECT,
            placeholder="Select your role",
            options=[discord.SelectOption(label=role, value=role) for role in config.WEAPON_ROLES[:25]],
            row=2,
        )
    )
    return view


class DiscordAnnouncements:
    """Edits the announcement message; also formats reping and thread texts."""

    def __init__(self, client: discord.Client) -> None:
        self.client = client

    async def render(self, snapshot: SessionSnapshot) -> None:
        channel = await resolve_channel(self.client, snapshot.channel_id)
        if channel is None or not hasattr(channel, "get_partial_message"):
            logger.warning(f"Announcement channel {snapshot.channel_id} not available")
            return
        message = channel.get_partial_message(int(snapshot.event_id))
        embed = build_embed(snapshot)
        view = build_view(snapshot)
        await with_retry(lambda: message.edit(embed=embed, view=view), MEDIUM)

    def ping_role(self, snapshot: SessionSnapshot) -> Optional[discord.Role]:
        if not snapshot.guild_id:
            return None
        guild = self.client.get_guild(int(snapshot.guild_id))
        if guild is None:
            return None
        return discord.utils.get(guild.roles, name=ping_role_name(snapshot.casual))

    def reping_content(self, snapshot: SessionSnapshot, missing: int) -> str:
        role = self.ping_role(snapshot)
        mention = role.mention if role else f"@{ping_role_name(snapshot.casual)}"
        plural = "player" if missing == 1 else "players"
        return f"{mention} {missing} more {plural} needed! {event_link(snapshot)}"

    def voice_list_content(self, snapshot: SessionSnapshot, channel_ids: Sequence[str]) -> str:
        return "**Voice Channels Created**\n" + "\n".join(f"<#{cid}>" for cid in channel_ids)

    def notice_content(self, kind: LifecycleEvent, user_id: str) -> str:
        if kind is LifecycleEvent.OWNERSHIP_TRANSFERRED:
            return f"👑 <@{user_id}> is now the event owner."
        if kind is LifecycleEvent.PROMOTED_FROM_QUEUE:
            return f"⬆️ <@{user_id}> was promoted from the queue and joined the event!"
        return f"<@{user_id}>: {kind.value}"


def status_lines(started_at: float, latency: float, telemetry_enabled: bool, sessions: int, participants: int) -> List[str]:
    uptime = int(time.time() - started_at)
    hours, rem = divmod(uptime, 3600)
    minutes, seconds = divmod(rem, 60)
    return [
        f"**Uptime:** {hours}h {minutes}m {seconds}s",
        f"**Latency:** {round(latency * 1000)}ms",
        f"**Telemetry:** {'enabled' if telemetry_enabled else 'disabled'}",
        f"**Active events:** {sessions}",
        f"**Participants:** {participants}",
    ]
