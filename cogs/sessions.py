"""
Slash commands and announcement buttons.

Every handler converts lobby guard rejections into an ephemeral reply; anything
else is reported and answered with a generic failure.
"""

from __future__ import annotations

import time
from typing import Awaitable, Callable, Dict, Optional

import discord
from discord import app_commands
from discord.ext import commands

import config
from logger import setup_logger
from lobby.errors import GuardRejection, OperationInProgress, Rejection, Severity, report_error
from lobby.lifecycle import SessionLifecycle
from lobby.models import Participant
from lobby.waitlist import WaitlistActions
from services import announcements as ui
from services.announcements import DiscordAnnouncements, status_lines
from services.metrics import record_interaction
from services.venue import is_moderator


logger = setup_logger(__name__, config.LOG_FILE, config.LOG_LEVEL)

ButtonHandler = Callable[[discord.Interaction, str, str], Awaitable[None]]


def rejection_text(error: GuardRejection) -> str:
    if isinstance(error, OperationInProgress):
        return config.PROCESSING_MESSAGES.get(error.operation.value, config.ERROR_MESSAGES["operation_in_progress"])
    return config.ERROR_MESSAGES.get(error.reason.value, config.ERROR_MESSAGES["generic"])


def interaction_kind(interaction: discord.Interaction) -> str:
    """Metrics label: the command name or button id, else the raw interaction type."""
    data = interaction.data or {}
    if interaction.type is discord.InteractionType.application_command and data.get("name"):
        return str(data["name"])
    if interaction.type is discord.InteractionType.component and data.get("custom_id"):
        return str(data["custom_id"])
    return interaction.type.name


def rank_of(guild_id: Optional[int], member: object) -> Optional[str]:
    if guild_id is None or str(guild_id) != str(config.RANK_GUILD_ID):
        return None
    role_ids = {str(r.id) for r in getattr(member, "roles", [])}
    for rank in config.RANK_ROLES.values():
        if rank["id"] in role_ids:
            return rank["name"]
    return None


async def reply(interaction: discord.Interaction, content: str) -> None:
    try:
        if interaction.response.is_done():
            await interaction.followup.send(content, ephemeral=True)
        else:
            await interaction.response.send_message(content, ephemeral=True)
    except discord.HTTPException as e:
        report_error(logger, "Failed to reply to interaction", Severity.LOW, e, interaction_id=interaction.id)


class SessionsCog(commands.Cog):
    def __init__(
        self,
        bot: commands.Bot,
        lifecycle: SessionLifecycle,
        waitlist: WaitlistActions,
        renderer: DiscordAnnouncements,
        started_at: Optional[float] = None,
        telemetry_enabled: bool = False,
    ) -> None:
        self.bot = bot
        self.lifecycle = lifecycle
        self.waitlist = waitlist
        self.store = lifecycle.store
        self.renderer = renderer
        self.started_at = started_at or time.time()
        self.telemetry_enabled = telemetry_enabled
        self.buttons: Dict[str, ButtonHandler] = {
            ui.SIGN_UP: self._sign_up,
            ui.SIGN_OUT: self._sign_out,
            ui.START_NOW: self._start_now,
            ui.CANCEL: self._cancel,
            ui.DROP_IN: self._drop_in,
            ui.DROP_OUT: self._drop_out,
            ui.JOIN_QUEUE: self._join_queue,
            ui.LEAVE_QUEUE: self._leave_queue,
            ui.FINISH: self._finish,
            ui.SPECTATE: self._spectate,
            ui.STOP_SPECTATE: self._stop_spectating,
            ui.ROLE_SELECT: self._select_role,
        }

    def _participant(self, interaction: discord.Interaction) -> Participant:
        return Participant(
            user_id=str(interaction.user.id),
            role=config.WEAPON_ROLES[0],
            rank=rank_of(interaction.guild_id, interaction.user),
        )

    async def _guarded(self, interaction: discord.Interaction, action: str, coro: Awaitable[object]) -> bool:
        try:
            await coro
            return True
        except GuardRejection as e:
            logger.debug(f"{action} rejected for {interaction.user.id}: {e}")
            await reply(interaction, rejection_text(e))
        except Exception as e:
            report_error(
                logger,
                f"Error handling {action}",
                Severity.MEDIUM,
                e,
                user_id=interaction.user.id,
                message_id=getattr(interaction.message, "id", None),
            )
            await reply(interaction, config.ERROR_MESSAGES["generic"])
        return False

    # ---------------------------
    # Buttons / select
    # ---------------------------
    @commands.Cog.listener()
    async def on_interaction(self, interaction: discord.Interaction) -> None:
        record_interaction(interaction_kind(interaction))
        if interaction.type is not discord.InteractionType.component or interaction.message is None:
            return
        custom_id = (interaction.data or {}).get("custom_id")
        handler = self.buttons.get(custom_id)
        if handler is None:
            return

        event_id = str(interaction.message.id)
        if not self.store.exists(event_id):
            await reply(interaction, config.ERROR_MESSAGES[Rejection.SESSION_NOT_FOUND.value])
            return

        await interaction.response.defer()
        await handler(interaction, event_id, str(interaction.user.id))

    async def _sign_up(self, interaction, event_id, user_id):
        await self._guarded(interaction, "sign up", self.lifecycle.sign_up(event_id, self._participant(interaction)))

    async def _sign_out(self, interaction, event_id, user_id):
        await self._guarded(interaction, "sign out", self.lifecycle.sign_out(event_id, user_id))

    async def _start_now(self, interaction, event_id, user_id):
        await self._guarded(interaction, "start now", self.lifecycle.force_start(event_id, user_id))

    async def _cancel(self, interaction, event_id, user_id):
        await self._guarded(
            interaction, "cancel", self.lifecycle.cancel(event_id, user_id, is_moderator=is_moderator(interaction.user))
        )

    async def _finish(self, interaction, event_id, user_id):
        await self._guarded(
            interaction, "finish", self.lifecycle.finish(event_id, user_id, is_moderator=is_moderator(interaction.user))
        )

    async def _drop_in(self, interaction, event_id, user_id):
        await self._guarded(interaction, "drop in", self.waitlist.drop_in(event_id, self._participant(interaction)))

    async def _drop_out(self, interaction, event_id, user_id):
        await self._guarded(interaction, "drop out", self.waitlist.drop_out(event_id, user_id))

    async def _join_queue(self, interaction, event_id, user_id):
        await self._guarded(interaction, "join queue", self.waitlist.join_queue(event_id, user_id))

    async def _leave_queue(self, interaction, event_id, user_id):
        await self._guarded(interaction, "leave queue", self.waitlist.leave_queue(event_id, user_id))

    async def _spectate(self, interaction, event_id, user_id):
        await self._guarded(interaction, "spectate", self.waitlist.spectate(event_id, user_id))

    async def _stop_spectating(self, interaction, event_id, user_id):
        await self._guarded(interaction, "stop spectating", self.waitlist.stop_spectating(event_id, user_id))

    async def _select_role(self, interaction, event_id, user_id):
        values = (interaction.data or {}).get("values") or []
        if not values or values[0] not in config.WEAPON_ROLES:
            return
        await self._guarded(interaction, "role select", self.lifecycle.select_role(event_id, user_id, values[0]))

    # ---------------------------
    # Slash commands
    # ---------------------------
    @app_commands.command(name="create", description="Create an 8s event")
    @app_commands.describe(
        casual="Casual event (pings the casual role)",
        time="Start after this many minutes, even if not full",
        info="Extra information shown on the announcement",
    )
    async def create(
        self,
        interaction: discord.Interaction,
        casual: bool = False,
        time: Optional[app_commands.Range[int, 1, config.MAX_COUNTDOWN_MINUTES]] = None,
        info: Optional[str] = None,
    ) -> None:
        if interaction.guild is None:
            await reply(interaction, config.ERROR_MESSAGES["no_guild"])
            return
        if not self.lifecycle.accepting:
            await reply(interaction, config.ERROR_MESSAGES[Rejection.SHUTTING_DOWN.value])
            return
        user_id = str(interaction.user.id)
        if self.store.is_user_in_any_event(user_id):
            await reply(interaction, config.ERROR_MESSAGES[Rejection.ALREADY_SIGNED_UP.value])
            return

        role = discord.utils.get(interaction.guild.roles, name=ui.ping_role_name(casual))
        await interaction.response.send_message(
            content=role.mention if role else config.TITLES["casual" if casual else "competitive"],
            allowed_mentions=discord.AllowedMentions(roles=True),
        )
        message = await interaction.original_response()
        event_id = str(message.id)

        ok = await self._guarded(
            interaction,
            "create",
            self.lifecycle.create_session(
                event_id,
                self._participant(interaction),
                str(interaction.channel_id),
                str(interaction.guild.id),
                countdown_minutes=time,
                casual=casual,
                info=info,
            ),
        )
        if not ok:
            try:
                await message.delete()
            except discord.HTTPException as e:
                report_error(logger, "Failed to delete rejected announcement", Severity.LOW, e, event_id=event_id)
            return
        await self.lifecycle.updater.flush(event_id)

    @app_commands.command(name="kick", description="Kick a participant from your event")
    @app_commands.describe(user="The participant to remove")
    async def kick(self, interaction: discord.Interaction, user: discord.User) -> None:
        await interaction.response.defer(ephemeral=True)
        ok = await self._guarded(
            interaction, "kick", self.lifecycle.kick(str(interaction.user.id), str(user.id))
        )
        if ok:
            await reply(interaction, config.SUCCESS_MESSAGES["kicked"].format(user_id=user.id))

    @app_commands.command(name="reping", description="Ping the event role again for your event")
    async def reping(self, interaction: discord.Interaction) -> None:
        if interaction.guild is None:
            await reply(interaction, config.ERROR_MESSAGES["no_guild"])
            return
        event_id = self.store.user_owns_event(str(interaction.user.id))
        snapshot = self.store.snapshot(event_id) if event_id else None
        if snapshot is not None and self.renderer.ping_role(snapshot) is None:
            await reply(interaction, config.ERROR_MESSAGES["role_not_found"])
            return

        await interaction.response.defer(ephemeral=True)
        ok = await self._guarded(interaction, "reping", self.lifecycle.reping(str(interaction.user.id)))
        if ok:
            await reply(interaction, config.SUCCESS_MESSAGES["repinged"])

    @app_commands.command(name="dropout-all", description="Leave every event, queue and spectator slot")
    async def dropout_all(self, interaction: discord.Interaction) -> None:
        await interaction.response.defer(ephemeral=True)
        ok = await self._guarded(interaction, "dropout-all", self.waitlist.dropout_all(str(interaction.user.id)))
        if ok:
            await reply(interaction, config.SUCCESS_MESSAGES["dropout_all"])

    @app_commands.command(name="toggle-spectators", description="Allow or disallow spectators for your event")
    async def toggle_spectators(self, interaction: discord.Interaction) -> None:
        await interaction.response.defer(ephemeral=True)
        result: Dict[str, bool] = {}

        async def toggle() -> None:
            result["enabled"] = await self.lifecycle.toggle_spectators(str(interaction.user.id))

        if await self._guarded(interaction, "toggle-spectators", toggle()):
            key = "spectators_enabled" if result["enabled"] else "spectators_disabled"
            await reply(interaction, config.SUCCESS_MESSAGES[key])

    @app_commands.command(name="status", description="Show bot status")
    async def status(self, interaction: discord.Interaction) -> None:
        rosters = self.store.get_all_participants()
        lines = status_lines(
            self.started_at,
            self.bot.latency,
            self.telemetry_enabled,
            len(rosters),
            sum(len(p) for _, p in rosters),
        )
        await reply(interaction, "\n".join(lines))
