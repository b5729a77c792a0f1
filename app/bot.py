import asyncio
import signal
import sys
import time
from typing import Optional

import discord
from discord.ext import commands

import config
from logger import quiet_library_loggers, setup_logger
from lobby.lifecycle import SessionLifecycle
from lobby.resources import SessionResources
from lobby.settings import LobbySettings
from lobby.store import SessionStore
from lobby.sweep import SweepTimer
from lobby.teardown import TeardownOrchestrator
from lobby.updates import AnnouncementUpdater
from lobby.waitlist import WaitlistActions
from app.shutdown import GracefulShutdown
from cogs.sessions import SessionsCog
from services.announcements import DiscordAnnouncements
from services.metrics import start_metrics_server, stop_metrics_server
from services.telemetry import TelemetryService
from services.threads import DiscordThreads
from services.venue import DiscordVenue
from services.voice_rooms import DiscordVoiceRooms


logger = setup_logger(__name__, config.LOG_FILE, config.LOG_LEVEL)


class BotRuntime:
    """
    Discord client + lobby wiring.
    Owns the single SessionStore and hands it to every collaborator.
    """

    def __init__(self):
        intents = discord.Intents.default()
        intents.members = True
        intents.voice_states = True

        self.bot = commands.Bot(command_prefix=commands.when_mentioned, intents=intents)
        self.started_at = time.time()

        self.settings = LobbySettings.from_config(config)
        self.store = SessionStore(self.settings)

        self.telemetry = TelemetryService(
            config.TELEMETRY_URL,
            config.TELEMETRY_TOKEN,
            timeout_total_seconds=config.TELEMETRY_HTTP_TIMEOUT_TOTAL_SECONDS,
            timeout_connect_seconds=config.TELEMETRY_HTTP_TIMEOUT_CONNECT_SECONDS,
        )
        self.venue = DiscordVenue(self.bot)
        self.threads = DiscordThreads(self.bot)
        self.voice = DiscordVoiceRooms(self.bot)
        self.renderer = DiscordAnnouncements(self.bot)

        self.updater = AnnouncementUpdater(self.store, self.renderer, self.settings.update_debounce_seconds)
        self.resources = SessionResources(self.store, self.threads, self.voice, self.renderer)
        self.teardown = TeardownOrchestrator(self.store, self.threads, self.voice, self.venue)
        self.lifecycle = SessionLifecycle(
            self.store,
            self.updater,
            self.resources,
            self.teardown,
            self.venue,
            telemetry=self.telemetry,
        )
        self.waitlist = WaitlistActions(self.lifecycle)
        self.sweep = SweepTimer(self.lifecycle, config.SWEEP_INTERVAL_SECONDS)
        self.shutdown = GracefulShutdown(
            self.lifecycle,
            notify=self.venue.notify_author,
            closers=[self.sweep.stop, self.updater.close, self.telemetry.close, stop_metrics_server],
            close_client=self.bot.close,
            max_attempts=config.SHUTDOWN_MAX_ATTEMPTS,
        )
        self._shutdown_task: Optional[asyncio.Task] = None

        self.bot.setup_hook = self._setup_hook
        self._register_handlers()

    async def _setup_hook(self) -> None:
        start_metrics_server(config.METRICS_PORT)
        await self.bot.add_cog(
            SessionsCog(
                self.bot,
                self.lifecycle,
                self.waitlist,
                self.renderer,
                started_at=self.started_at,
                telemetry_enabled=self.telemetry.enabled,
            )
        )
        if config.SYNC_COMMANDS_ON_STARTUP:
            synced = await self.bot.tree.sync()
            logger.info(f"Synced {len(synced)} application command(s)")

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self._on_signal, sig.name)
            except (NotImplementedError, RuntimeError):
                # Windows: fall back to KeyboardInterrupt handling in run().
                logger.debug(f"Signal handler for {sig.name} not supported on this platform")

    def _on_signal(self, name: str) -> None:
        if self._shutdown_task is None:
            self._shutdown_task = asyncio.get_running_loop().create_task(self.shutdown.run(name))

    def _register_handlers(self):
        @self.bot.event
        async def on_ready():
            logger.info(f"Bot started: {self.bot.user} (dev={config.DEV}, capacity={self.settings.max_participants})")
            self.lifecycle.system_actor = str(self.bot.user.id) if self.bot.user else self.lifecycle.system_actor
            self.sweep.start()

        @self.bot.event
        async def on_disconnect():
            logger.warning("Gateway connection lost, waiting for resume")

        @self.bot.tree.error
        async def on_app_command_error(interaction: discord.Interaction, error: discord.app_commands.AppCommandError):
            logger.error(f"Application command error: {error}", exc_info=error)

    def run(self):
        token = config.DISCORD_TOKEN
        if not token:
            logger.error("DISCORD_TOKEN not found")
            sys.exit(1)

        quiet_library_loggers()
        try:
            self.bot.run(token, log_handler=None)
        except KeyboardInterrupt:
            pass
        finally:
            logger.info("Shutting down...")


def run_bot():
    runtime = BotRuntime()
    runtime.run()
