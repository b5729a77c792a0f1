"""
Lobby Bot Configuration
=======================

1. Environment
2. Discord
3. Session capacity
4. Timings
5. Retry profiles
6. Telemetry
7. Roles & permissions
8. Logging
9. User-facing messages
"""
import os
from dotenv import load_dotenv
import logging

# ============================================================================
# 1. ENVIRONMENT
# ============================================================================
load_dotenv()

# "development" selects the reduced configuration (2-player sessions, no delays).
LOBBY_ENV = os.getenv("LOBBY_ENV", "production").strip().lower()
DEV = LOBBY_ENV == "development"

# ============================================================================
# 2. DISCORD
# ============================================================================
# Secrets stay in the environment.
DISCORD_TOKEN = os.getenv("DISCORD_TOKEN")
# Optional: user who receives a DM when the bot shuts down.
AUTHOR_ID = os.getenv("AUTHOR_ID")
# Sync application commands on startup (disable when running many restarts in a row).
SYNC_COMMANDS_ON_STARTUP = True

# ============================================================================
# 3. SESSION CAPACITY
# ============================================================================
MAX_PARTICIPANTS = 2 if DEV else 8
# Countdown-driven and forced starts need at least this many participants.
MIN_PARTICIPANTS = MAX_PARTICIPANTS
MAX_SPECTATORS = 2

# ============================================================================
# 4. TIMINGS (seconds)
# ============================================================================
# Watchdog release for processing states (starting/finishing/cancelling/cleanup).
PROCESSING_TIMEOUT_SECONDS = 30.0
# Sessions older than this are expired by the sweep.
EVENT_MAX_LIFETIME_SECONDS = 24 * 60 * 60
SWEEP_INTERVAL_SECONDS = 60.0 if DEV else 15 * 60.0
# Announcement edits are coalesced for this long.
UPDATE_DEBOUNCE_SECONDS = 0.2 if DEV else 1.0
REPING_COOLDOWN_SECONDS = 0.0 if DEV else 10 * 60.0
# Settling time of a finalizing session; shutdown waits twice this before tearing it down.
EVENT_START_DELAY_SECONDS = 0.0 if DEV else 15.0
# Gap between per-session cleanups during shutdown (Discord rate limits).
SHUTDOWN_EVENT_CLEANUP_DELAY_SECONDS = 0.0 if DEV else 2.0
# Upper bound of the /create "time" option (minutes).
MAX_COUNTDOWN_MINUTES = 120

# ============================================================================
# 5. RETRY PROFILES (platform calls)
# ============================================================================
# attempts: total tries / min_wait, max_wait: exponential backoff bounds (jittered)
RETRY_PROFILES = {
    "low": {"attempts": 3, "min_wait": 0.5, "max_wait": 5.0},
    "medium": {"attempts": 4, "min_wait": 1.0, "max_wait": 10.0},
    "high": {"attempts": 6, "min_wait": 2.0, "max_wait": 30.0},
}
# Shutdown is retried once before the process exits anyway.
SHUTDOWN_MAX_ATTEMPTS = 2

# ============================================================================
# 6. TELEMETRY
# ============================================================================
# Remote telemetry is enabled only when both values are present.
TELEMETRY_URL = os.getenv("TELEMETRY_URL")
TELEMETRY_TOKEN = os.getenv("TELEMETRY_TOKEN")
TELEMETRY_HTTP_TIMEOUT_TOTAL_SECONDS = 5.0
TELEMETRY_HTTP_TIMEOUT_CONNECT_SECONDS = 2.0
# Prometheus scrape endpoint, served at :METRICS_PORT/metrics. 0 disables it.
METRICS_PORT = int(os.getenv("METRICS_PORT", "9464"))

# ============================================================================
# 7. ROLES & PERMISSIONS
# ============================================================================
PING_ROLE_NAMES = {
    "casual": "Casual 8s",
    "competitive": "Comp 8s",
}

WEAPON_ROLES = [
    "⚫ None",
    "🔪 Slayer",
    "🏹 Skirmisher",
    "🛡️ Support",
    "⚔️ Midline",
    "🏰 Backline",
    "⚙️ Flex",
    "🥤 Cooler (Frontline)",
    "🥤 Cooler (Midline)",
    "🥤 Cooler (Backline)",
]

# discord.Permissions attribute names; any one of them makes a member a moderator.
ADMIN_PERMISSIONS = [
    "administrator",
    "manage_messages",
    "manage_channels",
    "moderate_members",
]

# Optional rank roles (role id or name) recorded next to a participant.
RANK_GUILD_ID = os.getenv("RANK_GUILD_ID", "1428966578501849193")
RANK_ROLES = {
    "1": {"name": "TX Grandmaster", "id": "1429217994168598669"},
    "2": {"name": "T1 Legend", "id": "1428998361188532264"},
    "3": {"name": "T2 Ascendant", "id": "1428997469303341166"},
    "4": {"name": "T3 Elite", "id": "1428997715106332815"},
    "5": {"name": "T4 Knight", "id": "1428998081126596618"},
    "6": {"name": "T5 Squire", "id": "1428998419250286704"},
}

# ============================================================================
# 8. LOGGING
# ============================================================================
LOG_LEVEL = logging.DEBUG if DEV else logging.INFO
LOG_FILE = os.getenv("LOG_FILE") or None  # e.g. "lobby.log"

# ============================================================================
# 9. USER-FACING MESSAGES
# ============================================================================
COLORS = {
    "open": 0x626CE9,
    "finalizing": 0xE9D662,
    "started": 0x1CFF5C,
    "finished": 0xFF1C1C,
    "cancelled": 0xFF1C1C,
    "expired": 0xFF1C1C,
    "shutdown": 0xFF1C1C,
}

STATUS_MESSAGES = {
    "open": "🟢 Open for Sign Ups",
    "finalizing": "⏳ Finalizing...",
    "started": "✅ Event Started!",
    "cancelled": "❌ Event cancelled",
    "finished": "🏁 Event Finished",
    "expired": "⏰ Event Expired (24h timeout)",
    "shutdown": "⚠️ Event closed due to bot shutdown!",
}

TITLES = {
    "casual": "[Casual] 8s Event",
    "competitive": "[Competitive] 8s Event",
}

# Keyed by lobby.errors.Rejection values.
ERROR_MESSAGES = {
    "session_not_found": "This event is no longer active.",
    "shutting_down": "The bot is shutting down. Please try again later.",
    "already_signed_up": (
        "You are already signed up for an event. Please sign out, cancel, "
        "or wait for the event to finish before joining a new one."
    ),
    "event_full": "This event is already full! You cannot sign up.",
    "not_signed_up": "You need to be signed up to perform this action.",
    "creator_only": "Only the event creator can do this.",
    "creator_only_start": "Only the event creator can start the event.",
    "creator_only_cancel": "Only the event creator or administrators can cancel this event.",
    "creator_only_finish": "Only the event creator or administrators can finish this event.",
    "creator_cannot_signout": (
        "The event creator cannot sign out. Please cancel or finish the event instead."
    ),
    "creator_cannot_spectate": "The event creator cannot spectate their own event.",
    "not_enough_participants": "Cannot start the event yet - not enough participants signed up.",
    "event_finalizing": "The event is finalizing and will start soon. Only role changes are allowed.",
    "event_started": "The event has already started. Use Drop In / Drop Out instead.",
    "event_not_started": "The event has not started yet.",
    "queue_event_not_full": "The event is not full, you can drop in directly.",
    "queue_already_in_queue": "You are already in the queue for this event.",
    "queue_already_participating": "You are already participating in an event.",
    "queue_not_in_queue": "You are not in the queue for this event.",
    "queue_spectating": "Stop spectating before joining the queue.",
    "spectate_disabled": "Spectating is disabled for this event.",
    "spectate_full": "This event already has the maximum number of spectators.",
    "spectate_already_spectating": "You are already spectating this event.",
    "spectate_not_spectating": "You are not spectating this event.",
    "cannot_kick_self": "You cannot kick yourself from your own event.",
    "kick_not_participant": "That user is not signed up for your event.",
    "reping_event_full": "Your event is already full. No need to re-ping roles.",
    "reping_cooldown": "You can only re-ping roles once every few minutes.",
    "no_event_owned": "You don't own any active events.",
    "operation_in_progress": "The event is busy, please wait...",
    "role_not_found": "Could not find the appropriate role to ping in this server.",
    "no_guild": "This command can only be used in a server.",
    "dropout_all_not_in_events": "You are not part of any event.",
    "generic": "Something went wrong. Please try again.",
}

# Keyed by lobby.models.Operation values.
PROCESSING_MESSAGES = {
    "starting": "Event is still starting, please wait...",
    "finishing": "Event is already being finished...",
    "cancelling": "Event is already being cancelled...",
    "cleanup": "Event is cleaning up, no actions can be performed anymore...",
}

SUCCESS_MESSAGES = {
    "spectators_enabled": "Spectators are now enabled for your event.",
    "spectators_disabled": "Spectators are now disabled for your event.",
    "dropout_all": "You have been removed from all events, queues and spectator slots.",
    "kicked": "Successfully kicked <@{user_id}> from your event.",
    "repinged": "Roles re-pinged.",
}
