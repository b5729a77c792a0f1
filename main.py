"""
8s lobby Discord bot (entrypoint)

This file only keeps the entrypoint.
- Discord bot wiring: app/bot.py
- Session lifecycle engine: lobby/
- Discord adapters (threads, voice rooms, announcements, telemetry): services/
"""

import config
from logger import setup_logger
from app.bot import run_bot


logger = setup_logger(__name__, config.LOG_FILE, config.LOG_LEVEL)


if __name__ == "__main__":
    logger.info(f"Starting lobby bot ({config.LOBBY_ENV})...")
    if not config.DISCORD_TOKEN:
        logger.error("DISCORD_TOKEN is not set (see .env)")
    run_bot()
