"""
Graceful shutdown: every live session is closed as Shutdown and torn down
before the client disconnects. Runs once per process; an error retries the
whole pass once, after that the process exits anyway.
"""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, List, Optional, Sequence

import config
from logger import setup_logger
from lobby.errors import Severity, report_error
from lobby.lifecycle import SessionLifecycle
from lobby.models import Operation, SessionStatus


logger = setup_logger(__name__, config.LOG_FILE, config.LOG_LEVEL)

IN_FLIGHT = (Operation.STARTING, Operation.FINISHING, Operation.CANCELLING)

Notifier = Callable[[str], Awaitable[object]]
Closer = Callable[[], Awaitable[object]]


def _stamp() -> str:
    return f"<t:{int(time.time())}:F>"


class GracefulShutdown:
    def __init__(
        self,
        lifecycle: SessionLifecycle,
        notify: Optional[Notifier] = None,
        closers: Sequence[Closer] = (),
        close_client: Optional[Closer] = None,
        max_attempts: int = 2,
    ) -> None:
        self.lifecycle = lifecycle
        self.store = lifecycle.store
        self.settings = lifecycle.settings
        self.notify = notify
        self.closers = list(closers)
        self.close_client = close_client
        self.max_attempts = max(1, int(max_attempts))
        self._started = False
        self.done = asyncio.Event()

    @property
    def in_progress(self) -> bool:
        return self._started

    async def run(self, reason: str) -> bool:
        if self._started:
            logger.info("Shutdown already in progress...")
            return False
        self._started = True
        self.lifecycle.stop_accepting()
        logger.info(f"Received {reason}, starting graceful shutdown...")
        await self._notify(f"⚠️ Bot shutdown initiated!\n\n**Reason:** {reason}\n**Time:** {_stamp()}")

        ok = False
        for attempt in range(1, self.max_attempts + 1):
            try:
                await self.close_sessions()
                ok = True
                break
            except Exception as e:
                report_error(logger, "Error during graceful shutdown", Severity.HIGH, e, attempt=attempt)
                await self._notify(f"❌ Error during bot shutdown\n\n**Error:** {e}\n\n**Time:** {_stamp()}")
                if attempt < self.max_attempts:
                    logger.info("Retrying graceful shutdown...")

        if not ok:
            logger.error("Graceful shutdown failed, exiting anyway")

        for closer in self.closers:
            try:
                await closer()
            except Exception as e:
                report_error(logger, "Failed to close component during shutdown", Severity.MEDIUM, e)

        if ok:
            await self._notify(f"✅ Bot shutdown complete - disconnecting now\n\n**Time:** {_stamp()}")
        if self.close_client is not None:
            try:
                await self.close_client()
            except Exception as e:
                report_error(logger, "Failed to close Discord client", Severity.MEDIUM, e)

        logger.info("Graceful shutdown complete" if ok else "Shutdown finished with errors")
        self.done.set()
        return ok

    async def close_sessions(self) -> List[str]:
        event_ids = [event_id for event_id, _ in self.store.get_all_timers()]
        logger.info(f"Found {len(event_ids)} active event(s) to clean up")

        closed: List[str] = []
        for i, event_id in enumerate(event_ids):
            await self._settle(event_id)
            if await self.lifecycle.shutdown_session(event_id):
                closed.append(event_id)

            if i < len(event_ids) - 1 and self.settings.shutdown_cleanup_delay_seconds > 0:
                # Discord rate limits
                await asyncio.sleep(self.settings.shutdown_cleanup_delay_seconds)

        logger.info(f"All events cleaned up ({len(closed)}/{len(event_ids)})")
        return closed

    async def _settle(self, event_id: str) -> None:
        """Let in-flight operations finish (bounded by the lock timeout)."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.settings.processing_timeout_seconds
        while self.store.first_processing(event_id, IN_FLIGHT) is not None and loop.time() < deadline:
            await asyncio.sleep(self.settings.shutdown_poll_seconds)

        if self.store.get_status(event_id) is SessionStatus.FINALIZING and self.settings.start_delay_seconds > 0:
            wait = self.settings.start_delay_seconds * 2
            logger.info(f"Event {event_id} is finalizing, waiting {wait:.0f}s before cleanup...")
            await asyncio.sleep(wait)

    async def _notify(self, content: str) -> None:
        if self.notify is None:
            return
        try:
            await self.notify(f"----------------------------------\n{content}\n----------------------------------")
        except Exception as e:
            report_error(logger, "Failed to notify author", Severity.LOW, e)
