"""
Periodic expiry of sessions that outlived the lifetime ceiling.
"""

from __future__ import annotations

import asyncio
from typing import List, Optional

import config
from logger import setup_logger
from lobby.errors import Severity, report_error
from lobby.lifecycle import SessionLifecycle


logger = setup_logger(__name__, config.LOG_FILE, config.LOG_LEVEL)


class SweepTimer:
    def __init__(self, lifecycle: SessionLifecycle, interval_seconds: float = 15 * 60.0) -> None:
        self.lifecycle = lifecycle
        self.store = lifecycle.store
        self.interval_seconds = float(interval_seconds)
        self._task: Optional[asyncio.Task] = None

    async def sweep_once(self) -> List[str]:
        """Expire every session older than the ceiling. Returns the expired ids."""
        now = self.lifecycle.clock()
        ceiling = self.store.settings.max_lifetime_seconds
        expired: List[str] = []

        # Snapshot list: expiring purges entries while we iterate.
        for event_id, timer in self.store.get_all_timers():
            if timer.age(now) < ceiling:
                continue
            try:
                if await self.lifecycle.expire(event_id):
                    expired.append(event_id)
            except Exception as e:
                report_error(logger, "Failed to expire stale event", Severity.HIGH, e, event_id=event_id)

        if expired:
            logger.info(f"Sweep expired {len(expired)} event(s): {', '.join(expired)}")
        return expired

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self._run(), name="lobby-sweep")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        logger.info(f"Sweep timer running every {self.interval_seconds:.0f}s")
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.sweep_once()
            except Exception as e:
                report_error(logger, "Sweep pass failed", Severity.HIGH, e)
