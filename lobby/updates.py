"""
Announcement refresh queue.

queue_update() only marks a session dirty; a single drain task renders dirty
sessions after a short debounce so bursts of button presses turn into one edit.
"""

from __future__ import annotations

import asyncio
from typing import Optional, Set

import config
from logger import setup_logger
from lobby.errors import Severity, report_error
from lobby.ports import AnnouncementRenderer
from lobby.store import SessionStore


logger = setup_logger(__name__, config.LOG_FILE, config.LOG_LEVEL)


class AnnouncementUpdater:
    def __init__(self, store: SessionStore, renderer: AnnouncementRenderer, debounce_seconds: float = 1.0) -> None:
        self.store = store
        self.renderer = renderer
        self.debounce_seconds = max(0.0, float(debounce_seconds))
        self._dirty: Set[str] = set()
        self._drain_task: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def pending(self) -> Set[str]:
        return set(self._dirty)

    def queue_update(self, event_id: str) -> None:
        """Mark a session for re-render. Safe to call from synchronous code."""
        if self._closed or not self.store.exists(event_id):
            return
        self._dirty.add(event_id)
        if self._drain_task is None or self._drain_task.done():
            try:
                self._drain_task = asyncio.get_running_loop().create_task(self._drain())
            except RuntimeError:
                # No loop (sync test code): the next flush() picks it up.
                self._drain_task = None

    async def flush(self, event_id: str) -> None:
        """Render now, bypassing the debounce."""
        self._dirty.discard(event_id)
        await self._render(event_id)

    async def flush_all(self) -> None:
        dirty, self._dirty = self._dirty, set()
        for event_id in dirty:
            await self._render(event_id)

    async def close(self) -> None:
        self._closed = True
        task, self._drain_task = self._drain_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._dirty.clear()

    async def _drain(self) -> None:
        while self._dirty:
            await asyncio.sleep(self.debounce_seconds)
            batch, self._dirty = self._dirty, set()
            for event_id in batch:
                await self._render(event_id)

    async def _render(self, event_id: str) -> None:
        snapshot = self.store.snapshot(event_id)
        if snapshot is None:
            return
        try:
            await self.renderer.render(snapshot)
        except Exception as e:
            report_error(logger, "Failed to refresh announcement", Severity.LOW, e, event_id=event_id)
