"""
Side resources of a started session: private thread and voice rooms.

Every platform call here is best effort. Failures are reported and swallowed;
the store stays the authoritative record.
"""

from __future__ import annotations

from typing import List, Optional

import config
from logger import setup_logger
from lobby.errors import Severity, report_error
from lobby.ports import AnnouncementRenderer, ThreadPort, VoiceRoomPort
from lobby.store import SessionStore


logger = setup_logger(__name__, config.LOG_FILE, config.LOG_LEVEL)

THREAD_NAME = "8s Event - {short_id}"


class SessionResources:
    def __init__(
        self,
        store: SessionStore,
        threads: ThreadPort,
        voice: VoiceRoomPort,
        renderer: AnnouncementRenderer,
    ) -> None:
        self.store = store
        self.threads = threads
        self.voice = voice
        self.renderer = renderer

    async def provision(self, event_id: str) -> bool:
        """Create thread and voice rooms for the current roster. False if the session vanished meanwhile."""
        snapshot = self.store.snapshot(event_id)
        if snapshot is None:
            return False

        thread_id: Optional[str] = None
        try:
            thread_id = await self.threads.create_thread(
                snapshot.channel_id, THREAD_NAME.format(short_id=snapshot.short_id)
            )
        except Exception as e:
            report_error(logger, "Failed to create event thread", Severity.HIGH, e, event_id=event_id)

        if thread_id and not self.store.set_thread(event_id, thread_id):
            await self._discard(event_id, thread_id, [])
            return False

        # Spectators get the same view as participants.
        members = _members(self.store.snapshot(event_id) or snapshot)
        if thread_id:
            for user_id in members:
                await self._thread_call("add_member", thread_id, user_id, event_id=event_id)

        rooms: List[str] = []
        if snapshot.guild_id:
            try:
                rooms = await self.voice.create_rooms(
                    snapshot.guild_id, snapshot.channel_id, members, snapshot.short_id
                )
            except Exception as e:
                report_error(logger, "Failed to create voice channels", Severity.HIGH, e, event_id=event_id)

        if not self.store.set_voice_channels(event_id, rooms):
            # Torn down while we were provisioning: nothing will ever clean these up.
            await self._discard(event_id, thread_id, rooms)
            return False

        current = self.store.snapshot(event_id) or snapshot
        if rooms:
            # Dropped in while the rooms were being created.
            for user_id in _members(current):
                if user_id not in members:
                    await self.grant(event_id, user_id)

        if thread_id and rooms:
            await self._thread_call("send", thread_id, self.renderer.voice_list_content(current, rooms), event_id=event_id)

        logger.info(f"Provisioned event {event_id}: thread={thread_id} voice={len(rooms)}")
        return True

    async def grant(self, event_id: str, user_id: str) -> None:
        thread_id = self.store.get_thread(event_id)
        if thread_id:
            await self._thread_call("add_member", thread_id, user_id, event_id=event_id)

        rooms = self.store.get_voice_channels(event_id)
        if rooms:
            try:
                await self.voice.grant_access(rooms, user_id)
            except Exception as e:
                report_error(logger, "Failed to grant voice access", Severity.MEDIUM, e, event_id=event_id, user_id=user_id)

    async def revoke(self, event_id: str, user_id: str, remove_from_thread: bool = True) -> None:
        thread_id = self.store.get_thread(event_id)
        if thread_id and remove_from_thread:
            await self._thread_call("remove_member", thread_id, user_id, event_id=event_id)

        rooms = self.store.get_voice_channels(event_id)
        if rooms:
            try:
                await self.voice.revoke_access(rooms, user_id, disconnect=True)
            except Exception as e:
                report_error(logger, "Failed to revoke voice access", Severity.MEDIUM, e, event_id=event_id, user_id=user_id)

    async def _thread_call(self, method: str, *args, event_id: str) -> None:
        try:
            await getattr(self.threads, method)(*args)
        except Exception as e:
            report_error(logger, f"Thread {method} failed", Severity.LOW, e, event_id=event_id)

    async def _discard(self, event_id: str, thread_id: Optional[str], rooms: List[str]) -> None:
        logger.info(f"Event {event_id} was torn down during provisioning, discarding its resources")
        if rooms:
            try:
                await self.voice.delete_rooms(rooms)
            except Exception as e:
                report_error(logger, "Failed to delete orphaned voice channels", Severity.MEDIUM, e, event_id=event_id)
        if thread_id:
            await self._thread_call("lock_and_archive", thread_id, event_id=event_id)


def _members(snapshot) -> List[str]:
    return list(snapshot.participant_ids) + list(snapshot.spectators)
