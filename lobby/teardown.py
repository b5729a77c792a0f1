"""
Resource teardown, shared by finish, cancel, expiry and shutdown.

Runs at most once per session: the first call purges the store entry, any later
(or concurrent) call finds nothing to do.
"""

from __future__ import annotations

from typing import Optional

import config
from logger import setup_logger
from lobby.errors import Severity, report_error
from lobby.models import Operation
from lobby.ports import ThreadPort, Venue, VoiceRoomPort
from lobby.store import SessionStore


logger = setup_logger(__name__, config.LOG_FILE, config.LOG_LEVEL)


class TeardownOrchestrator:
    def __init__(self, store: SessionStore, threads: ThreadPort, voice: VoiceRoomPort, venue: Optional[Venue] = None) -> None:
        self.store = store
        self.threads = threads
        self.voice = voice
        self.venue = venue

    async def run(self, event_id: str, reason: str = "") -> bool:
        """Tear a session down. Returns False when there was nothing (left) to tear down."""
        if not self.store.exists(event_id) or self.store.is_processing(event_id, Operation.CLEANUP):
            return False

        self.store.set_processing(event_id, Operation.CLEANUP)
        snapshot = self.store.snapshot(event_id)
        logger.info(f"Tearing down event {event_id} ({reason or 'unspecified'})")
        try:
            rooms = list(snapshot.voice_channels)
            if rooms:
                for user_id in list(snapshot.participant_ids) + list(snapshot.spectators):
                    try:
                        await self.voice.revoke_access(rooms, user_id, disconnect=True)
                    except Exception as e:
                        report_error(logger, "Failed to revoke voice access during teardown", Severity.LOW, e,
                                     event_id=event_id, user_id=user_id)
                try:
                    await self.voice.delete_rooms(rooms)
                except Exception as e:
                    report_error(logger, "Failed to delete voice channels", Severity.MEDIUM, e, event_id=event_id)

            if snapshot.thread_id:
                try:
                    await self.threads.lock_and_archive(snapshot.thread_id)
                except Exception as e:
                    report_error(logger, "Failed to lock and archive thread", Severity.MEDIUM, e, event_id=event_id)

            reping = self.store.get_reping_message(event_id)
            if reping and self.venue is not None:
                try:
                    await self.venue.delete_message(snapshot.channel_id, reping)
                except Exception as e:
                    report_error(logger, "Failed to delete reping message", Severity.LOW, e, event_id=event_id)
        finally:
            # Purge also cancels the countdown handle and drops every processing state.
            self.store.clear_processing(event_id, Operation.CLEANUP)
            self.store.clear_all_event_data(event_id)

        return True
