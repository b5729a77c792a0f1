"""
Roster changes of a running session: drop in/out, waitlist and spectators.

Each action applies its store mutation in one synchronous step (removal and
waitlist promotion happen together) and only then awaits access changes.
"""

from __future__ import annotations

from typing import List, Optional

import config
from logger import setup_logger
from lobby.errors import GuardRejection, OperationInProgress, Rejection
from lobby.lifecycle import SessionLifecycle
from lobby.models import Departure, LifecycleEvent, Participant, SessionStatus


logger = setup_logger(__name__, config.LOG_FILE, config.LOG_LEVEL)


class WaitlistActions:
    def __init__(self, lifecycle: SessionLifecycle) -> None:
        self.lifecycle = lifecycle
        self.store = lifecycle.store
        self.resources = lifecycle.resources
        self.updater = lifecycle.updater

    # ---------------------------
    # Drop in / drop out
    # ---------------------------
    async def drop_in(self, event_id: str, participant: Participant) -> None:
        lc = self.lifecycle
        if not lc.accepting:
            raise GuardRejection(Rejection.SHUTTING_DOWN)
        snapshot = lc.require(event_id)
        lc.ensure_not_cleaning(event_id)
        if snapshot.status is not SessionStatus.STARTED:
            raise GuardRejection(Rejection.EVENT_NOT_STARTED)

        user_id = participant.user_id
        if self.store.is_user_in_any_event(user_id):
            raise GuardRejection(Rejection.ALREADY_SIGNED_UP)
        if snapshot.is_full:
            raise GuardRejection(Rejection.EVENT_FULL)

        was_spectator = user_id in snapshot.spectators
        # Also takes the user off every waitlist and this session's spectators.
        if not self.store.add_participant(event_id, participant):
            raise GuardRejection(Rejection.EVENT_FULL)

        if was_spectator:
            lc.track(LifecycleEvent.STOPPED_SPECTATING, event_id, user_id)
        lc.track(LifecycleEvent.DROPPED_IN, event_id, user_id)
        logger.info(f"{user_id} dropped in to event {event_id}")

        if not was_spectator:
            # Spectators already see the thread and voice rooms.
            await self.resources.grant(event_id, user_id)
        if self.store.is_full(event_id):
            await lc.delete_reping(event_id)
        self.updater.queue_update(event_id)

    async def drop_out(self, event_id: str, user_id: str) -> Optional[Departure]:
        lc = self.lifecycle
        snapshot = lc.require(event_id)
        lc.ensure_not_cleaning(event_id)
        if snapshot.status is not SessionStatus.STARTED:
            raise GuardRejection(Rejection.EVENT_NOT_STARTED)
        if user_id not in snapshot.participant_ids:
            raise GuardRejection(Rejection.NOT_SIGNED_UP)

        lc.track(LifecycleEvent.DROPPED_OUT, event_id, user_id)
        departure = self.store.remove_participant(event_id, user_id, promote=True)
        await self._settle(event_id, departure)
        return departure

    async def _settle(self, event_id: str, departure: Optional[Departure], revoke: bool = True) -> None:
        """Side effects of a removal already applied to the store."""
        if departure is None:
            return
        lc = self.lifecycle
        user_id = departure.user_id
        timer = self.store.get_timer(event_id)
        started = bool(timer and timer.has_started)

        if revoke and started:
            await self.resources.revoke(event_id, user_id)

        if departure.emptied:
            logger.info(f"Last participant left event {event_id}, cancelling it")
            try:
                await lc.cancel(event_id, user_id, force=True)
            except OperationInProgress as e:
                # Another terminal transition is already tearing it down.
                logger.info(f"Auto-cancel of event {event_id} skipped: {e}")
            return

        if departure.new_creator:
            logger.info(f"Ownership of event {event_id} transferred from {user_id} to {departure.new_creator}")
            lc.track(LifecycleEvent.OWNERSHIP_TRANSFERRED, event_id, departure.new_creator)
            await lc.post_notice(event_id, LifecycleEvent.OWNERSHIP_TRANSFERRED, departure.new_creator)

        if departure.promoted:
            logger.info(f"{departure.promoted} promoted from the waitlist of event {event_id}")
            await lc.admit_promoted(event_id, departure.promoted)

        if started:
            self.updater.queue_update(event_id)
        else:
            await lc.evaluate_phase(event_id, user_id)

    # ---------------------------
    # Waitlist
    # ---------------------------
    async def join_queue(self, event_id: str, user_id: str) -> int:
        """Returns the 1-based waitlist position."""
        lc = self.lifecycle
        snapshot = lc.require(event_id)
        lc.ensure_not_cleaning(event_id)
        if not snapshot.is_full:
            raise GuardRejection(Rejection.QUEUE_EVENT_NOT_FULL)
        if snapshot.status is not SessionStatus.STARTED:
            raise GuardRejection(Rejection.EVENT_NOT_STARTED)
        if user_id in snapshot.queue:
            raise GuardRejection(Rejection.QUEUE_ALREADY_IN_QUEUE)
        if self.store.is_user_in_any_event(user_id):
            raise GuardRejection(Rejection.QUEUE_ALREADY_PARTICIPATING)
        if user_id in snapshot.spectators:
            raise GuardRejection(Rejection.QUEUE_SPECTATING)

        self.store.add_to_queue(event_id, user_id)
        lc.track(LifecycleEvent.JOINED_QUEUE, event_id, user_id)
        self.updater.queue_update(event_id)
        return len(self.store.get_queue(event_id))

    async def leave_queue(self, event_id: str, user_id: str) -> None:
        lc = self.lifecycle
        lc.require(event_id)
        lc.ensure_not_cleaning(event_id)
        if not self.store.remove_from_queue(event_id, user_id):
            raise GuardRejection(Rejection.QUEUE_NOT_IN_QUEUE)
        lc.track(LifecycleEvent.LEFT_QUEUE, event_id, user_id)
        self.updater.queue_update(event_id)

    # ---------------------------
    # Spectators
    # ---------------------------
    async def spectate(self, event_id: str, user_id: str) -> None:
        lc = self.lifecycle
        snapshot = lc.require(event_id)
        lc.ensure_not_cleaning(event_id)
        if not snapshot.spectators_enabled:
            raise GuardRejection(Rejection.SPECTATE_DISABLED)
        if user_id in snapshot.spectators:
            raise GuardRejection(Rejection.SPECTATE_ALREADY_SPECTATING)
        if len(snapshot.spectators) >= self.store.settings.max_spectators:
            raise GuardRejection(Rejection.SPECTATE_FULL)

        was_participant = user_id in snapshot.participant_ids
        departure = None
        if was_participant:
            if user_id == snapshot.creator:
                raise GuardRejection(Rejection.CREATOR_CANNOT_SPECTATE)
            if snapshot.status is SessionStatus.FINALIZING:
                raise GuardRejection(Rejection.EVENT_FINALIZING)
            lc.track(LifecycleEvent.DROPPED_OUT if snapshot.has_started else LifecycleEvent.SIGNED_OUT, event_id, user_id)
            departure = self.store.remove_participant(event_id, user_id, promote=snapshot.has_started)

        self.store.add_spectator(event_id, user_id)
        lc.track(LifecycleEvent.STARTED_SPECTATING, event_id, user_id)
        logger.info(f"{user_id} is spectating event {event_id}")

        if was_participant:
            # Keeps thread and voice access, now as a spectator.
            await self._settle(event_id, departure, revoke=False)
        else:
            await self.resources.grant(event_id, user_id)
            self.updater.queue_update(event_id)

    async def stop_spectating(self, event_id: str, user_id: str) -> None:
        lc = self.lifecycle
        lc.require(event_id)
        lc.ensure_not_cleaning(event_id)
        if not self.store.remove_spectator(event_id, user_id):
            raise GuardRejection(Rejection.SPECTATE_NOT_SPECTATING)

        lc.track(LifecycleEvent.STOPPED_SPECTATING, event_id, user_id)
        await self.resources.revoke(event_id, user_id)
        self.updater.queue_update(event_id)

    # ---------------------------
    # Dropout-all
    # ---------------------------
    async def dropout_all(self, user_id: str) -> List[str]:
        """Leave every session, waitlist and spectator slot. Returns the touched event ids."""
        lc = self.lifecycle
        touched: List[str] = []

        owned = self.store.user_owns_event(user_id)
        if owned is not None:
            # An owned session is closed whatever its phase.
            await lc.cancel(owned, user_id, force=True)
            touched.append(owned)

        participating = self.store.get_user_event_id(user_id)
        if participating is not None:
            snapshot = lc.require(participating)
            lc.ensure_not_cleaning(participating)
            kind = LifecycleEvent.DROPPED_OUT if snapshot.has_started else LifecycleEvent.SIGNED_OUT
            lc.track(kind, participating, user_id)
            departure = self.store.remove_participant(participating, user_id, promote=snapshot.has_started)
            await self._settle(participating, departure)
            touched.append(participating)

        for event_id in self.store.remove_user_from_all_queues(user_id):
            lc.track(LifecycleEvent.LEFT_QUEUE, event_id, user_id)
            self.updater.queue_update(event_id)
            touched.append(event_id)

        for event_id in self.store.get_spectating_events(user_id):
            self.store.remove_spectator(event_id, user_id)
            lc.track(LifecycleEvent.STOPPED_SPECTATING, event_id, user_id)
            await self.resources.revoke(event_id, user_id)
            self.updater.queue_update(event_id)
            touched.append(event_id)

        if not touched:
            raise GuardRejection(Rejection.NOT_IN_ANY_EVENT)
        logger.info(f"{user_id} left {len(touched)} event(s) via dropout-all")
        return touched
