"""
Session lifecycle state machine.

    Open -> Finalizing -> Started -> {Finished, Cancelled, Expired, Shutdown}

Every guard runs synchronously before the first await, so a rejected trigger never
changes state. Store writes come before platform side effects; a failed side
effect is reported and the store stays authoritative.
"""

from __future__ import annotations

import asyncio
import time
from typing import Callable, Iterable, Optional

import config
from logger import setup_logger
from lobby.errors import (
    GuardRejection,
    OperationInProgress,
    Rejection,
    SessionNotFound,
    Severity,
    report_error,
)
from lobby.models import (
    LifecycleEvent,
    Operation,
    Participant,
    SessionSnapshot,
    SessionStatus,
    TelemetryEventData,
)
from lobby.ports import AnnouncementRenderer, TelemetrySink, ThreadPort, Venue, NullTelemetry
from lobby.processing import ALL_OPERATIONS
from lobby.resources import SessionResources
from lobby.store import SessionStore
from lobby.teardown import TeardownOrchestrator
from lobby.updates import AnnouncementUpdater


logger = setup_logger(__name__, config.LOG_FILE, config.LOG_LEVEL)

SYSTEM_ACTOR = "system"

PRE_START = (SessionStatus.OPEN, SessionStatus.FINALIZING)


class SessionLifecycle:
    def __init__(
        self,
        store: SessionStore,
        updater: AnnouncementUpdater,
        resources: SessionResources,
        teardown: TeardownOrchestrator,
        venue: Venue,
        telemetry: Optional[TelemetrySink] = None,
        clock: Callable[[], float] = time.time,
        system_actor: str = SYSTEM_ACTOR,
    ) -> None:
        self.store = store
        self.settings = store.settings
        self.updater = updater
        self.resources = resources
        self.teardown = teardown
        self.venue = venue
        self.telemetry = telemetry or NullTelemetry()
        self.clock = clock
        self.system_actor = system_actor
        self._accepting = True

    @property
    def renderer(self) -> AnnouncementRenderer:
        return self.updater.renderer

    @property
    def threads(self) -> ThreadPort:
        return self.resources.threads

    # ---------------------------
    # Guards
    # ---------------------------
    def stop_accepting(self) -> None:
        """New sessions and sign-ups are refused from now on (shutdown)."""
        self._accepting = False

    @property
    def accepting(self) -> bool:
        return self._accepting

    def require(self, event_id: str) -> SessionSnapshot:
        snapshot = self.store.snapshot(event_id)
        if snapshot is None or snapshot.status.is_terminal:
            raise SessionNotFound(event_id)
        return snapshot

    def ensure_idle(self, event_id: str, operations: Iterable[Operation] = ALL_OPERATIONS) -> None:
        active = self.store.first_processing(event_id, operations)
        if active is not None:
            raise OperationInProgress(event_id, active)

    def ensure_not_cleaning(self, event_id: str) -> None:
        self.ensure_idle(event_id, (Operation.CLEANUP,))

    def require_idle(self, event_id: str) -> SessionSnapshot:
        """A session still being closed reports the operation in flight, not "not found"."""
        if self.store.exists(event_id):
            self.ensure_idle(event_id)
        return self.require(event_id)

    def _ensure_accepting(self) -> None:
        if not self._accepting:
            raise GuardRejection(Rejection.SHUTTING_DOWN)

    # ---------------------------
    # Creation & roster (Open / Finalizing)
    # ---------------------------
    async def create_session(
        self,
        event_id: str,
        creator: Participant,
        channel_id: str,
        guild_id: Optional[str] = None,
        countdown_minutes: Optional[float] = None,
        casual: bool = False,
        info: Optional[str] = None,
    ) -> SessionSnapshot:
        self._ensure_accepting()
        if self.store.is_user_in_any_event(creator.user_id):
            raise GuardRejection(Rejection.ALREADY_SIGNED_UP)

        duration = countdown_minutes * 60 if countdown_minutes else None
        session = self.store.create_session(
            event_id,
            creator,
            channel_id,
            guild_id,
            start_time=self.clock(),
            duration=duration,
            casual=casual,
            info=info,
        )
        if session is None:
            raise GuardRejection(Rejection.ALREADY_SIGNED_UP)

        if duration:
            self._arm_countdown(event_id, duration)

        logger.info(
            f"Event {event_id} created by {creator.user_id} "
            f"(casual={casual}, countdown={countdown_minutes or 'none'})"
        )
        self.track(
            LifecycleEvent.CREATED,
            event_id,
            creator.user_id,
            time_to_start=int(countdown_minutes) if countdown_minutes else None,
        )
        await self.evaluate_phase(event_id, creator.user_id)
        return self.store.snapshot(event_id)

    async def sign_up(self, event_id: str, participant: Participant) -> None:
        self._ensure_accepting()
        snapshot = self.require(event_id)
        self.ensure_not_cleaning(event_id)
        self._ensure_pre_start(snapshot)

        user_id = participant.user_id
        if snapshot.is_full and user_id not in snapshot.participant_ids:
            raise GuardRejection(Rejection.EVENT_FULL)
        if self.store.is_user_in_any_event(user_id):
            raise GuardRejection(Rejection.ALREADY_SIGNED_UP)
        if not self.store.add_participant(event_id, participant):
            raise GuardRejection(Rejection.EVENT_FULL)

        self.track(LifecycleEvent.SIGNED_UP, event_id, user_id)
        await self.evaluate_phase(event_id, user_id)

    async def sign_out(self, event_id: str, user_id: str) -> None:
        snapshot = self.require(event_id)
        self.ensure_not_cleaning(event_id)
        self._ensure_pre_start(snapshot)

        if user_id == snapshot.creator:
            raise GuardRejection(Rejection.CREATOR_CANNOT_SIGNOUT)
        if user_id not in snapshot.participant_ids:
            raise GuardRejection(Rejection.NOT_SIGNED_UP)

        self.store.remove_participant(event_id, user_id)
        self.track(LifecycleEvent.SIGNED_OUT, event_id, user_id)
        self.updater.queue_update(event_id)

    async def select_role(self, event_id: str, user_id: str, role: str) -> None:
        """Allowed in every non-terminal state, Finalizing included."""
        self.require(event_id)
        self.ensure_not_cleaning(event_id)
        if not self.store.set_participant_role(event_id, user_id, role):
            raise GuardRejection(Rejection.NOT_SIGNED_UP)
        self.updater.queue_update(event_id)

    def _ensure_pre_start(self, snapshot: SessionSnapshot) -> None:
        if snapshot.status is SessionStatus.FINALIZING:
            raise GuardRejection(Rejection.EVENT_FINALIZING)
        if snapshot.status is not SessionStatus.OPEN:
            raise GuardRejection(Rejection.EVENT_STARTED)

    async def evaluate_phase(self, event_id: str, actor: str) -> None:
        """Re-derive Open/Finalizing/Started after the roster of a pre-start session changed."""
        snapshot = self.store.snapshot(event_id)
        if snapshot is None or snapshot.status not in PRE_START:
            return

        timer = self.store.get_timer(event_id)
        if snapshot.is_full:
            await self.delete_reping(event_id)
            if timer.countdown_pending(self.clock()):
                if snapshot.status is SessionStatus.OPEN:
                    self.store.set_status(event_id, SessionStatus.FINALIZING)
                    logger.info(f"Event {event_id} is full, finalizing until the countdown elapses")
                self.updater.queue_update(event_id)
                return
            if self.store.first_processing(event_id) is None:
                await self.start(event_id, actor)
                return
        elif snapshot.status is SessionStatus.FINALIZING:
            self.store.set_status(event_id, SessionStatus.OPEN)

        self.updater.queue_update(event_id)

    # ---------------------------
    # Start
    # ---------------------------
    async def force_start(self, event_id: str, user_id: str) -> None:
        snapshot = self.require(event_id)
        if snapshot.status not in PRE_START:
            raise GuardRejection(Rejection.EVENT_STARTED)
        if user_id != snapshot.creator:
            raise GuardRejection(Rejection.CREATOR_ONLY_START)
        if len(snapshot.participants) < self.settings.required_participants:
            raise GuardRejection(Rejection.NOT_ENOUGH_PARTICIPANTS)
        self.ensure_idle(event_id)
        await self.start(event_id, user_id)

    async def start(self, event_id: str, actor: str) -> bool:
        """Open/Finalizing -> Started, then provision thread and voice rooms."""
        if self.store.is_processing(event_id, Operation.STARTING):
            return False

        self.store.set_processing(event_id, Operation.STARTING)
        try:
            if not self.store.mark_started(event_id):
                return False
            self.store.cancel_start_task(event_id)
            logger.info(f"Event {event_id} started by {actor}")

            await self.updater.flush(event_id)
            await self.resources.provision(event_id)
            await self.delete_reping(event_id)
            self.track(LifecycleEvent.STARTED, event_id, self.store.get_creator(event_id) or actor)
            return True
        finally:
            self.store.clear_processing(event_id, Operation.STARTING)

    def _arm_countdown(self, event_id: str, seconds: float) -> None:
        task = asyncio.get_running_loop().create_task(self._countdown(event_id, seconds), name=f"countdown-{event_id}")
        self.store.set_start_task(event_id, task)

    async def _countdown(self, event_id: str, seconds: float) -> None:
        await asyncio.sleep(seconds)
        self.store.detach_start_task(event_id)

        snapshot = self.store.snapshot(event_id)
        if snapshot is None or snapshot.has_started or snapshot.status not in PRE_START:
            return

        try:
            if (
                len(snapshot.participants) >= self.settings.required_participants
                and self.store.first_processing(event_id) is None
            ):
                await self.start(event_id, snapshot.creator)
                return

            # Not enough players: back to Open, start as soon as it fills.
            self.store.clear_countdown(event_id)
            self.store.set_status(event_id, SessionStatus.OPEN)
            logger.info(f"Countdown of event {event_id} elapsed with {len(snapshot.participants)} participants, reopened")
            self.updater.queue_update(event_id)
        except Exception as e:
            report_error(logger, "Countdown start failed", Severity.HIGH, e, event_id=event_id)

    # ---------------------------
    # Terminal transitions
    # ---------------------------
    async def cancel(self, event_id: str, user_id: str, is_moderator: bool = False, force: bool = False) -> None:
        snapshot = self.require_idle(event_id)
        if not force:
            if snapshot.status not in PRE_START:
                raise GuardRejection(Rejection.EVENT_STARTED)
            if user_id != snapshot.creator and not is_moderator:
                raise GuardRejection(Rejection.CREATOR_ONLY_CANCEL)
        await self._terminate(event_id, SessionStatus.CANCELLED, Operation.CANCELLING, LifecycleEvent.CANCELLED, user_id)

    async def finish(self, event_id: str, user_id: str, is_moderator: bool = False) -> None:
        snapshot = self.require_idle(event_id)
        if snapshot.status is not SessionStatus.STARTED:
            raise GuardRejection(Rejection.EVENT_NOT_STARTED)
        if user_id != snapshot.creator and not is_moderator:
            raise GuardRejection(Rejection.CREATOR_ONLY_FINISH)
        await self._terminate(event_id, SessionStatus.FINISHED, Operation.FINISHING, LifecycleEvent.FINISHED, user_id)

    async def expire(self, event_id: str) -> bool:
        """Sweep-driven. Skipped while another operation is in flight; the next pass retries."""
        snapshot = self.store.snapshot(event_id)
        if snapshot is None:
            return False
        active = self.store.first_processing(event_id)
        if active is not None:
            logger.info(f"Skipping expiry of event {event_id}: '{active.value}' in progress")
            return False
        if snapshot.status.is_terminal:
            return False
        await self._terminate(event_id, SessionStatus.EXPIRED, Operation.CANCELLING, LifecycleEvent.EXPIRED, self.system_actor)
        return True

    async def shutdown_session(self, event_id: str) -> bool:
        """Forced transition to Shutdown; only a running teardown wins over it."""
        snapshot = self.store.snapshot(event_id)
        if snapshot is None or self.store.is_processing(event_id, Operation.CLEANUP):
            return False
        await self._terminate(event_id, SessionStatus.SHUTDOWN, Operation.CANCELLING, LifecycleEvent.SHUTDOWN, self.system_actor)
        return True

    async def _terminate(
        self,
        event_id: str,
        status: SessionStatus,
        operation: Operation,
        kind: LifecycleEvent,
        actor: str,
    ) -> None:
        self.store.set_processing(event_id, operation)
        try:
            self.store.set_status(event_id, status)
            self.store.cancel_start_task(event_id)
            logger.info(f"Event {event_id} {status.value} by {actor}")

            # Final render must happen before the purge.
            await self.updater.flush(event_id)
            self.track(kind, event_id, actor)
            await self.teardown.run(event_id, reason=status.value)
        finally:
            self.store.clear_processing(event_id, operation)

    # ---------------------------
    # Creator commands
    # ---------------------------
    def owned_event(self, user_id: str) -> str:
        event_id = self.store.user_owns_event(user_id)
        if event_id is None:
            raise GuardRejection(Rejection.NO_EVENT_OWNED)
        return event_id

    async def kick(self, actor_id: str, target_id: str) -> str:
        event_id = self.owned_event(actor_id)
        snapshot = self.require(event_id)
        if target_id == actor_id:
            raise GuardRejection(Rejection.CANNOT_KICK_SELF)
        if target_id not in snapshot.participant_ids:
            raise GuardRejection(Rejection.KICK_NOT_PARTICIPANT)
        self.ensure_idle(event_id)

        # Track against the roster the target was kicked from.
        self.track(LifecycleEvent.KICKED, event_id, actor_id, target_user_id=target_id)
        departure = self.store.remove_participant(event_id, target_id, promote=snapshot.has_started)
        logger.info(f"{target_id} kicked from event {event_id} by {actor_id}")

        if snapshot.has_started:
            await self.resources.revoke(event_id, target_id)
            if departure and departure.promoted:
                await self.admit_promoted(event_id, departure.promoted)
            self.updater.queue_update(event_id)
        else:
            await self.evaluate_phase(event_id, actor_id)
        return event_id

    async def toggle_spectators(self, user_id: str) -> bool:
        """Flip spectating for the caller's session; returns the new setting."""
        event_id = self.owned_event(user_id)
        self.require(event_id)
        self.ensure_idle(event_id)

        enabled = not self.store.get_spectators_enabled(event_id)
        evicted = self.store.set_spectators_enabled(event_id, enabled)
        for spectator in evicted:
            await self.resources.revoke(event_id, spectator)
            self.track(LifecycleEvent.STOPPED_SPECTATING, event_id, spectator)

        logger.info(f"Spectators {'enabled' if enabled else 'disabled'} for event {event_id} ({len(evicted)} evicted)")
        self.updater.queue_update(event_id)
        return enabled

    async def reping(self, user_id: str) -> Optional[str]:
        """Re-ping the session roles; returns the new reping message id."""
        event_id = self.owned_event(user_id)
        snapshot = self.require(event_id)
        if snapshot.is_full:
            raise GuardRejection(Rejection.REPING_EVENT_FULL)

        now = self.clock()
        last = self.store.get_reping_cooldown(event_id)
        if last is not None and now - last < self.settings.reping_cooldown_seconds:
            remaining = int(self.settings.reping_cooldown_seconds - (now - last))
            raise GuardRejection(Rejection.REPING_COOLDOWN, f"{remaining}s left")
        self.store.set_reping_cooldown(event_id, now)

        await self.delete_reping(event_id)
        missing = snapshot.capacity - len(snapshot.participants)
        message_id = await self.venue.send_message(
            snapshot.channel_id, self.renderer.reping_content(snapshot, missing)
        )
        if message_id and not self.store.set_reping_message(event_id, message_id):
            # Session went away while posting.
            await self.venue.delete_message(snapshot.channel_id, message_id)
            return None

        self.track(LifecycleEvent.REPINGED, event_id, user_id)
        return message_id

    async def delete_reping(self, event_id: str) -> None:
        message_id = self.store.get_reping_message(event_id)
        channel_id = self.store.get_channel_id(event_id)
        if not message_id or not channel_id:
            return
        self.store.set_reping_message(event_id, None)
        try:
            await self.venue.delete_message(channel_id, message_id)
        except Exception as e:
            report_error(logger, "Failed to delete reping message", Severity.LOW, e, event_id=event_id)

    # ---------------------------
    # Shared helpers
    # ---------------------------
    async def admit_promoted(self, event_id: str, user_id: str) -> None:
        """Grant a user promoted from the waitlist access to the running session."""
        await self.resources.grant(event_id, user_id)
        await self.post_notice(event_id, LifecycleEvent.PROMOTED_FROM_QUEUE, user_id)
        self.track(LifecycleEvent.PROMOTED_FROM_QUEUE, event_id, user_id)
        if self.store.is_full(event_id):
            await self.delete_reping(event_id)

    async def post_notice(self, event_id: str, kind: LifecycleEvent, user_id: str) -> None:
        thread_id = self.store.get_thread(event_id)
        if not thread_id:
            return
        try:
            await self.threads.send(thread_id, self.renderer.notice_content(kind, user_id))
        except Exception as e:
            report_error(logger, "Failed to post thread notice", Severity.LOW, e, event_id=event_id)

    def track(self, kind: LifecycleEvent, event_id: str, user_id: str, snapshot: Optional[SessionSnapshot] = None, **extra) -> None:
        snapshot = snapshot or self.store.snapshot(event_id)
        if snapshot is None:
            return
        try:
            self.telemetry.track(kind, TelemetryEventData.from_snapshot(snapshot, user_id, **extra))
        except Exception as e:
            report_error(logger, "Telemetry hand-off failed", Severity.LOW, e, event_id=event_id, kind=kind.value)
