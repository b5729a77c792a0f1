"""
In-memory session store.

The single source of truth for every active session. No I/O happens here: every
method is synchronous, so a compound mutation is atomic with respect to the
event loop. Mutators called for a session that no longer exists are silent
no-ops returning a falsy value.
"""

from __future__ import annotations

import asyncio
import time
from typing import Callable, Dict, Iterable, List, Optional, Tuple
from uuid import uuid4

from lobby.models import (
    Departure,
    Operation,
    Participant,
    Session,
    SessionSnapshot,
    SessionStatus,
    SessionTimer,
)
from lobby.processing import OperationLock
from lobby.settings import LobbySettings


class SessionStore:
    def __init__(self, settings: Optional[LobbySettings] = None, lock_clock: Callable[[], float] = time.monotonic) -> None:
        self.settings = settings or LobbySettings()
        self._sessions: Dict[str, Session] = {}
        # user -> event they participate in
        self._user_index: Dict[str, str] = {}
        self._locks = OperationLock(self.settings.processing_timeout_seconds, clock=lock_clock)

    @property
    def capacity(self) -> int:
        return self.settings.max_participants

    # ---------------------------
    # Sessions
    # ---------------------------
    def create_session(
        self,
        event_id: str,
        creator: Participant,
        channel_id: str,
        guild_id: Optional[str],
        start_time: float,
        duration: Optional[float] = None,
        casual: bool = False,
        info: Optional[str] = None,
        match_id: Optional[str] = None,
    ) -> Optional[Session]:
        """Register a session with its creator as first participant. None if it would break an invariant."""
        event_id = str(event_id)
        if event_id in self._sessions or creator.user_id in self._user_index:
            return None

        session = Session(
            event_id=event_id,
            creator=creator.user_id,
            channel_id=str(channel_id),
            guild_id=str(guild_id) if guild_id else None,
            match_id=match_id or str(uuid4()),
            timer=SessionTimer(start_time=start_time, duration=duration),
            casual=casual,
            info=info,
        )
        session.participants[creator.user_id] = creator
        self._sessions[event_id] = session
        self._user_index[creator.user_id] = event_id
        self._discard_from_queues(creator.user_id)
        return session

    def exists(self, event_id: str) -> bool:
        return event_id in self._sessions

    def event_ids(self) -> List[str]:
        return list(self._sessions.keys())

    def snapshot(self, event_id: str) -> Optional[SessionSnapshot]:
        s = self._sessions.get(event_id)
        if s is None:
            return None
        return SessionSnapshot(
            event_id=s.event_id,
            creator=s.creator,
            channel_id=s.channel_id,
            guild_id=s.guild_id,
            match_id=s.match_id,
            status=s.status,
            casual=s.casual,
            info=s.info,
            start_time=s.timer.start_time,
            duration=s.timer.duration,
            has_started=s.timer.has_started,
            participants=tuple(
                Participant(p.user_id, p.role, p.rank) for p in s.participants.values()
            ),
            queue=tuple(s.queue),
            spectators=tuple(s.spectators),
            spectators_enabled=s.spectators_enabled,
            thread_id=s.thread_id,
            voice_channels=tuple(s.voice_channels),
            capacity=self.capacity,
        )

    def clear_all_event_data(self, event_id: str) -> bool:
        """Purge every attribute of a session in one step. False if it was already gone."""
        session = self._sessions.pop(event_id, None)
        self._locks.drop(event_id)
        if session is None:
            return False

        for user_id in session.participants:
            if self._user_index.get(user_id) == event_id:
                del self._user_index[user_id]

        task = session.start_task
        session.start_task = None
        if task is not None and not task.done() and task is not _current_task():
            task.cancel()
        return True

    # ---------------------------
    # Participants
    # ---------------------------
    def get_participants(self, event_id: str) -> Optional[Dict[str, Participant]]:
        s = self._sessions.get(event_id)
        if s is None:
            return None
        return dict(s.participants)

    def get_all_participants(self) -> List[Tuple[str, Dict[str, Participant]]]:
        return [(eid, dict(s.participants)) for eid, s in self._sessions.items()]

    def participant_count(self, event_id: str) -> int:
        s = self._sessions.get(event_id)
        return len(s.participants) if s else 0

    def is_full(self, event_id: str) -> bool:
        return self.participant_count(event_id) >= self.capacity

    def is_participant(self, event_id: str, user_id: str) -> bool:
        return self._user_index.get(user_id) == event_id

    def is_user_in_any_event(self, user_id: str) -> bool:
        return user_id in self._user_index

    def get_user_event_id(self, user_id: str) -> Optional[str]:
        return self._user_index.get(user_id)

    def set_participants(self, event_id: str, participants: Iterable[Participant]) -> bool:
        """Replace the roster, rebuilding the reverse index.

        Users already in another session are skipped, the roster is cut at capacity
        and the creator is kept first. A replacement that would leave nobody is
        refused and the current roster stays.
        """
        s = self._sessions.get(event_id)
        if s is None:
            return False

        roster: Dict[str, Participant] = {}
        for p in participants:
            if p.user_id in roster or self._user_index.get(p.user_id, event_id) != event_id:
                continue
            roster[p.user_id] = p
        if not roster:
            return False

        if s.creator in roster:
            creator = roster.pop(s.creator)
            roster = {s.creator: creator, **roster}
        roster = dict(list(roster.items())[: self.capacity])

        for user_id in s.participants:
            if self._user_index.get(user_id) == event_id:
                del self._user_index[user_id]
        s.participants = roster
        for user_id in roster:
            self._user_index[user_id] = event_id
            self._discard_member_elsewhere(s, user_id)
        if s.creator not in roster:
            s.creator = next(iter(roster))
        return True

    def add_participant(self, event_id: str, participant: Participant) -> bool:
        s = self._sessions.get(event_id)
        if s is None:
            return False
        user_id = participant.user_id
        if user_id in self._user_index:
            return False
        if len(s.participants) >= self.capacity:
            return False

        s.participants[user_id] = participant
        self._user_index[user_id] = event_id
        self._discard_member_elsewhere(s, user_id)
        return True

    def set_participant_role(self, event_id: str, user_id: str, role: str) -> bool:
        s = self._sessions.get(event_id)
        if s is None or user_id not in s.participants:
            return False
        s.participants[user_id].role = role
        return True

    def remove_participant(self, event_id: str, user_id: str, promote: bool = False) -> Optional[Departure]:
        """Remove a participant; optionally promote the waitlist head in the same step.

        If the creator leaves, ownership passes to the longest-standing remaining
        participant. Promotion only happens once the session has started.
        """
        s = self._sessions.get(event_id)
        if s is None or user_id not in s.participants:
            return None

        del s.participants[user_id]
        if self._user_index.get(user_id) == event_id:
            del self._user_index[user_id]

        promoted = None
        if promote and s.timer.has_started:
            promoted = self._promote_head(s)

        was_creator = s.creator == user_id
        new_creator = None
        if was_creator and s.participants:
            new_creator = next(iter(s.participants))
            s.creator = new_creator

        return Departure(
            user_id=user_id,
            was_creator=was_creator,
            promoted=promoted,
            new_creator=new_creator,
            remaining=len(s.participants),
        )

    def _promote_head(self, s: Session) -> Optional[str]:
        while s.queue and len(s.participants) < self.capacity:
            head = s.queue.pop(0)
            if head in self._user_index:
                # Joined another session since queueing; not eligible any more.
                continue
            if head in s.spectators:
                s.spectators.remove(head)
            s.participants[head] = Participant(user_id=head)
            self._user_index[head] = s.event_id
            self._discard_from_queues(head)
            return head
        return None

    # ---------------------------
    # Creator
    # ---------------------------
    def get_creator(self, event_id: str) -> Optional[str]:
        s = self._sessions.get(event_id)
        return s.creator if s else None

    def set_creator(self, event_id: str, user_id: str) -> bool:
        s = self._sessions.get(event_id)
        if s is None or user_id not in s.participants:
            return False
        s.creator = user_id
        return True

    def get_all_creators(self) -> List[Tuple[str, str]]:
        return [(eid, s.creator) for eid, s in self._sessions.items()]

    def user_owns_event(self, user_id: str) -> Optional[str]:
        for event_id, s in self._sessions.items():
            if s.creator == user_id:
                return event_id
        return None

    # ---------------------------
    # Status & timer
    # ---------------------------
    def get_status(self, event_id: str) -> Optional[SessionStatus]:
        s = self._sessions.get(event_id)
        return s.status if s else None

    def set_status(self, event_id: str, status: SessionStatus) -> bool:
        s = self._sessions.get(event_id)
        if s is None:
            return False
        s.status = status
        return True

    def get_timer(self, event_id: str) -> Optional[SessionTimer]:
        s = self._sessions.get(event_id)
        return s.timer if s else None

    def get_all_timers(self) -> List[Tuple[str, SessionTimer]]:
        """Snapshot list; safe to iterate while sessions are being purged."""
        return [(eid, s.timer) for eid, s in self._sessions.items()]

    def mark_started(self, event_id: str) -> bool:
        """Check-and-set of the started flag; True only for the first caller."""
        s = self._sessions.get(event_id)
        if s is None or s.timer.has_started or s.status.is_terminal:
            return False
        s.timer.has_started = True
        s.status = SessionStatus.STARTED
        return True

    def clear_countdown(self, event_id: str) -> bool:
        s = self._sessions.get(event_id)
        if s is None:
            return False
        s.timer.duration = None
        return True

    def set_start_task(self, event_id: str, task: asyncio.Task) -> bool:
        s = self._sessions.get(event_id)
        if s is None:
            task.cancel()
            return False
        self.cancel_start_task(event_id)
        s.start_task = task
        return True

    def cancel_start_task(self, event_id: str) -> bool:
        s = self._sessions.get(event_id)
        if s is None or s.start_task is None:
            return False
        task, s.start_task = s.start_task, None
        if not task.done() and task is not _current_task():
            task.cancel()
        return True

    def detach_start_task(self, event_id: str) -> None:
        """Forget the countdown handle without cancelling it (called by the countdown itself)."""
        s = self._sessions.get(event_id)
        if s is not None:
            s.start_task = None

    def get_start_task(self, event_id: str) -> Optional[asyncio.Task]:
        s = self._sessions.get(event_id)
        return s.start_task if s else None

    # ---------------------------
    # Venue & resources
    # ---------------------------
    def get_channel_id(self, event_id: str) -> Optional[str]:
        s = self._sessions.get(event_id)
        return s.channel_id if s else None

    def get_guild_id(self, event_id: str) -> Optional[str]:
        s = self._sessions.get(event_id)
        return s.guild_id if s else None

    def get_match_id(self, event_id: str) -> Optional[str]:
        s = self._sessions.get(event_id)
        return s.match_id if s else None

    def get_thread(self, event_id: str) -> Optional[str]:
        s = self._sessions.get(event_id)
        return s.thread_id if s else None

    def set_thread(self, event_id: str, thread_id: str) -> bool:
        s = self._sessions.get(event_id)
        if s is None:
            return False
        s.thread_id = str(thread_id)
        return True

    def get_voice_channels(self, event_id: str) -> List[str]:
        s = self._sessions.get(event_id)
        return list(s.voice_channels) if s else []

    def set_voice_channels(self, event_id: str, channel_ids: Iterable[str]) -> bool:
        s = self._sessions.get(event_id)
        if s is None:
            return False
        s.voice_channels = [str(c) for c in channel_ids]
        return True

    def get_reping_cooldown(self, event_id: str) -> Optional[float]:
        s = self._sessions.get(event_id)
        return s.reping_cooldown if s else None

    def set_reping_cooldown(self, event_id: str, timestamp: float) -> bool:
        s = self._sessions.get(event_id)
        if s is None:
            return False
        s.reping_cooldown = timestamp
        return True

    def get_reping_message(self, event_id: str) -> Optional[str]:
        s = self._sessions.get(event_id)
        return s.reping_message if s else None

    def set_reping_message(self, event_id: str, message_id: Optional[str]) -> bool:
        s = self._sessions.get(event_id)
        if s is None:
            return False
        s.reping_message = str(message_id) if message_id else None
        return True

    # ---------------------------
    # Waitlist
    # ---------------------------
    def get_queue(self, event_id: str) -> List[str]:
        s = self._sessions.get(event_id)
        return list(s.queue) if s else []

    def is_user_in_queue(self, event_id: str, user_id: str) -> bool:
        s = self._sessions.get(event_id)
        return bool(s) and user_id in s.queue

    def add_to_queue(self, event_id: str, user_id: str) -> bool:
        s = self._sessions.get(event_id)
        if s is None:
            return False
        if user_id in s.queue or user_id in s.participants or user_id in s.spectators:
            return False
        s.queue.append(user_id)
        return True

    def remove_from_queue(self, event_id: str, user_id: str) -> bool:
        s = self._sessions.get(event_id)
        if s is None or user_id not in s.queue:
            return False
        s.queue.remove(user_id)
        return True

    def remove_user_from_all_queues(self, user_id: str) -> List[str]:
        """Returns the events the user was queued for."""
        return self._discard_from_queues(user_id)

    # ---------------------------
    # Spectators
    # ---------------------------
    def get_spectators(self, event_id: str) -> List[str]:
        s = self._sessions.get(event_id)
        return list(s.spectators) if s else []

    def is_user_spectating(self, event_id: str, user_id: str) -> bool:
        s = self._sessions.get(event_id)
        return bool(s) and user_id in s.spectators

    def get_spectating_events(self, user_id: str) -> List[str]:
        return [eid for eid, s in self._sessions.items() if user_id in s.spectators]

    def is_spectators_full(self, event_id: str) -> bool:
        s = self._sessions.get(event_id)
        return bool(s) and len(s.spectators) >= self.settings.max_spectators

    def get_spectators_enabled(self, event_id: str) -> bool:
        s = self._sessions.get(event_id)
        return bool(s) and s.spectators_enabled

    def set_spectators_enabled(self, event_id: str, enabled: bool) -> List[str]:
        """Returns the spectators evicted by disabling (empty otherwise)."""
        s = self._sessions.get(event_id)
        if s is None:
            return []
        s.spectators_enabled = bool(enabled)
        if enabled:
            return []
        evicted, s.spectators = s.spectators, []
        return evicted

    def add_spectator(self, event_id: str, user_id: str) -> bool:
        """Adds a spectator, moving them out of the waitlist."""
        s = self._sessions.get(event_id)
        if s is None or not s.spectators_enabled:
            return False
        if user_id in s.participants or user_id in s.spectators:
            return False
        if len(s.spectators) >= self.settings.max_spectators:
            return False
        if user_id in s.queue:
            s.queue.remove(user_id)
        s.spectators.append(user_id)
        return True

    def remove_spectator(self, event_id: str, user_id: str) -> bool:
        s = self._sessions.get(event_id)
        if s is None or user_id not in s.spectators:
            return False
        s.spectators.remove(user_id)
        return True

    def delete_spectators(self, event_id: str) -> List[str]:
        s = self._sessions.get(event_id)
        if s is None:
            return []
        evicted, s.spectators = s.spectators, []
        return evicted

    # ---------------------------
    # Processing states
    # ---------------------------
    def is_processing(self, event_id: str, operation: Operation) -> bool:
        return self._locks.is_processing(event_id, operation)

    def set_processing(self, event_id: str, operation: Operation) -> bool:
        if event_id not in self._sessions:
            return False
        self._locks.set_processing(event_id, operation)
        return True

    def clear_processing(self, event_id: str, operation: Operation) -> None:
        self._locks.clear_processing(event_id, operation)

    def first_processing(self, event_id: str, operations: Optional[Iterable[Operation]] = None) -> Optional[Operation]:
        if operations is None:
            return self._locks.first_active(event_id)
        return self._locks.first_active(event_id, operations)

    # ---------------------------
    # Internal
    # ---------------------------
    def _discard_member_elsewhere(self, s: Session, user_id: str) -> None:
        if user_id in s.spectators:
            s.spectators.remove(user_id)
        self._discard_from_queues(user_id)

    def _discard_from_queues(self, user_id: str) -> List[str]:
        removed = []
        for event_id, s in self._sessions.items():
            if user_id in s.queue:
                s.queue.remove(user_id)
                removed.append(event_id)
        return removed


def _current_task() -> Optional[asyncio.Task]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None
