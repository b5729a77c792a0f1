"""
Session data model.

Session scope: the announcement message ID (string).
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, Field


class Operation(str, Enum):
    """Lifecycle operations guarded by the processing-state lock."""
    STARTING = "starting"
    FINISHING = "finishing"
    CANCELLING = "cancelling"
    CLEANUP = "cleanup"


class SessionStatus(str, Enum):
    OPEN = "open"
    FINALIZING = "finalizing"
    STARTED = "started"
    FINISHED = "finished"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    SHUTDOWN = "shutdown"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    SessionStatus.FINISHED,
    SessionStatus.CANCELLED,
    SessionStatus.EXPIRED,
    SessionStatus.SHUTDOWN,
})


class LifecycleEvent(str, Enum):
    """Telemetry notification kinds."""
    CREATED = "event_created"
    STARTED = "event_started"
    FINISHED = "event_finished"
    CANCELLED = "event_cancelled"
    EXPIRED = "event_expired"
    SHUTDOWN = "event_shutdown"
    REPINGED = "event_repinged"
    SIGNED_UP = "user_sign_up"
    SIGNED_OUT = "user_sign_out"
    DROPPED_IN = "user_drop_in"
    DROPPED_OUT = "user_drop_out"
    KICKED = "user_kicked"
    JOINED_QUEUE = "user_joined_queue"
    LEFT_QUEUE = "user_left_queue"
    PROMOTED_FROM_QUEUE = "user_promoted_from_queue"
    STARTED_SPECTATING = "user_started_spectating"
    STOPPED_SPECTATING = "user_stopped_spectating"
    OWNERSHIP_TRANSFERRED = "ownership_transferred"


@dataclass
class Participant:
    user_id: str
    role: Optional[str] = None
    rank: Optional[str] = None


@dataclass
class SessionTimer:
    start_time: float  # wall clock seconds
    duration: Optional[float] = None  # countdown seconds, None = start when full
    has_started: bool = False

    def countdown_pending(self, now: float) -> bool:
        return self.duration is not None and not self.has_started and now - self.start_time < self.duration

    def age(self, now: float) -> float:
        return now - self.start_time


@dataclass
class Session:
    """Every per-session attribute lives here so creation and purge are single steps."""
    event_id: str
    creator: str
    channel_id: str
    guild_id: Optional[str]
    match_id: str
    timer: SessionTimer
    participants: Dict[str, Participant] = field(default_factory=dict)  # insertion order = display order
    status: SessionStatus = SessionStatus.OPEN
    casual: bool = False
    info: Optional[str] = None
    thread_id: Optional[str] = None
    voice_channels: List[str] = field(default_factory=list)
    queue: List[str] = field(default_factory=list)
    spectators: List[str] = field(default_factory=list)
    spectators_enabled: bool = False
    reping_cooldown: Optional[float] = None
    reping_message: Optional[str] = None
    start_task: Optional[asyncio.Task] = field(default=None, repr=False)


@dataclass(frozen=True)
class SessionSnapshot:
    """Read-only copy handed to renderers and telemetry."""
    event_id: str
    creator: str
    channel_id: str
    guild_id: Optional[str]
    match_id: str
    status: SessionStatus
    casual: bool
    info: Optional[str]
    start_time: float
    duration: Optional[float]
    has_started: bool
    participants: Tuple[Participant, ...]
    queue: Tuple[str, ...]
    spectators: Tuple[str, ...]
    spectators_enabled: bool
    thread_id: Optional[str]
    voice_channels: Tuple[str, ...]
    capacity: int

    @property
    def participant_ids(self) -> List[str]:
        return [p.user_id for p in self.participants]

    @property
    def is_full(self) -> bool:
        return len(self.participants) >= self.capacity

    @property
    def short_id(self) -> str:
        return self.match_id[:5] if self.match_id else "unknown"


@dataclass(frozen=True)
class Departure:
    """Outcome of removing a participant (computed in one store step)."""
    user_id: str
    was_creator: bool = False
    promoted: Optional[str] = None
    new_creator: Optional[str] = None
    remaining: int = 0

    @property
    def emptied(self) -> bool:
        return self.remaining == 0


class ParticipantData(BaseModel):
    user_id: str
    role: Optional[str] = None
    rank: Optional[str] = None


class TelemetryEventData(BaseModel):
    guild_id: str = Field("unknown", description="Venue guild")
    event_id: str = Field(..., description="Announcement message ID")
    user_id: str = Field(..., description="Acting user")
    participants: List[ParticipantData] = Field(default_factory=list)
    channel_id: str = "unknown"
    match_id: str = "unknown"
    time_to_start: Optional[int] = Field(None, description="Countdown in minutes, if any")
    target_user_id: Optional[str] = None

    @classmethod
    def from_snapshot(cls, snapshot: SessionSnapshot, user_id: str, **extra) -> "TelemetryEventData":
        return cls(
            guild_id=snapshot.guild_id or "unknown",
            event_id=snapshot.event_id,
            user_id=user_id,
            participants=[
                ParticipantData(user_id=p.user_id, role=p.role, rank=p.rank)
                for p in snapshot.participants
            ],
            channel_id=snapshot.channel_id or "unknown",
            match_id=snapshot.match_id or "unknown",
            **extra,
        )
