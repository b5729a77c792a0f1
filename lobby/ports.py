"""
Capabilities the lobby core consumes from the hosting platform.

The Discord adapters live in services/; tests plug in in-memory fakes.
"""

from __future__ import annotations

from typing import List, Optional, Protocol, Sequence

from lobby.models import LifecycleEvent, SessionSnapshot, TelemetryEventData


class Venue(Protocol):
    """Plain messages in the channel hosting the announcement."""

    async def send_message(self, channel_id: str, content: str) -> Optional[str]:
        ...

    async def delete_message(self, channel_id: str, message_id: str) -> bool:
        ...



class ThreadPort(Protocol):
    async def create_thread(self, channel_id: str, name: str) -> Optional[str]:
        ...

    async def add_member(self, thread_id: str, user_id: str) -> bool:
        ...

    async def remove_member(self, thread_id: str, user_id: str) -> bool:
        ...

    async def send(self, thread_id: str, content: str) -> bool:
        ...

    async def lock_and_archive(self, thread_id: str) -> bool:
        ...


class VoiceRoomPort(Protocol):
    async def create_rooms(
        self, guild_id: str, channel_id: str, member_ids: Sequence[str], short_id: str
    ) -> List[str]:
        ...

    async def grant_access(self, channel_ids: Sequence[str], user_id: str) -> None:
        ...

    async def revoke_access(self, channel_ids: Sequence[str], user_id: str, disconnect: bool = True) -> None:
        ...

    async def delete_rooms(self, channel_ids: Sequence[str]) -> None:
        ...


class AnnouncementRenderer(Protocol):
    async def render(self, snapshot: SessionSnapshot) -> None:
        """Edit the announcement so it reflects the snapshot."""
        ...

    def reping_content(self, snapshot: SessionSnapshot, missing: int) -> str:
        ...

    def voice_list_content(self, snapshot: SessionSnapshot, channel_ids: Sequence[str]) -> str:
        ...

    def notice_content(self, kind: LifecycleEvent, user_id: str) -> str:
        """Short thread notice (promotion, ownership transfer)."""
        ...


class TelemetrySink(Protocol):
    def track(self, kind: LifecycleEvent, data: TelemetryEventData) -> None:
        """Fire-and-forget; must never raise."""
        ...


class NullTelemetry:
    """Sink used when telemetry is not configured."""

    enabled = False

    def track(self, kind: LifecycleEvent, data: TelemetryEventData) -> None:
        return None
