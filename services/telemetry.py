"""
Telemetry HTTP client.

Lifecycle notifications are POSTed to `{TELEMETRY_URL}/telemetry`. Every id is
sha256-hashed before it leaves the process. Delivery is best effort: tracking
never blocks a lifecycle transition and failures are only logged.
"""

from __future__ import annotations

import asyncio
import hashlib
import time
from typing import List, Optional, Set

import aiohttp
from pydantic import BaseModel, Field

import config
from logger import setup_logger
from lobby.errors import Severity, report_error
from lobby.models import LifecycleEvent, ParticipantData, TelemetryEventData
from services.metrics import record_telemetry_dispatch, record_telemetry_failure


logger = setup_logger(__name__, config.LOG_FILE, config.LOG_LEVEL)


class TelemetryError(RuntimeError):
    pass


class TelemetryEvent(BaseModel):
    event: str = Field(..., description="Lifecycle notification kind")
    timestamp: float = Field(default_factory=time.time)
    guild_id: str
    event_id: str
    user_id: str
    participants: List[ParticipantData] = Field(default_factory=list)
    channel_id: str
    match_id: str
    time_to_start: Optional[int] = None
    target_user_id: Optional[str] = None


def hash_id(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def build_event(kind: LifecycleEvent, data: TelemetryEventData) -> TelemetryEvent:
    """Payload with every identifier hashed (match ids are random and stay readable)."""
    return TelemetryEvent(
        event=kind.value,
        guild_id=hash_id(data.guild_id),
        event_id=hash_id(data.event_id),
        user_id=hash_id(data.user_id),
        participants=[
            ParticipantData(user_id=hash_id(p.user_id), role=p.role, rank=p.rank)
            for p in data.participants
        ],
        channel_id=hash_id(data.channel_id),
        match_id=data.match_id,
        time_to_start=data.time_to_start,
        target_user_id=hash_id(data.target_user_id) if data.target_user_id else None,
    )


class TelemetryService:
    def __init__(
        self,
        base_url: Optional[str],
        token: Optional[str],
        timeout_total_seconds: float = 5.0,
        timeout_connect_seconds: float = 2.0,
    ) -> None:
        self.base_url = (base_url or "").rstrip("/")
        self.token = token or ""
        self.timeout_total_seconds = float(timeout_total_seconds)
        self.timeout_connect_seconds = float(timeout_connect_seconds)
        self._session: Optional[aiohttp.ClientSession] = None
        self._pending: Set[asyncio.Task] = set()
        self._closed = False

    @property
    def enabled(self) -> bool:
        return bool(self.base_url and self.token) and not self._closed

    def _timeout(self) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(
            total=self.timeout_total_seconds,
            connect=self.timeout_connect_seconds,
        )

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=self._timeout(),
                headers={"Authorization": f"Bearer {self.token}"},
            )
        return self._session

    def track(self, kind: LifecycleEvent, data: TelemetryEventData) -> None:
        if not self.enabled:
            return
        try:
            task = asyncio.get_running_loop().create_task(self.send(kind, data))
        except RuntimeError:
            logger.debug(f"No running loop, dropping telemetry event {kind.value}")
            return
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def send(self, kind: LifecycleEvent, data: TelemetryEventData) -> bool:
        try:
            await self._post(build_event(kind, data))
        except Exception as e:
            record_telemetry_failure(kind.value, data.guild_id, data.channel_id)
            report_error(
                logger,
                "Failed to send telemetry event",
                Severity.LOW,
                e,
                event=kind.value,
                match_id=data.match_id,
            )
            return False
        record_telemetry_dispatch(kind.value, data.guild_id, data.channel_id)
        return True

    async def _post(self, payload: TelemetryEvent) -> None:
        url = f"{self.base_url}/telemetry"
        try:
            async with self._get_session().post(url, json=payload.model_dump(mode="json")) as resp:
                if resp.status < 200 or resp.status >= 300:
                    try:
                        detail = await resp.text()
                    except Exception:
                        detail = ""
                    raise TelemetryError(f"Telemetry HTTP {resp.status}: {detail[:200]}")
        except asyncio.TimeoutError as e:
            raise TelemetryError("Telemetry timeout") from e
        except aiohttp.ClientError as e:
            raise TelemetryError(f"Telemetry connection error: {e}") from e

    async def close(self, drain_timeout: float = 5.0) -> None:
        """Wait briefly for in-flight posts, then close the HTTP session."""
        self._closed = True
        if self._pending:
            done, pending = await asyncio.wait(set(self._pending), timeout=drain_timeout)
            for task in pending:
                task.cancel()
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
