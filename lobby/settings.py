"""
Numeric knobs of the lobby core, supplied by the hosting process.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class LobbySettings:
    max_participants: int = 8
    # None means "same as max_participants"
    min_participants: Optional[int] = None
    max_spectators: int = 2
    processing_timeout_seconds: float = 30.0
    max_lifetime_seconds: float = 24 * 60 * 60
    update_debounce_seconds: float = 1.0
    reping_cooldown_seconds: float = 10 * 60.0
    start_delay_seconds: float = 15.0
    shutdown_cleanup_delay_seconds: float = 2.0
    # Poll interval used while waiting for in-flight operations during shutdown.
    shutdown_poll_seconds: float = 0.5

    def __post_init__(self) -> None:
        if self.max_participants < 1:
            raise ValueError("max_participants must be >= 1")
        if self.min_participants is not None and not (1 <= self.min_participants <= self.max_participants):
            raise ValueError("min_participants must be within 1..max_participants")
        if self.max_spectators < 0:
            raise ValueError("max_spectators must be >= 0")
        if self.processing_timeout_seconds <= 0:
            raise ValueError("processing_timeout_seconds must be > 0")
        if self.max_lifetime_seconds <= 0:
            raise ValueError("max_lifetime_seconds must be > 0")

    @property
    def required_participants(self) -> int:
        if self.min_participants is None:
            return self.max_participants
        return self.min_participants

    @classmethod
    def from_config(cls, cfg) -> "LobbySettings":
        """Build settings from the root config module (or any object with the same names)."""
        return cls(
            max_participants=int(getattr(cfg, "MAX_PARTICIPANTS", 8)),
            min_participants=getattr(cfg, "MIN_PARTICIPANTS", None),
            max_spectators=int(getattr(cfg, "MAX_SPECTATORS", 2)),
            processing_timeout_seconds=float(getattr(cfg, "PROCESSING_TIMEOUT_SECONDS", 30.0)),
            max_lifetime_seconds=float(getattr(cfg, "EVENT_MAX_LIFETIME_SECONDS", 24 * 60 * 60)),
            update_debounce_seconds=float(getattr(cfg, "UPDATE_DEBOUNCE_SECONDS", 1.0)),
            reping_cooldown_seconds=float(getattr(cfg, "REPING_COOLDOWN_SECONDS", 600.0)),
            start_delay_seconds=float(getattr(cfg, "EVENT_START_DELAY_SECONDS", 15.0)),
            shutdown_cleanup_delay_seconds=float(getattr(cfg, "SHUTDOWN_EVENT_CLEANUP_DELAY_SECONDS", 2.0)),
        )
