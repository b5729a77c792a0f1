"""
Lobby error taxonomy and the shared error reporter.

- GuardRejection: a precondition failed, nothing changed, tell the caller.
- OperationInProgress: a conflicting lifecycle operation is in flight ("please wait").
- Everything else raised by platform calls is reported with report_error and
  never rolls back store state.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Optional

from lobby.models import Operation
from services.metrics import record_error


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class Rejection(str, Enum):
    SESSION_NOT_FOUND = "session_not_found"
    SHUTTING_DOWN = "shutting_down"
    ALREADY_SIGNED_UP = "already_signed_up"
    EVENT_FULL = "event_full"
    NOT_SIGNED_UP = "not_signed_up"
    CREATOR_ONLY = "creator_only"
    CREATOR_ONLY_START = "creator_only_start"
    CREATOR_ONLY_CANCEL = "creator_only_cancel"
    CREATOR_ONLY_FINISH = "creator_only_finish"
    CREATOR_CANNOT_SIGNOUT = "creator_cannot_signout"
    CREATOR_CANNOT_SPECTATE = "creator_cannot_spectate"
    NOT_ENOUGH_PARTICIPANTS = "not_enough_participants"
    EVENT_FINALIZING = "event_finalizing"
    EVENT_STARTED = "event_started"
    EVENT_NOT_STARTED = "event_not_started"
    QUEUE_EVENT_NOT_FULL = "queue_event_not_full"
    QUEUE_ALREADY_IN_QUEUE = "queue_already_in_queue"
    QUEUE_ALREADY_PARTICIPATING = "queue_already_participating"
    QUEUE_NOT_IN_QUEUE = "queue_not_in_queue"
    QUEUE_SPECTATING = "queue_spectating"
    SPECTATE_DISABLED = "spectate_disabled"
    SPECTATE_FULL = "spectate_full"
    SPECTATE_ALREADY_SPECTATING = "spectate_already_spectating"
    SPECTATE_NOT_SPECTATING = "spectate_not_spectating"
    CANNOT_KICK_SELF = "cannot_kick_self"
    KICK_NOT_PARTICIPANT = "kick_not_participant"
    REPING_EVENT_FULL = "reping_event_full"
    REPING_COOLDOWN = "reping_cooldown"
    NO_EVENT_OWNED = "no_event_owned"
    NOT_IN_ANY_EVENT = "dropout_all_not_in_events"
    OPERATION_IN_PROGRESS = "operation_in_progress"


class LobbyError(RuntimeError):
    pass


class GuardRejection(LobbyError):
    def __init__(self, reason: Rejection, detail: str = "") -> None:
        self.reason = reason
        self.detail = detail
        super().__init__(f"{reason.value}: {detail}" if detail else reason.value)


class SessionNotFound(GuardRejection):
    def __init__(self, event_id: str) -> None:
        self.event_id = event_id
        super().__init__(Rejection.SESSION_NOT_FOUND, event_id)


class OperationInProgress(GuardRejection):
    def __init__(self, event_id: str, operation: Operation) -> None:
        self.event_id = event_id
        self.operation = operation
        super().__init__(Rejection.OPERATION_IN_PROGRESS, f"{operation.value} in progress for {event_id}")


def report_error(
    logger: logging.Logger,
    reason: str,
    severity: Severity,
    error: Optional[BaseException] = None,
    skip_metrics: bool = False,
    **metadata: Any,
) -> None:
    """Single severity-tagged log record with metadata; HIGH keeps the traceback.

    Also counts the error in application_errors_total unless skip_metrics is set.
    """
    if not skip_metrics:
        record_error(reason, severity.value)
    meta = " ".join(f"{k}={v}" for k, v in metadata.items() if v is not None)
    err = f"{type(error).__name__}: {error}" if error is not None else "-"
    line = f"[{severity.value}] {reason} | {meta} | error={err}" if meta else f"[{severity.value}] {reason} | error={err}"

    if severity is Severity.HIGH:
        logger.error(line, exc_info=error if error is not None else False)
    elif severity is Severity.MEDIUM:
        logger.warning(line)
    else:
        logger.info(line)
