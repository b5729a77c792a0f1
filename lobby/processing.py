"""
Processing-state guard: per-session, per-operation mutual exclusion with a watchdog.

A set_processing() that is never cleared is released after `timeout_seconds`.
The watchdog is a safety net; callers release in `finally`.
"""

from __future__ import annotations

import asyncio
import time
from typing import Callable, Dict, FrozenSet, Iterable, Optional, Tuple

import config
from logger import setup_logger
from lobby.models import Operation


logger = setup_logger(__name__, config.LOG_FILE, config.LOG_LEVEL)

ALL_OPERATIONS: Tuple[Operation, ...] = (
    Operation.STARTING,
    Operation.FINISHING,
    Operation.CANCELLING,
    Operation.CLEANUP,
)


class OperationLock:
    def __init__(self, timeout_seconds: float = 30.0, clock: Callable[[], float] = time.monotonic) -> None:
        self.timeout_seconds = float(timeout_seconds)
        self._clock = clock
        # event_id -> {operation: deadline}
        self._states: Dict[str, Dict[Operation, float]] = {}
        self._watchdogs: Dict[Tuple[str, Operation], asyncio.TimerHandle] = {}

    def is_processing(self, event_id: str, operation: Operation) -> bool:
        ops = self._states.get(event_id)
        if not ops or operation not in ops:
            return False
        # Lazy expiry covers callers running without an event loop (no watchdog armed).
        if self._clock() >= ops[operation]:
            self._release(event_id, operation, reason="deadline passed")
            return False
        return True

    def first_active(self, event_id: str, operations: Iterable[Operation] = ALL_OPERATIONS) -> Optional[Operation]:
        for op in operations:
            if self.is_processing(event_id, op):
                return op
        return None

    def active(self, event_id: str) -> FrozenSet[Operation]:
        return frozenset(op for op in ALL_OPERATIONS if self.is_processing(event_id, op))

    def set_processing(self, event_id: str, operation: Operation) -> None:
        deadline = self._clock() + self.timeout_seconds
        self._states.setdefault(event_id, {})[operation] = deadline

        key = (event_id, operation)
        old = self._watchdogs.pop(key, None)
        if old is not None:
            old.cancel()

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._watchdogs[key] = loop.call_later(self.timeout_seconds, self._watchdog_fire, event_id, operation, deadline)

    def clear_processing(self, event_id: str, operation: Operation) -> None:
        handle = self._watchdogs.pop((event_id, operation), None)
        if handle is not None:
            handle.cancel()

        ops = self._states.get(event_id)
        if not ops:
            return
        ops.pop(operation, None)
        if not ops:
            del self._states[event_id]

    def drop(self, event_id: str) -> None:
        """Forget every operation of a session (teardown)."""
        for op in ALL_OPERATIONS:
            handle = self._watchdogs.pop((event_id, op), None)
            if handle is not None:
                handle.cancel()
        self._states.pop(event_id, None)

    def _watchdog_fire(self, event_id: str, operation: Operation, deadline: float) -> None:
        self._watchdogs.pop((event_id, operation), None)
        ops = self._states.get(event_id)
        # A newer set_processing() re-armed the lock; its own watchdog owns it.
        if not ops or ops.get(operation) != deadline:
            return
        self._release(event_id, operation, reason="watchdog")

    def _release(self, event_id: str, operation: Operation, reason: str) -> None:
        logger.warning(
            f"Processing state '{operation.value}' for event {event_id} released by {reason} "
            f"after {self.timeout_seconds:.1f}s"
        )
        self.clear_processing(event_id, operation)
