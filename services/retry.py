"""
Bounded retry for Discord / HTTP calls (tenacity).

Unknown-resource and permission errors are fatal right away; server errors,
connection errors and timeouts are retried with jittered exponential backoff.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar

import aiohttp
import discord
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_random_exponential,
)

import config
from logger import setup_logger
from lobby.errors import Severity, report_error


logger = setup_logger(__name__, config.LOG_FILE, config.LOG_LEVEL)

T = TypeVar("T")

NON_RETRYABLE_DISCORD_CODES = frozenset({
    10003,  # Unknown Channel
    10004,  # Unknown Guild
    10008,  # Unknown Message
    10013,  # Unknown User
    10014,  # Unknown Emoji
    10015,  # Unknown Webhook
    10062,  # Unknown Interaction
    50001,  # Missing Access
    50013,  # Missing Permissions
    50035,  # Invalid Form Body
    50055,  # Invalid Guild
})


@dataclass(frozen=True)
class RetryProfile:
    name: str
    attempts: int
    min_wait: float
    max_wait: float
    severity: Severity


def _profile(name: str, severity: Severity) -> RetryProfile:
    p = config.RETRY_PROFILES[name]
    return RetryProfile(name, int(p["attempts"]), float(p["min_wait"]), float(p["max_wait"]), severity)


LOW = _profile("low", Severity.LOW)
MEDIUM = _profile("medium", Severity.MEDIUM)
HIGH = _profile("high", Severity.HIGH)


def is_retryable(error: BaseException) -> bool:
    if isinstance(error, (discord.NotFound, discord.Forbidden)):
        return False
    if isinstance(error, discord.HTTPException):
        if error.code in NON_RETRYABLE_DISCORD_CODES:
            return False
        # 429 is handled inside discord.py's HTTP client already.
        return error.status >= 500
    if isinstance(error, discord.GatewayNotFound):
        return True
    return isinstance(error, (aiohttp.ClientError, asyncio.TimeoutError, ConnectionError))


def _log_attempt(profile: RetryProfile) -> Callable[[RetryCallState], None]:
    def before_sleep(state: RetryCallState) -> None:
        error = state.outcome.exception() if state.outcome else None
        report_error(
            logger,
            f"Retry attempt {state.attempt_number} failed",
            profile.severity if profile.severity is not Severity.HIGH else Severity.MEDIUM,
            error,
            profile=profile.name,
            attempts_left=profile.attempts - state.attempt_number,
        )
    return before_sleep


async def with_retry(operation: Callable[[], Awaitable[T]], profile: RetryProfile = MEDIUM) -> T:
    """Run `operation` (a zero-arg coroutine factory) under `profile`; re-raises the last error."""
    retrying = AsyncRetrying(
        stop=stop_after_attempt(profile.attempts),
        wait=wait_random_exponential(multiplier=profile.min_wait, min=profile.min_wait, max=profile.max_wait),
        retry=retry_if_exception(is_retryable),
        before_sleep=_log_attempt(profile),
        reraise=True,
    )
    async for attempt in retrying:
        with attempt:
            return await operation()
    raise RuntimeError("retry loop exited without a result")


async def with_retry_or_none(operation: Callable[[], Awaitable[T]], profile: RetryProfile = MEDIUM) -> Optional[T]:
    try:
        return await with_retry(operation, profile)
    except Exception as e:
        report_error(logger, "Operation failed after retries", profile.severity, e, profile=profile.name)
        return None


async def with_retry_bool(operation: Callable[[], Awaitable[Any]], profile: RetryProfile = MEDIUM) -> bool:
    try:
        await with_retry(operation, profile)
        return True
    except Exception as e:
        report_error(logger, "Operation failed after retries", profile.severity, e, profile=profile.name)
        return False
