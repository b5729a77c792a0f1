"""
Prometheus counters for the lobby bot.

Usage:
    from services.metrics import record_interaction, record_error

    record_interaction("sign_up")
    record_error("Failed to send telemetry event", "LOW")

The counters live in their own registry (with process and platform collectors)
and are served over HTTP by start_metrics_server().
"""

from __future__ import annotations

import asyncio
import threading
from typing import Optional, Tuple
from wsgiref.simple_server import WSGIServer

from prometheus_client import (
    CollectorRegistry,
    Counter,
    PlatformCollector,
    ProcessCollector,
    start_http_server,
)

import config
from logger import setup_logger


logger = setup_logger(__name__, config.LOG_FILE, config.LOG_LEVEL)


# ============================================================================
# Registry
# ============================================================================

REGISTRY = CollectorRegistry()
ProcessCollector(registry=REGISTRY)
PlatformCollector(registry=REGISTRY)


# ============================================================================
# Counters
# ============================================================================

interaction_counter = Counter(
    "application_interactions",
    "Count of interactions received by the application",
    ["type"],
    registry=REGISTRY,
)

error_counter = Counter(
    "application_errors",
    "Count of application errors by reason and severity",
    ["reason", "severity"],
    registry=REGISTRY,
)

telemetry_dispatch_counter = Counter(
    "telemetry_events_forwarded",
    "Count of telemetry events successfully forwarded to the backend",
    ["event", "guild", "channel"],
    registry=REGISTRY,
)

telemetry_failure_counter = Counter(
    "telemetry_events_failed",
    "Count of telemetry events that failed to forward to the backend",
    ["event", "guild", "channel"],
    registry=REGISTRY,
)


# ============================================================================
# Helpers
# ============================================================================

def record_interaction(kind: str) -> None:
    interaction_counter.labels(type=kind).inc()


def record_error(reason: str, severity: str) -> None:
    error_counter.labels(reason=reason, severity=severity).inc()


def record_telemetry_dispatch(event: str, guild_id: Optional[str], channel_id: Optional[str]) -> None:
    telemetry_dispatch_counter.labels(event=event, guild=guild_id or "unknown", channel=channel_id or "unknown").inc()


def record_telemetry_failure(event: str, guild_id: Optional[str], channel_id: Optional[str]) -> None:
    telemetry_failure_counter.labels(event=event, guild=guild_id or "unknown", channel=channel_id or "unknown").inc()


# ============================================================================
# HTTP endpoint
# ============================================================================

_server: Optional[Tuple[WSGIServer, threading.Thread]] = None


def start_metrics_server(port: int = config.METRICS_PORT) -> bool:
    """Serve the registry on :port/metrics. Idempotent; port 0 leaves it off."""
    global _server
    if _server is not None:
        return True
    if not port:
        logger.info("Metrics server disabled (METRICS_PORT=0)")
        return False
    try:
        _server = start_http_server(port, registry=REGISTRY)
    except OSError as e:
        logger.warning(f"[MEDIUM] Metrics server error | port={port} | error={type(e).__name__}: {e}")
        return False
    logger.info(f"Prometheus metrics server listening on :{port}/metrics")
    return True


async def stop_metrics_server() -> None:
    global _server
    server, _server = _server, None
    if server is None:
        return
    httpd, thread = server
    await asyncio.to_thread(httpd.shutdown)
    httpd.server_close()
    thread.join(timeout=1.0)
    logger.info("Metrics server stopped")
