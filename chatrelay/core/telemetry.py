"""core/telemetry.py
====================
Prometheus metrics registry and helper utilities.

Every runtime metric the relay exposes lives here, together with an in-process
HTTP exporter Prometheus can scrape.  Other modules depend only on the helper
functions below; they never import ``prometheus_client`` directly.

The exporter is started idempotently via :func:`start_exporter` from the
lifecycle bootstrap.  Port ``0`` disables it.
"""

from __future__ import annotations

import logging
from errno import EADDRINUSE

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Histogram,
    PlatformCollector,
    ProcessCollector,
    start_http_server,
)

__all__ = [
    "record_llm_call",
    "record_rate_limited",
    "record_stream_event",
    "record_http_request",
    "start_exporter",
]

_log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------+
#  Global registry                                                            +
# ---------------------------------------------------------------------------+

REGISTRY: CollectorRegistry = CollectorRegistry(auto_describe=True)

ProcessCollector(registry=REGISTRY)
PlatformCollector(registry=REGISTRY)

# --- LLM metrics ---
LLM_REQUEST_TOTAL = Counter(
    "llm_request_total",
    "LLM completions by provider and status",
    ["provider", "status"],
    registry=REGISTRY,
)
LLM_LATENCY = Histogram(
    "llm_latency_seconds",
    "End-to-end LLM completion latency",
    ["provider"],
    registry=REGISTRY,
)

# --- Guard metrics ---
RATE_LIMITED_TOTAL = Counter(
    "chat_rate_limited_total",
    "Requests rejected by the sliding-window limiter",
    registry=REGISTRY,
)

# --- Streaming metrics ---
STREAM_EVENT_TOTAL = Counter(
    "chat_stream_events_total",
    "SSE events written by kind (content, done, error)",
    ["kind"],
    registry=REGISTRY,
)

# --- HTTP surface ---
HTTP_REQUEST_TOTAL = Counter(
    "chat_http_requests_total",
    "Chat HTTP requests by route and status code",
    ["route", "status"],
    registry=REGISTRY,
)

# ---------------------------------------------------------------------------+
#  Public helpers                                                            +
# ---------------------------------------------------------------------------+


def record_llm_call(provider: str, status: str, duration_s: float) -> None:
    """Fast non-blocking metrics update for an LLM completion."""
    LLM_REQUEST_TOTAL.labels(provider, status).inc()
    LLM_LATENCY.labels(provider).observe(duration_s)


def record_rate_limited() -> None:
    RATE_LIMITED_TOTAL.inc()


def record_stream_event(kind: str) -> None:
    STREAM_EVENT_TOTAL.labels(kind).inc()


def record_http_request(route: str, status: int) -> None:
    HTTP_REQUEST_TOTAL.labels(route, str(status)).inc()


# ---------------------------------------------------------------------------+
#  Exporter bootstrap                                                        +
# ---------------------------------------------------------------------------+

_started: bool = False


def start_exporter(port: int) -> None:
    """Start the Prometheus HTTP exporter.

    Behaviour:
    - No-op when *port* == 0 (disabled).
    - Idempotent: calls after the first successful start return immediately.
    - If *port* is already taken, retries once on *port* + 1.
    """
    global _started
    if port == 0 or _started:
        return

    try:
        start_http_server(port, registry=REGISTRY)
        actual = port
    except OSError as exc:  # pragma: no cover – depends on environment
        if exc.errno == EADDRINUSE:
            alt = port + 1
            _log.warning("Metrics port %d in use, falling back to %d", port, alt)
            start_http_server(alt, registry=REGISTRY)
            actual = alt
        else:
            raise

    _started = True
    _log.info("Prometheus exporter listening on :%s/metrics", actual)
