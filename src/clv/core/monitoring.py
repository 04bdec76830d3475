"""Prometheus metrics for HTTP traffic and the sync pipeline.

Provides:
- MetricsMiddleware: ASGI middleware for HTTP request metrics
- Sync counters: cycles by outcome, sink publish attempts by status,
  captured activity events by type
- get_metrics_response(): Prometheus exposition for the /metrics route

All counters live in process memory; nothing here is persisted.
"""

from __future__ import annotations

import time

from prometheus_client import (
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# ── HTTP Metrics ─────────────────────────────────────────────────────────────

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# ── Sync Pipeline Metrics ────────────────────────────────────────────────────

sync_cycles_total = Counter(
    "clv_sync_cycles_total",
    "Sync cycles by outcome",
    ["outcome"],
)

sink_publish_total = Counter(
    "clv_sink_publish_total",
    "Customer value record publish attempts per sink",
    ["sink", "status"],
)

activity_events_total = Counter(
    "clv_activity_events_total",
    "Activity events captured",
    ["type"],
)

sync_retry_attempts = Gauge(
    "clv_sync_retry_attempts",
    "Current consecutive sync retry attempts",
)


# ── Metrics Middleware ───────────────────────────────────────────────────────


class MetricsMiddleware(BaseHTTPMiddleware):
    """ASGI middleware that records Prometheus metrics for every HTTP request.

    Skips the /metrics endpoint itself to avoid self-referential counting.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        endpoint = request.url.path

        start_time = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start_time

        http_requests_total.labels(
            method=request.method,
            endpoint=endpoint,
            status_code=str(response.status_code),
        ).inc()

        http_request_duration_seconds.labels(
            method=request.method,
            endpoint=endpoint,
        ).observe(duration)

        return response


# ── Metrics Endpoint ─────────────────────────────────────────────────────────


def get_metrics_response() -> Response:
    """Generate Prometheus exposition format response."""
    return Response(
        content=generate_latest(REGISTRY),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
