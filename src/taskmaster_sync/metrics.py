"""Prometheus metrics for taskmaster-sync.

Metrics are disabled by default. Set ENABLE_METRICS=1 to enable.
"""

import os
import time

from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

_metrics_enabled = os.getenv("ENABLE_METRICS", "").lower() in ("1", "true", "yes")

REQUESTS_TOTAL = None
REQUEST_DURATION = None
WEBHOOKS_RECEIVED_TOTAL = None
WEBHOOK_PROCESSING_DURATION = None
SYNC_JOBS_ENQUEUED_TOTAL = None


class NoOpMetric:
    """No-op metric that does nothing when called."""

    def __init__(self, *args, **kwargs):
        pass

    def labels(self, **kwargs):
        return self

    def inc(self, amount=1):
        pass

    def observe(self, amount):
        pass


def _initialize_metrics():
    """Initialize Prometheus metrics if enabled."""
    global REQUESTS_TOTAL, REQUEST_DURATION, WEBHOOKS_RECEIVED_TOTAL
    global WEBHOOK_PROCESSING_DURATION, SYNC_JOBS_ENQUEUED_TOTAL

    if not _metrics_enabled:
        REQUESTS_TOTAL = NoOpMetric()
        REQUEST_DURATION = NoOpMetric()
        WEBHOOKS_RECEIVED_TOTAL = NoOpMetric()
        WEBHOOK_PROCESSING_DURATION = NoOpMetric()
        SYNC_JOBS_ENQUEUED_TOTAL = NoOpMetric()
        return

    REQUESTS_TOTAL = Counter(
        "taskmaster_sync_http_requests_total",
        "Total HTTP requests",
        ["endpoint", "method", "status"]
    )

    REQUEST_DURATION = Histogram(
        "taskmaster_sync_http_request_duration_seconds",
        "HTTP request duration in seconds",
        ["endpoint", "method"]
    )

    WEBHOOKS_RECEIVED_TOTAL = Counter(
        "taskmaster_sync_webhooks_received_total",
        "Total webhooks received",
        ["provider", "outcome"]
    )

    WEBHOOK_PROCESSING_DURATION = Histogram(
        "taskmaster_sync_webhook_processing_seconds",
        "Webhook pipeline duration in seconds",
        ["provider"]
    )

    SYNC_JOBS_ENQUEUED_TOTAL = Counter(
        "taskmaster_sync_jobs_enqueued_total",
        "Total sync jobs enqueued",
        ["provider", "sync_type"]
    )


_initialize_metrics()


def get_metrics_response() -> Response:
    """Get Prometheus metrics response."""
    if not _metrics_enabled:
        return Response(
            content="# Metrics disabled. Set ENABLE_METRICS=1 to enable.\n",
            media_type="text/plain"
        )

    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


class MetricsMiddleware:
    """ASGI middleware to collect request metrics."""

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        start_time = time.time()
        path = scope["path"]
        method = scope["method"]
        status_code = [500]

        async def send_wrapper(message):
            if message["type"] == "http.response.start":
                status_code[0] = message["status"]
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            REQUESTS_TOTAL.labels(endpoint=path, method=method, status=status_code[0]).inc()
            REQUEST_DURATION.labels(endpoint=path, method=method).observe(time.time() - start_time)
