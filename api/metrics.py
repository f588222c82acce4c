"""Prometheus metrics for the audit service."""

from __future__ import annotations

import re
import time
from collections.abc import Awaitable, Callable

from fastapi import Request, Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)
from starlette.middleware.base import BaseHTTPMiddleware

# Request metrics
REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)

REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

ERROR_COUNT = Counter(
    "http_errors_total",
    "Unhandled errors raised while serving requests",
    ["error_type", "endpoint"],
)

# Audit metrics
AUDITS_CREATED = Counter(
    "audits_created_total",
    "Audit requests accepted",
)

AUDIT_RUNS = Counter(
    "audit_runs_total",
    "Audit pipeline runs by outcome",
    ["status"],
)

AUDIT_RUN_DURATION = Histogram(
    "audit_run_duration_seconds",
    "Wall-clock duration of one audit pipeline run",
    buckets=[5.0, 15.0, 30.0, 60.0, 90.0, 120.0, 180.0, 300.0],
)

AUDIT_PAGES_ANALYZED = Counter(
    "audit_pages_analyzed_total",
    "Pages fetched and inspected by the crawler",
)

# Generative backend
LLM_CALLS = Counter(
    "llm_calls_total",
    "Generative backend calls",
    ["purpose", "outcome"],
)

LLM_INFLIGHT = Gauge(
    "llm_inflight",
    "Generative backend calls currently in flight",
)


def get_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    metrics: bytes = generate_latest()
    return metrics


def get_metrics_content_type() -> str:
    content_type: str = CONTENT_TYPE_LATEST
    return content_type


class MetricsMiddleware(BaseHTTPMiddleware):
    """Middleware to collect request metrics."""

    EXCLUDE_PATHS = {"/metrics", "/api/health", "/api/ready", "/favicon.ico"}

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        if request.url.path in self.EXCLUDE_PATHS:
            return await call_next(request)

        method = request.method
        endpoint = self._normalize_path(request.url.path)
        start_time = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as e:
            ERROR_COUNT.labels(error_type=type(e).__name__, endpoint=endpoint).inc()
            raise

        REQUEST_COUNT.labels(
            method=method,
            endpoint=endpoint,
            status_code=str(response.status_code),
        ).inc()
        # Streams are timed until headers are sent, not until they close
        REQUEST_LATENCY.labels(method=method, endpoint=endpoint).observe(
            time.perf_counter() - start_time
        )
        return response

    def _normalize_path(self, path: str) -> str:
        """Replace UUIDs and numeric IDs with placeholders."""
        path = re.sub(
            r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}",
            "{id}",
            path,
            flags=re.IGNORECASE,
        )
        return re.sub(r"/\d+(/|$)", r"/{id}\1", path)


def record_audit_created() -> None:
    AUDITS_CREATED.inc()


def record_audit_run(status: str, duration_seconds: float | None = None) -> None:
    """Record a finished pipeline run ("completed" or "failed")."""
    AUDIT_RUNS.labels(status=status).inc()
    if duration_seconds is not None:
        AUDIT_RUN_DURATION.observe(duration_seconds)


def record_pages_analyzed(count: int) -> None:
    if count > 0:
        AUDIT_PAGES_ANALYZED.inc(count)


def record_llm_call(purpose: str, outcome: str) -> None:
    """Record one generative call ("ok", "timeout", "error", "invalid_output")."""
    LLM_CALLS.labels(purpose=purpose, outcome=outcome).inc()
