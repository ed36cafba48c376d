"""Prometheus metrics for the vector storage engine.

Provides metrics instrumentation for:
- Vector store operation latency per provider
- Provider initialization and fallback
- Operation cache hits and misses
- Corruption recoveries
- Vectorized record counts
- HTTP request latency and counts
"""

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
from starlette.types import ASGIApp

# HTTP Request Metrics
HTTP_REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint", "status_code"],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

HTTP_REQUEST_TOTAL = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)

# Vector Store Metrics
VECTORSTORE_OPERATION_DURATION = Histogram(
    "vectorstore_operation_duration_seconds",
    "Vector store operation duration",
    ["provider", "operation", "status"],
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0],
)

PROVIDER_INIT_TOTAL = Counter(
    "vectorstore_provider_init_total",
    "Vector provider initialization attempts",
    ["provider", "status"],
)

FALLBACK_ACTIVE = Gauge(
    "vectorstore_fallback_active",
    "1 when the resolved provider is a fallback, 0 otherwise",
)

# Operation Cache Metrics
CACHE_EVENTS_TOTAL = Counter(
    "vector_cache_events_total",
    "Operation cache lookups",
    ["result"],  # hit, miss
)

CACHE_SIZE = Gauge(
    "vector_cache_size",
    "Entries currently held by the operation cache",
)

# Corruption Metrics
CORRUPTION_RECOVERIES_TOTAL = Counter(
    "corruption_recoveries_total",
    "Corruption recoveries executed",
    ["trigger"],
)

# Vectorization Metrics
VECTORIZED_RECORDS_TOTAL = Counter(
    "vectorized_records_total",
    "Records embedded and upserted",
    ["vectorization_type"],
)


def get_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest()


def get_metrics_content_type() -> str:
    """Get the content type for metrics response."""
    return CONTENT_TYPE_LATEST


def track_vectorstore_operation(
    provider: str,
    operation: str,
    duration: float,
    success: bool = True,
) -> None:
    """Track a single provider operation.

    Args:
        provider: Provider name.
        operation: Operation name (upsert, query, delete, list, ...).
        duration: Duration in seconds.
        success: Whether the operation succeeded.
    """
    status = "success" if success else "error"
    VECTORSTORE_OPERATION_DURATION.labels(
        provider=provider,
        operation=operation,
        status=status,
    ).observe(duration)


def track_provider_init(provider: str, success: bool, fallback: bool = False) -> None:
    """Track a provider initialization attempt.

    Args:
        provider: Provider name.
        success: Whether initialization succeeded.
        fallback: Whether a successful provider is a fallback.
    """
    PROVIDER_INIT_TOTAL.labels(
        provider=provider,
        status="success" if success else "error",
    ).inc()
    if success:
        FALLBACK_ACTIVE.set(1 if fallback else 0)


def track_cache_lookup(hit: bool, size: int) -> None:
    """Track an operation cache lookup.

    Args:
        hit: Whether the lookup was a hit.
        size: Cache size after the lookup.
    """
    CACHE_EVENTS_TOTAL.labels(result="hit" if hit else "miss").inc()
    CACHE_SIZE.set(size)


def track_recovery(trigger: str) -> None:
    """Track a corruption recovery run.

    Args:
        trigger: Operation that triggered recovery.
    """
    CORRUPTION_RECOVERIES_TOTAL.labels(trigger=trigger).inc()


def track_vectorized(vectorization_type: str, count: int = 1) -> None:
    """Track embedded and upserted records.

    Args:
        vectorization_type: VectorizationType name.
        count: Number of records.
    """
    if count > 0:
        VECTORIZED_RECORDS_TOTAL.labels(vectorization_type=vectorization_type).inc(count)


class MetricsMiddleware(BaseHTTPMiddleware):
    """Middleware to collect HTTP request metrics."""

    def __init__(self, app: ASGIApp) -> None:
        """Initialize the middleware."""
        super().__init__(app)

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        """Process request and collect metrics."""
        # Skip metrics endpoint to avoid recursion
        if request.url.path == "/metrics":
            return await call_next(request)

        start_time = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start_time

        endpoint = self._normalize_endpoint(request.url.path)

        HTTP_REQUEST_DURATION.labels(
            method=request.method,
            endpoint=endpoint,
            status_code=response.status_code,
        ).observe(duration)

        HTTP_REQUEST_TOTAL.labels(
            method=request.method,
            endpoint=endpoint,
            status_code=response.status_code,
        ).inc()

        return response

    def _normalize_endpoint(self, path: str) -> str:
        """Normalize endpoint path to reduce cardinality."""
        if path.startswith("/health"):
            return "/health"
        if path.startswith("/api/v1/"):
            parts = path.split("/")
            if len(parts) >= 4:
                return f"/api/v1/{parts[3]}"
        return path
