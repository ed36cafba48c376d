"""Observability module for metrics and monitoring."""

from forest_vectors.observability.metrics import (
    MetricsMiddleware,
    get_metrics,
    track_cache_lookup,
    track_provider_init,
    track_recovery,
    track_vectorized,
    track_vectorstore_operation,
)

__all__ = [
    "MetricsMiddleware",
    "get_metrics",
    "track_cache_lookup",
    "track_provider_init",
    "track_recovery",
    "track_vectorized",
    "track_vectorstore_operation",
]
