"""Selective vectorization module."""

from forest_vectors.vectorization.cache import CacheKey, OperationCache
from forest_vectors.vectorization.corruption import (
    CorruptionDetector,
    is_corruption_signature,
)
from forest_vectors.vectorization.manager import (
    SelectiveVectorizationManager,
    create_manager,
    parse_time_to_minutes,
)
from forest_vectors.vectorization.models import (
    BulkVectorizationResult,
    EnrichedResult,
    RecoveryRecord,
    RecoveryStatus,
    VectorizationOutcome,
    VectorizationStats,
)
from forest_vectors.vectorization.recovery import CorruptionRecovery
from forest_vectors.vectorization.sidecar import MetadataSidecarStore
from forest_vectors.vectorization.types import (
    EntityKind,
    VectorizationType,
    make_vector_id,
    namespace_prefix,
)

__all__ = [
    "BulkVectorizationResult",
    "CacheKey",
    "CorruptionDetector",
    "CorruptionRecovery",
    "EnrichedResult",
    "EntityKind",
    "MetadataSidecarStore",
    "OperationCache",
    "RecoveryRecord",
    "RecoveryStatus",
    "SelectiveVectorizationManager",
    "VectorizationOutcome",
    "VectorizationStats",
    "VectorizationType",
    "create_manager",
    "is_corruption_signature",
    "make_vector_id",
    "namespace_prefix",
    "parse_time_to_minutes",
]
