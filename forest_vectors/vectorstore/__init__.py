"""Vector store module."""

from forest_vectors.vectorstore.base import VectorProvider, cosine_similarity
from forest_vectors.vectorstore.chroma import ChromaProvider
from forest_vectors.vectorstore.local_json import LocalJSONProvider
from forest_vectors.vectorstore.models import (
    InitStatus,
    ProviderStats,
    QueryResult,
    VectorRecord,
)
from forest_vectors.vectorstore.normalize import normalize_vector
from forest_vectors.vectorstore.orchestrator import (
    InitOutcome,
    StoreState,
    VectorStoreOrchestrator,
)
from forest_vectors.vectorstore.qdrant import QdrantProvider
from forest_vectors.vectorstore.registry import (
    ProviderStrategy,
    build_strategies,
    create_provider,
)
from forest_vectors.vectorstore.sqlite_vec import SQLiteVecProvider

__all__ = [
    "ChromaProvider",
    "InitOutcome",
    "InitStatus",
    "LocalJSONProvider",
    "ProviderStats",
    "ProviderStrategy",
    "QdrantProvider",
    "QueryResult",
    "SQLiteVecProvider",
    "StoreState",
    "VectorProvider",
    "VectorRecord",
    "VectorStoreOrchestrator",
    "build_strategies",
    "cosine_similarity",
    "create_provider",
    "normalize_vector",
]
