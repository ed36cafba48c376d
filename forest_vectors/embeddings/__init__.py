"""Embedding service module."""

from forest_vectors.embeddings.models import EmbeddingResult
from forest_vectors.embeddings.service import (
    EmbeddingService,
    HashEmbeddingService,
    HTTPEmbeddingService,
    create_embedding_service,
)

__all__ = [
    "EmbeddingResult",
    "EmbeddingService",
    "HTTPEmbeddingService",
    "HashEmbeddingService",
    "create_embedding_service",
]
