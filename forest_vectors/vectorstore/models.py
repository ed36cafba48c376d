"""Vector store data models."""

from typing import Any

from pydantic import BaseModel, Field


class VectorRecord(BaseModel):
    """A record stored in a vector backend.

    Attributes:
        id: Unique identifier, ``{projectId}:{entityKind}:{localId}`` by convention.
        vector: The embedding vector.
        metadata: Additional metadata stored with the vector.
    """

    id: str = Field(description="Unique record identifier")
    vector: list[float] = Field(description="Embedding vector")
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        description="Metadata payload",
    )


class QueryResult(BaseModel):
    """Result from a vector similarity query.

    Attributes:
        id: Record identifier.
        similarity: Similarity in [0, 1], 1.0 meaning identical.
        metadata: Stored metadata.
        vector: Stored vector, when the backend returns it.
    """

    id: str = Field(description="Record identifier")
    similarity: float = Field(ge=0.0, le=1.0, description="Similarity score")
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        description="Record metadata",
    )
    vector: list[float] = Field(default_factory=list, description="Stored vector")


class InitStatus(BaseModel):
    """Outcome of provider initialization."""

    success: bool = Field(description="Whether the provider is ready")
    provider_name: str = Field(description="Provider identifier")
    mode: str = Field(description="Startup mode (embedded, server, file)")
    collection_id: str = Field(description="Collection, table or file in use")


class ProviderStats(BaseModel):
    """Record counts held by a provider."""

    provider_name: str = Field(description="Provider identifier")
    total_vectors: int = Field(default=0, description="Total stored records")
    namespaces: dict[str, int] = Field(
        default_factory=dict,
        description="Record count per projectId:entityKind namespace",
    )
