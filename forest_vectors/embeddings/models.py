"""Embedding result model."""

from pydantic import BaseModel, Field


class EmbeddingResult(BaseModel):
    """One embedded text.

    ``dimensions`` is the size the caller asked for, not the length of
    ``embedding``. A service that returns a different length still reports
    the requested size; the vectorization layer rejects the mismatch with
    ``EMBEDDING_DIMENSION_MISMATCH`` rather than storing a truncated or
    padded vector.

    Attributes:
        text: The embedded text.
        embedding: The returned vector.
        model: The model that produced the vector.
        dimensions: Requested vector size.
    """

    text: str = Field(description="Embedded text")
    embedding: list[float] = Field(description="Returned vector")
    model: str = Field(description="Model that produced the vector")
    dimensions: int = Field(gt=0, description="Requested vector size")

    @property
    def matches_request(self) -> bool:
        """Whether the returned vector has the requested size."""
        return len(self.embedding) == self.dimensions
