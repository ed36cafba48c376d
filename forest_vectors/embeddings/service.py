"""Embedding service interface and implementations.

The engine treats the embedding model as an opaque ``embed(text, dimensions)``
function. Two implementations are provided: an OpenAI-compatible HTTP client
and a deterministic local hashing embedder for offline use.
"""

import hashlib
import re
from abc import ABC, abstractmethod

import httpx
import numpy as np

from forest_vectors.config import EmbeddingSettings, get_settings
from forest_vectors.embeddings.models import EmbeddingResult
from forest_vectors.exceptions import ConfigurationError, EmbeddingError, ErrorCode
from forest_vectors.logging_config import get_logger

logger = get_logger(__name__)

_TOKEN_PATTERN = re.compile(r"\w+")


class EmbeddingService(ABC):
    """Abstract base class for embedding services."""

    @abstractmethod
    async def embed(self, text: str, dimensions: int) -> EmbeddingResult:
        """Generate an embedding of the requested size.

        Args:
            text: Text to embed.
            dimensions: Requested vector length.

        Returns:
            EmbeddingResult with vector.

        Raises:
            EmbeddingError: If embedding fails.
        """
        ...

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Get the model name used for embeddings."""
        ...

    async def close(self) -> None:
        """Release any held resources."""
        return None


class HTTPEmbeddingService(EmbeddingService):
    """Embedding service using an OpenAI-compatible HTTP API.

    The requested size is passed through the ``dimensions`` parameter,
    which text-embedding-3 models and most compatible servers honour.
    """

    def __init__(
        self,
        settings: EmbeddingSettings | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the HTTP embedding service.

        Args:
            settings: Embedding configuration. Uses defaults if not provided.
            client: HTTP client. Creates new one if not provided.
        """
        self._settings = settings or get_settings().embedding
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            headers = {}
            if self._settings.api_key:
                headers["Authorization"] = f"Bearer {self._settings.api_key.get_secret_value()}"
            self._client = httpx.AsyncClient(timeout=self._settings.timeout, headers=headers)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client if we own it."""
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    @property
    def model_name(self) -> str:
        """Get the model name."""
        return self._settings.model

    async def embed(self, text: str, dimensions: int) -> EmbeddingResult:
        """Generate embedding for a single text."""
        client = await self._get_client()
        url = f"{self._settings.base_url.rstrip('/')}/embeddings"
        payload = {
            "input": [text],
            "model": self._settings.model,
            "dimensions": dimensions,
        }

        try:
            response = await client.post(url, json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(
                f"Embedding request failed: {e.response.status_code}",
                extra={"url": url, "status": e.response.status_code},
            )
            raise EmbeddingError(
                f"Embedding service returned {e.response.status_code}",
                code=ErrorCode.EMBEDDING_SERVICE_ERROR,
                details={"status_code": e.response.status_code},
            ) from e
        except httpx.RequestError as e:
            logger.error(f"Embedding request error: {e}", extra={"url": url})
            raise EmbeddingError(
                f"Failed to connect to embedding service: {e}",
                code=ErrorCode.EMBEDDING_SERVICE_ERROR,
                details={"url": url},
            ) from e

        try:
            data = response.json()
            result = EmbeddingResult(
                text=text,
                embedding=data["data"][0]["embedding"],
                model=self._settings.model,
                dimensions=dimensions,
            )
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise EmbeddingError(
                f"Invalid response from embedding service: {e}",
                code=ErrorCode.EMBEDDING_SERVICE_ERROR,
                details={"error": str(e)},
            ) from e

        if not result.matches_request:
            logger.warning(
                "Embedding service ignored the requested dimensions",
                extra={"requested": dimensions, "returned": len(result.embedding)},
            )
        return result


class HashEmbeddingService(EmbeddingService):
    """Deterministic local embedder based on signed feature hashing.

    Unigrams and bigrams are hashed into ``dimensions`` buckets and the
    result is L2-normalized. Identical text always maps to the identical
    vector and texts sharing vocabulary land close together, which is all
    the engine needs when no model server is available.
    """

    MODEL_NAME = "local-feature-hash"

    @property
    def model_name(self) -> str:
        """Get the model name."""
        return self.MODEL_NAME

    async def embed(self, text: str, dimensions: int) -> EmbeddingResult:
        """Generate embedding for a single text."""
        if dimensions <= 0:
            raise EmbeddingError(
                f"Embedding dimensions must be positive, got {dimensions}",
                details={"dimensions": dimensions},
            )

        vector = np.zeros(dimensions, dtype=np.float64)
        tokens = _TOKEN_PATTERN.findall(text.lower())
        features = tokens + [f"{a} {b}" for a, b in zip(tokens, tokens[1:])]

        for feature in features:
            digest = hashlib.blake2b(feature.encode("utf-8"), digest_size=8).digest()
            value = int.from_bytes(digest, "big")
            sign = 1.0 if value >> 63 else -1.0
            vector[value % dimensions] += sign

        norm = np.linalg.norm(vector)
        if norm == 0:
            # Empty text still needs a valid unit vector
            vector[0] = 1.0
        else:
            vector /= norm

        return EmbeddingResult(
            text=text,
            embedding=vector.tolist(),
            model=self.MODEL_NAME,
            dimensions=dimensions,
        )


def create_embedding_service(settings: EmbeddingSettings | None = None) -> EmbeddingService:
    """Build the configured embedding service.

    Args:
        settings: Embedding configuration.

    Returns:
        EmbeddingService instance.

    Raises:
        ConfigurationError: If the provider name is unknown.
    """
    settings = settings or get_settings().embedding
    provider = settings.provider.lower()
    if provider == "http":
        return HTTPEmbeddingService(settings=settings)
    if provider == "hash":
        return HashEmbeddingService()
    raise ConfigurationError(
        f"Unknown embedding provider: {settings.provider}",
        details={"provider": settings.provider},
    )
