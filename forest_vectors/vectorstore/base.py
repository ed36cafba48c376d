"""VectorProvider contract shared by every backend adapter.

The public methods implement the contract once: vectors are normalized
before any I/O, results are converted to the common similarity scale,
thresholded, sorted and truncated, and backend exceptions are wrapped in
``QueryError`` with the original message preserved. Adapters implement the
underscore-prefixed primitives only.
"""

import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Iterator
from contextlib import contextmanager
from typing import Any, TypeVar

import numpy as np

from forest_vectors.config import ProviderName
from forest_vectors.exceptions import (
    ErrorCode,
    ForestVectorError,
    ProviderInitError,
    QueryError,
    ValidationError,
)
from forest_vectors.logging_config import get_logger
from forest_vectors.observability.metrics import track_vectorstore_operation
from forest_vectors.vectorstore.models import (
    InitStatus,
    ProviderStats,
    QueryResult,
    VectorRecord,
)
from forest_vectors.vectorstore.normalize import normalize_vector

logger = get_logger(__name__)

T = TypeVar("T")

MetadataFilter = dict[str, Any]


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Cosine similarity clamped to [0, 1].

    Vectors of different lengths are treated as unrelated.
    """
    if len(a) != len(b):
        return 0.0
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    denom = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if denom == 0.0:
        return 0.0
    return clamp_similarity(float(np.dot(va, vb)) / denom)


def clamp_similarity(value: float) -> float:
    """Clamp a backend score into the [0, 1] similarity contract."""
    return max(0.0, min(1.0, value))


def matches_filter(metadata: dict[str, Any], filter: MetadataFilter | None) -> bool:
    """Check a conjunction of exact-match metadata predicates."""
    if not filter:
        return True
    return all(key in metadata and metadata[key] == value for key, value in filter.items())


def rank_results(
    results: list[QueryResult],
    limit: int,
    threshold: float,
) -> list[QueryResult]:
    """Drop results below threshold, sort by similarity and truncate."""
    kept = [r for r in results if r.similarity >= threshold]
    kept.sort(key=lambda r: r.similarity, reverse=True)
    return kept[:limit]


def namespace_of(vector_id: str) -> str:
    """Return the ``projectId:entityKind`` namespace of an id."""
    parts = vector_id.split(":")
    if len(parts) >= 3:
        return f"{parts[0]}:{parts[1]}"
    return parts[0]


class VectorProvider(ABC):
    """Capability interface every vector backend implements.

    Attributes:
        name: Provider identifier.
    """

    name: ProviderName

    def __init__(self, collection: str, dimension: int) -> None:
        """Initialize shared provider state.

        Args:
            collection: Base collection (or table/file) name.
            dimension: Declared dimension of the base collection.
        """
        self._collection = collection
        self._dimension = dimension
        self._status: InitStatus | None = None

    @property
    def collection(self) -> str:
        """Base collection name."""
        return self._collection

    @property
    def dimension(self) -> int:
        """Declared dimension of the base collection."""
        return self._dimension

    @property
    def is_initialized(self) -> bool:
        """Whether initialize() has completed successfully."""
        return self._status is not None

    @property
    @abstractmethod
    def mode(self) -> str:
        """Startup mode reported in the init status."""
        ...

    def collection_for(self, dimension: int) -> str:
        """Collection holding vectors of the given dimension.

        The declared dimension lives in the base collection; other
        dimensions get a sibling collection suffixed with their size.
        """
        if dimension == self._dimension:
            return self._collection
        return f"{self._collection}_{dimension}"

    def owns_collection(self, name: str) -> bool:
        """Whether a backend collection name belongs to this provider."""
        if name == self._collection:
            return True
        prefix = f"{self._collection}_"
        return name.startswith(prefix) and name[len(prefix):].isdigit()

    # ----- lifecycle -------------------------------------------------

    async def initialize(self) -> InitStatus:
        """Connect to the backend and ensure the base collection exists.

        Idempotent: a second call returns the cached status.

        Raises:
            ProviderInitError: If the backend is unreachable or misconfigured.
        """
        if self._status is not None:
            return self._status

        if self._dimension <= 0:
            raise ProviderInitError(
                f"{self.name.value}: collection dimension must be positive",
                details={"provider": self.name.value, "dimension": self._dimension},
            )

        try:
            await self._initialize()
        except ProviderInitError:
            raise
        except Exception as e:
            raise ProviderInitError(
                f"{self.name.value} initialization failed: {e}",
                details={"provider": self.name.value, "error": str(e)},
            ) from e

        self._status = InitStatus(
            success=True,
            provider_name=self.name.value,
            mode=self.mode,
            collection_id=self._collection,
        )
        logger.info(
            f"Vector provider ready: {self.name.value}",
            extra={"mode": self.mode, "collection": self._collection},
        )
        return self._status

    async def close(self) -> None:
        """Release backend resources. Safe to call multiple times."""
        if self._status is None:
            return
        try:
            await self._close()
        finally:
            self._status = None

    async def ping(self) -> bool:
        """Liveness check without data access."""
        if self._status is None:
            return False
        try:
            await self._ping()
        except Exception as e:
            logger.warning(f"{self.name.value} ping failed: {e}")
            return False
        return True

    # ----- data operations -------------------------------------------

    async def upsert_vector(
        self,
        id: str,
        vector: Any,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Insert or overwrite a record (last write wins).

        Raises:
            ValidationError: If the id is empty or the vector is malformed.
                Raised before any backend call.
        """
        if not id:
            raise ValidationError("Vector id cannot be empty")
        plain = normalize_vector(vector)
        await self.initialize()
        await self._run("upsert", lambda: self._upsert(id, plain, dict(metadata or {})))

    async def query_vectors(
        self,
        query_vector: Any,
        limit: int = 10,
        threshold: float = 0.1,
        filter: MetadataFilter | None = None,
    ) -> list[QueryResult]:
        """Rank stored records by similarity to a query vector.

        Results below ``threshold`` are dropped, the rest are sorted by
        descending similarity and truncated to ``limit``.

        Raises:
            ValidationError: If the query vector or limit is malformed.
            QueryError: If the backend fails.
        """
        plain = normalize_vector(query_vector)
        if limit <= 0:
            raise ValidationError(f"limit must be positive, got {limit}")
        await self.initialize()
        results = await self._run(
            "query",
            lambda: self._query(plain, limit, threshold, dict(filter or {})),
        )
        return rank_results(results, limit, threshold)

    async def delete_vector(self, id: str) -> None:
        """Delete a record by id. Missing ids are ignored."""
        await self.initialize()
        await self._run("delete", lambda: self._delete([id]))

    async def delete_namespace(self, prefix: str) -> int:
        """Delete exactly the records whose id starts with ``prefix``.

        Returns:
            Number of records deleted.
        """
        if not prefix:
            raise ValidationError("Namespace prefix cannot be empty")
        await self.initialize()
        records = await self._run("list", lambda: self._list(prefix))
        ids = [r.id for r in records if r.id.startswith(prefix)]
        if ids:
            await self._run("delete", lambda: self._delete(ids))
        logger.info(
            f"Deleted namespace {prefix}",
            extra={"provider": self.name.value, "deleted": len(ids)},
        )
        return len(ids)

    async def list_vectors(self, prefix: str = "") -> list[VectorRecord]:
        """List full records whose id starts with ``prefix``."""
        await self.initialize()
        records = await self._run("list", lambda: self._list(prefix))
        return [r for r in records if r.id.startswith(prefix)]

    async def reset_collection(self) -> None:
        """Drop and recreate every collection owned by this provider."""
        await self.initialize()
        await self._run("reset", self._reset)
        logger.warning(
            f"Collections reset: {self.name.value}",
            extra={"collection": self._collection},
        )

    async def stats(self) -> ProviderStats:
        """Count stored records per namespace."""
        records = await self.list_vectors()
        namespaces: dict[str, int] = {}
        for record in records:
            ns = namespace_of(record.id)
            namespaces[ns] = namespaces.get(ns, 0) + 1
        return ProviderStats(
            provider_name=self.name.value,
            total_vectors=len(records),
            namespaces=namespaces,
        )

    # ----- helpers ---------------------------------------------------

    @contextmanager
    def _track(self, operation: str) -> Iterator[None]:
        start = time.perf_counter()
        success = False
        try:
            yield
            success = True
        finally:
            track_vectorstore_operation(
                self.name.value,
                operation,
                time.perf_counter() - start,
                success,
            )

    async def _run(self, operation: str, call: Callable[[], Awaitable[T]]) -> T:
        """Run a backend primitive, wrapping foreign exceptions."""
        with self._track(operation):
            try:
                return await call()
            except ForestVectorError:
                raise
            except Exception as e:
                # Type name goes in details only; signatures scan the message
                raise QueryError(
                    f"{self.name.value} {operation} failed: {e}",
                    code=ErrorCode.QUERY_ERROR,
                    details={
                        "provider": self.name.value,
                        "operation": operation,
                        "error_type": type(e).__name__,
                    },
                ) from e

    # ----- backend primitives ----------------------------------------

    @abstractmethod
    async def _initialize(self) -> None:
        """Connect and ensure the base collection exists."""
        ...

    @abstractmethod
    async def _upsert(self, id: str, vector: list[float], metadata: dict[str, Any]) -> None:
        """Write one normalized record."""
        ...

    @abstractmethod
    async def _query(
        self,
        vector: list[float],
        limit: int,
        threshold: float,
        filter: MetadataFilter,
    ) -> list[QueryResult]:
        """Return candidate results with similarity already on the [0, 1] scale."""
        ...

    @abstractmethod
    async def _delete(self, ids: list[str]) -> None:
        """Delete records by id."""
        ...

    @abstractmethod
    async def _list(self, prefix: str) -> list[VectorRecord]:
        """Return records whose id starts with prefix (may over-return)."""
        ...

    @abstractmethod
    async def _reset(self) -> None:
        """Drop and recreate owned collections."""
        ...

    @abstractmethod
    async def _ping(self) -> None:
        """Raise if the backend is not reachable."""
        ...

    async def _close(self) -> None:
        """Release backend resources."""
        return None
