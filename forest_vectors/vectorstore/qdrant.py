"""Qdrant vector provider."""

from typing import Any
from uuid import NAMESPACE_URL, uuid5

from qdrant_client import AsyncQdrantClient
from qdrant_client.models import (
    Distance,
    FieldCondition,
    Filter,
    MatchValue,
    PointIdsList,
    PointStruct,
    VectorParams,
)

from forest_vectors.config import ProviderName, QdrantSettings, get_settings
from forest_vectors.logging_config import get_logger
from forest_vectors.vectorstore.base import (
    MetadataFilter,
    VectorProvider,
    clamp_similarity,
)
from forest_vectors.vectorstore.models import QueryResult, VectorRecord

logger = get_logger(__name__)

# Qdrant point ids must be UUIDs; the string id travels in the payload.
ID_FIELD = "_vector_id"
SCROLL_PAGE_SIZE = 256


def point_id(vector_id: str) -> str:
    """Deterministic Qdrant point id for a string vector id."""
    return str(uuid5(NAMESPACE_URL, vector_id))


class QdrantProvider(VectorProvider):
    """Qdrant vector provider (server mode)."""

    name = ProviderName.QDRANT

    def __init__(
        self,
        settings: QdrantSettings | None = None,
        client: AsyncQdrantClient | None = None,
    ) -> None:
        """Initialize Qdrant provider.

        Args:
            settings: Qdrant configuration.
            client: Existing client (for testing).
        """
        self._settings = settings or get_settings().qdrant
        super().__init__(self._settings.collection, self._settings.dimension)
        self._client = client
        self._owns_client = client is None
        self._known_collections: set[str] = set()

    @property
    def mode(self) -> str:
        """Startup mode."""
        return "server"

    async def _get_client(self) -> AsyncQdrantClient:
        """Get or create Qdrant client."""
        if self._client is None:
            api_key = None
            if self._settings.api_key:
                api_key = self._settings.api_key.get_secret_value()

            self._client = AsyncQdrantClient(
                url=self._settings.url,
                api_key=api_key,
            )
        return self._client

    async def _initialize(self) -> None:
        client = await self._get_client()
        await client.get_collections()
        await self._ensure_collection(self._collection, self._dimension)

    async def _ensure_collection(self, name: str, dimension: int) -> None:
        if name in self._known_collections:
            return
        client = await self._get_client()
        if not await client.collection_exists(name):
            await client.create_collection(
                collection_name=name,
                vectors_config=VectorParams(size=dimension, distance=Distance.COSINE),
            )
            logger.info(f"Created collection: {name}", extra={"dimensions": dimension})
        self._known_collections.add(name)

    async def _owned_collections(self) -> list[str]:
        client = await self._get_client()
        response = await client.get_collections()
        return [c.name for c in response.collections if self.owns_collection(c.name)]

    async def _upsert(self, id: str, vector: list[float], metadata: dict[str, Any]) -> None:
        collection = self.collection_for(len(vector))
        await self._ensure_collection(collection, len(vector))
        client = await self._get_client()
        await client.upsert(
            collection_name=collection,
            points=[
                PointStruct(
                    id=point_id(id),
                    vector=vector,
                    payload={**metadata, ID_FIELD: id},
                )
            ],
        )
        logger.debug("Upserted vector", extra={"collection": collection, "id": id})

    async def _query(
        self,
        vector: list[float],
        limit: int,
        threshold: float,
        filter: MetadataFilter,
    ) -> list[QueryResult]:
        collection = self.collection_for(len(vector))
        client = await self._get_client()
        if not await client.collection_exists(collection):
            return []

        query_filter = None
        if filter:
            conditions = [
                FieldCondition(key=k, match=MatchValue(value=v))
                for k, v in filter.items()
            ]
            query_filter = Filter(must=conditions)  # type: ignore[arg-type]

        response = await client.query_points(
            collection_name=collection,
            query=vector,
            limit=limit,
            query_filter=query_filter,
            with_payload=True,
            with_vectors=True,
        )

        results: list[QueryResult] = []
        for point in response.points:
            payload = dict(point.payload) if point.payload else {}
            vector_id = payload.pop(ID_FIELD, str(point.id))
            results.append(
                QueryResult(
                    id=vector_id,
                    similarity=clamp_similarity(point.score if point.score is not None else 0.0),
                    metadata=payload,
                    vector=point.vector if isinstance(point.vector, list) else [],
                )
            )
        return results

    async def _delete(self, ids: list[str]) -> None:
        client = await self._get_client()
        selector = PointIdsList(points=[point_id(i) for i in ids])  # type: ignore[arg-type]
        for collection in await self._owned_collections():
            await client.delete(collection_name=collection, points_selector=selector)
        logger.debug(f"Deleted {len(ids)} records", extra={"collection": self._collection})

    async def _list(self, prefix: str) -> list[VectorRecord]:
        client = await self._get_client()
        records: list[VectorRecord] = []
        for collection in await self._owned_collections():
            offset = None
            while True:
                points, offset = await client.scroll(
                    collection_name=collection,
                    limit=SCROLL_PAGE_SIZE,
                    offset=offset,
                    with_payload=True,
                    with_vectors=True,
                )
                for point in points:
                    payload = dict(point.payload) if point.payload else {}
                    vector_id = payload.pop(ID_FIELD, str(point.id))
                    if vector_id.startswith(prefix):
                        records.append(
                            VectorRecord(
                                id=vector_id,
                                vector=point.vector if isinstance(point.vector, list) else [],
                                metadata=payload,
                            )
                        )
                if offset is None:
                    break
        return records

    async def _reset(self) -> None:
        client = await self._get_client()
        for collection in await self._owned_collections():
            await client.delete_collection(collection)
            logger.info(f"Deleted collection: {collection}")
        self._known_collections.clear()
        await self._ensure_collection(self._collection, self._dimension)

    async def _ping(self) -> None:
        client = await self._get_client()
        await client.get_collections()

    async def _close(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.close()
            self._client = None
        self._known_collections.clear()
