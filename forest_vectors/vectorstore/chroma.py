"""ChromaDB vector provider.

Runs embedded (persistent local client, no external process) or against a
Chroma server, chosen from the configured URL. The chromadb client is
synchronous, so every call is pushed onto a worker thread.
"""

import asyncio
import json
from collections.abc import Callable
from typing import Any
from urllib.parse import urlsplit

import chromadb

from forest_vectors.config import ChromaSettings, ProviderName, get_settings
from forest_vectors.logging_config import get_logger
from forest_vectors.vectorstore.base import (
    MetadataFilter,
    VectorProvider,
    clamp_similarity,
)
from forest_vectors.vectorstore.models import QueryResult, VectorRecord

logger = get_logger(__name__)

ID_FIELD = "_vector_id"
# Chroma metadata values must be scalars; structured values are stored as
# JSON strings and their keys listed here.
JSON_FIELDS = "_json_fields"
EMBEDDED_MARKER = "embedded"

ClientFactory = Callable[[ChromaSettings], Any]


def is_embedded_url(url: str | None) -> bool:
    """Whether a configured URL selects embedded mode."""
    return not url or EMBEDDED_MARKER in url


def default_client_factory(settings: ChromaSettings) -> Any:
    """Create a persistent or HTTP Chroma client from settings."""
    if is_embedded_url(settings.url):
        return chromadb.PersistentClient(path=settings.path)

    parts = urlsplit(settings.url)
    ssl = parts.scheme == "https"
    port = parts.port or (443 if ssl else 8000)
    return chromadb.HttpClient(host=parts.hostname or "localhost", port=port, ssl=ssl)


def encode_metadata(vector_id: str, metadata: dict[str, Any]) -> dict[str, Any]:
    """Translate metadata into Chroma's scalar-only format."""
    encoded: dict[str, Any] = {ID_FIELD: vector_id}
    json_fields: list[str] = []
    for key, value in metadata.items():
        if value is None:
            continue
        if isinstance(value, (str, int, float, bool)):
            encoded[key] = value
        else:
            encoded[key] = json.dumps(value, default=str)
            json_fields.append(key)
    if json_fields:
        encoded[JSON_FIELDS] = ",".join(json_fields)
    return encoded


def decode_metadata(encoded: dict[str, Any] | None) -> tuple[str | None, dict[str, Any]]:
    """Reverse :func:`encode_metadata`, returning (vector_id, metadata)."""
    metadata = dict(encoded or {})
    vector_id = metadata.pop(ID_FIELD, None)
    json_fields = metadata.pop(JSON_FIELDS, "")
    for key in filter(None, str(json_fields).split(",")):
        if isinstance(metadata.get(key), str):
            metadata[key] = json.loads(metadata[key])
    return vector_id, metadata


def build_where(filter: MetadataFilter) -> dict[str, Any] | None:
    """Translate an exact-match conjunction into a Chroma ``where`` clause."""
    if not filter:
        return None
    clauses = [{key: value} for key, value in filter.items()]
    if len(clauses) == 1:
        return clauses[0]
    return {"$and": clauses}


def _as_list(values: Any) -> list[Any]:
    """Turn a Chroma result column (list or numpy array) into a list."""
    if values is None:
        return []
    if hasattr(values, "tolist"):
        return values.tolist()
    return list(values)


def _first(column: Any) -> list[Any]:
    """First row of a per-query result column."""
    rows = _as_list(column)
    if not rows:
        return []
    return _as_list(rows[0])


class ChromaProvider(VectorProvider):
    """ChromaDB vector provider."""

    name = ProviderName.CHROMA

    def __init__(
        self,
        settings: ChromaSettings | None = None,
        client_factory: ClientFactory | None = None,
    ) -> None:
        """Initialize Chroma provider.

        Args:
            settings: Chroma configuration.
            client_factory: Builds the client (injectable for testing).
        """
        self._settings = settings or get_settings().chroma
        super().__init__(self._settings.collection, self._settings.dimension)
        self._client_factory = client_factory or default_client_factory
        self._client: Any = None
        self._collections: dict[str, Any] = {}

    @property
    def mode(self) -> str:
        """Startup mode derived from the configured URL."""
        return "embedded" if is_embedded_url(self._settings.url) else "server"

    async def _initialize(self) -> None:
        self._client = await asyncio.to_thread(self._client_factory, self._settings)
        await self._get_collection(self._collection, self._dimension, create=True)

    def _collection_names(self) -> list[str]:
        listed = self._client.list_collections()
        # chromadb returns names in some releases and Collection objects in others
        return [c if isinstance(c, str) else c.name for c in listed]

    async def _get_collection(self, name: str, dimension: int, create: bool) -> Any:
        if name in self._collections:
            return self._collections[name]

        def _open() -> Any:
            if name in self._collection_names():
                return self._client.get_collection(name=name, embedding_function=None)
            if not create:
                return None
            logger.info(f"Created collection: {name}", extra={"dimensions": dimension})
            return self._client.create_collection(
                name=name,
                metadata={"hnsw:space": "cosine", "dimension": dimension},
                embedding_function=None,
            )

        collection = await asyncio.to_thread(_open)
        if collection is not None:
            self._collections[name] = collection
        return collection

    async def _owned_collections(self) -> list[Any]:
        names = await asyncio.to_thread(self._collection_names)
        collections = []
        for name in names:
            if self.owns_collection(name):
                collections.append(await self._get_collection(name, self._dimension, create=False))
        return [c for c in collections if c is not None]

    async def _upsert(self, id: str, vector: list[float], metadata: dict[str, Any]) -> None:
        collection = await self._get_collection(
            self.collection_for(len(vector)), len(vector), create=True
        )
        await asyncio.to_thread(
            collection.upsert,
            ids=[id],
            embeddings=[vector],
            metadatas=[encode_metadata(id, metadata)],
        )

    async def _query(
        self,
        vector: list[float],
        limit: int,
        threshold: float,
        filter: MetadataFilter,
    ) -> list[QueryResult]:
        collection = await self._get_collection(
            self.collection_for(len(vector)), len(vector), create=False
        )
        if collection is None:
            return []

        response = await asyncio.to_thread(
            collection.query,
            query_embeddings=[vector],
            n_results=limit,
            where=build_where(filter),
            include=["metadatas", "embeddings", "distances"],
        )

        ids = _first(response.get("ids"))
        distances = _first(response.get("distances"))
        metadatas = _first(response.get("metadatas"))
        embeddings = _first(response.get("embeddings"))

        results: list[QueryResult] = []
        for index, raw_id in enumerate(ids):
            distance = distances[index] if index < len(distances) else 1.0
            _, metadata = decode_metadata(metadatas[index] if index < len(metadatas) else None)
            stored = embeddings[index] if index < len(embeddings) else []
            results.append(
                QueryResult(
                    id=str(raw_id),
                    # cosine space: distance = 1 - cosine similarity
                    similarity=clamp_similarity(1.0 - float(distance)),
                    metadata=metadata,
                    vector=_as_list(stored),
                )
            )
        return results

    async def _delete(self, ids: list[str]) -> None:
        for collection in await self._owned_collections():
            await asyncio.to_thread(collection.delete, ids=ids)

    async def _list(self, prefix: str) -> list[VectorRecord]:
        records: list[VectorRecord] = []
        for collection in await self._owned_collections():
            response = await asyncio.to_thread(
                collection.get,
                include=["metadatas", "embeddings"],
            )
            ids = _as_list(response.get("ids"))
            metadatas = _as_list(response.get("metadatas"))
            embeddings = _as_list(response.get("embeddings"))
            for index, raw_id in enumerate(ids):
                record_id = str(raw_id)
                if not record_id.startswith(prefix):
                    continue
                _, metadata = decode_metadata(metadatas[index] if index < len(metadatas) else None)
                stored = embeddings[index] if index < len(embeddings) else []
                records.append(
                    VectorRecord(id=record_id, vector=_as_list(stored), metadata=metadata)
                )
        return records

    async def _reset(self) -> None:
        names = await asyncio.to_thread(self._collection_names)
        for name in names:
            if self.owns_collection(name):
                await asyncio.to_thread(self._client.delete_collection, name=name)
                logger.info(f"Deleted collection: {name}")
        self._collections.clear()
        await self._get_collection(self._collection, self._dimension, create=True)

    async def _ping(self) -> None:
        await asyncio.to_thread(self._client.heartbeat)

    async def _close(self) -> None:
        self._collections.clear()
        self._client = None
