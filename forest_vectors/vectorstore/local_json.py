"""Flat-file vector provider.

Stores every record in one JSON document on local disk and ranks by cosine
similarity in-process. It has no external dependency, so it is the
guaranteed last resort of the provider fallback chain.
"""

import asyncio
import json
import os
import tempfile
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from forest_vectors.config import ProviderName
from forest_vectors.logging_config import get_logger
from forest_vectors.vectorstore.base import (
    MetadataFilter,
    VectorProvider,
    cosine_similarity,
    matches_filter,
)
from forest_vectors.vectorstore.models import QueryResult, VectorRecord

logger = get_logger(__name__)


class LocalJSONProvider(VectorProvider):
    """Vector provider backed by a JSON file."""

    name = ProviderName.LOCALJSON

    def __init__(
        self,
        base_dir: Path,
        collection: str = "forest_vectors",
        dimension: int = 1536,
    ) -> None:
        """Initialize the flat-file provider.

        Args:
            base_dir: Directory holding the collection file.
            collection: Collection file stem.
            dimension: Declared collection dimension.
        """
        super().__init__(collection, dimension)
        self._base_dir = Path(base_dir)
        self._records: dict[str, dict[str, Any]] = {}
        self._write_lock = asyncio.Lock()

    @property
    def mode(self) -> str:
        """Startup mode."""
        return "file"

    @property
    def path(self) -> Path:
        """Collection file path."""
        return self._base_dir / f"{self._collection}.json"

    async def _initialize(self) -> None:
        self._records = await asyncio.to_thread(self._load)

    def _load(self) -> dict[str, dict[str, Any]]:
        self._base_dir.mkdir(parents=True, exist_ok=True)
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            records = data.get("records", {})
            if not isinstance(records, dict):
                raise ValueError("records must be an object")
            return records
        except (ValueError, AttributeError) as e:
            # Unreadable file: set it aside and start empty so this provider never fails
            stamp = datetime.now(UTC).strftime("%Y%m%dT%H%M%S")
            quarantine = self.path.with_name(f"{self._collection}.corrupt-{stamp}.json")
            os.replace(self.path, quarantine)
            logger.error(
                f"Vector file unreadable, moved aside: {e}",
                extra={"path": str(self.path), "quarantine": str(quarantine)},
            )
            return {}

    async def _persist(self) -> None:
        async with self._write_lock:
            payload = json.dumps(
                {"collection": self._collection, "records": self._records},
                ensure_ascii=False,
            )
            await asyncio.to_thread(self._write, payload)

    def _write(self, payload: str) -> None:
        self._base_dir.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            dir=self._base_dir,
            prefix=f".{self._collection}.",
            suffix=".tmp",
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    async def _upsert(self, id: str, vector: list[float], metadata: dict[str, Any]) -> None:
        self._records[id] = {"vector": vector, "metadata": metadata}
        await self._persist()

    async def _query(
        self,
        vector: list[float],
        limit: int,
        threshold: float,
        filter: MetadataFilter,
    ) -> list[QueryResult]:
        results: list[QueryResult] = []
        for record_id, record in list(self._records.items()):
            stored = record.get("vector", [])
            metadata = record.get("metadata", {})
            if len(stored) != len(vector) or not matches_filter(metadata, filter):
                continue
            results.append(
                QueryResult(
                    id=record_id,
                    similarity=cosine_similarity(vector, stored),
                    metadata=metadata,
                    vector=stored,
                )
            )
        return results

    async def _delete(self, ids: list[str]) -> None:
        removed = [self._records.pop(i, None) for i in ids]
        if any(r is not None for r in removed):
            await self._persist()

    async def _list(self, prefix: str) -> list[VectorRecord]:
        return [
            VectorRecord(
                id=record_id,
                vector=record.get("vector", []),
                metadata=record.get("metadata", {}),
            )
            for record_id, record in list(self._records.items())
            if record_id.startswith(prefix)
        ]

    async def _reset(self) -> None:
        self._records = {}
        await self._persist()

    async def _ping(self) -> None:
        if not self._base_dir.is_dir():
            raise FileNotFoundError(f"Vector directory missing: {self._base_dir}")

    async def _close(self) -> None:
        self._records = {}
