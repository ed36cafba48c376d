"""SQLite vector provider using the sqlite-vec extension.

Records live in one table keyed by id. Vectors are stored as float32
blobs next to their dimension, and ranking uses ``vec_distance_cosine``
so vectors of several dimensions can share the table.
"""

import json
import re
from pathlib import Path
from typing import Any

import aiosqlite
import sqlite_vec

from forest_vectors.config import ProviderName
from forest_vectors.exceptions import ProviderInitError
from forest_vectors.logging_config import get_logger
from forest_vectors.vectorstore.base import (
    MetadataFilter,
    VectorProvider,
    clamp_similarity,
    matches_filter,
)
from forest_vectors.vectorstore.models import QueryResult, VectorRecord

logger = get_logger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def json_path(key: str) -> str:
    """JSON path selecting a top-level metadata key."""
    escaped = key.replace("\\", "\\\\").replace('"', '\\"')
    return f'$."{escaped}"'


class SQLiteVecProvider(VectorProvider):
    """Embedded vector provider backed by SQLite and sqlite-vec."""

    name = ProviderName.SQLITEVEC

    def __init__(
        self,
        db_path: Path,
        collection: str = "forest_vectors",
        dimension: int = 1536,
    ) -> None:
        """Initialize the SQLite provider.

        Args:
            db_path: Database file path.
            collection: Table name.
            dimension: Declared collection dimension.
        """
        super().__init__(collection, dimension)
        self._db_path = Path(db_path)
        self._conn: aiosqlite.Connection | None = None

    @property
    def mode(self) -> str:
        """Startup mode."""
        return "embedded"

    @property
    def db_path(self) -> Path:
        """Database file path."""
        return self._db_path

    async def _get_conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise ProviderInitError(
                "sqlitevec connection is not open",
                details={"provider": self.name.value},
            )
        return self._conn

    async def _initialize(self) -> None:
        if not _IDENTIFIER.match(self._collection):
            raise ProviderInitError(
                f"Invalid table name: {self._collection}",
                details={"provider": self.name.value, "collection": self._collection},
            )

        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = await aiosqlite.connect(self._db_path)
        try:
            await conn.enable_load_extension(True)
            await conn.load_extension(sqlite_vec.loadable_path())
            await conn.enable_load_extension(False)
            async with conn.execute("SELECT vec_version()") as cursor:
                row = await cursor.fetchone()
        except Exception as e:
            await conn.close()
            raise ProviderInitError(
                f"sqlite-vec extension unavailable: {e}",
                details={"provider": self.name.value, "path": str(self._db_path)},
            ) from e

        self._conn = conn
        await self._create_table()
        logger.debug(
            "sqlite-vec loaded",
            extra={"version": row[0] if row else None, "path": str(self._db_path)},
        )

    async def _create_table(self) -> None:
        conn = await self._get_conn()
        await conn.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {self._collection} (
                id TEXT PRIMARY KEY,
                dimension INTEGER NOT NULL,
                embedding BLOB NOT NULL,
                metadata TEXT NOT NULL DEFAULT '{{}}',
                updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
            )
            """
        )
        await conn.execute(
            f"CREATE INDEX IF NOT EXISTS idx_{self._collection}_dimension "
            f"ON {self._collection}(dimension)"
        )
        await conn.commit()

    async def _upsert(self, id: str, vector: list[float], metadata: dict[str, Any]) -> None:
        conn = await self._get_conn()
        await conn.execute(
            f"""
            INSERT INTO {self._collection} (id, dimension, embedding, metadata, updated_at)
            VALUES (?, ?, ?, ?, CURRENT_TIMESTAMP)
            ON CONFLICT(id) DO UPDATE SET
                dimension = excluded.dimension,
                embedding = excluded.embedding,
                metadata = excluded.metadata,
                updated_at = excluded.updated_at
            """,
            (
                id,
                len(vector),
                sqlite_vec.serialize_float32(vector),
                json.dumps(metadata, default=str),
            ),
        )
        await conn.commit()

    async def _query(
        self,
        vector: list[float],
        limit: int,
        threshold: float,
        filter: MetadataFilter,
    ) -> list[QueryResult]:
        conn = await self._get_conn()

        clauses = ["dimension = ?"]
        params: list[Any] = [sqlite_vec.serialize_float32(vector), len(vector)]
        post_filter: MetadataFilter = {}
        for key, value in filter.items():
            if isinstance(value, (str, int, float, bool)):
                clauses.append("json_extract(metadata, ?) = ?")
                params.extend([json_path(key), value])
            else:
                post_filter[key] = value

        sql = (
            f"SELECT id, vec_to_json(embedding), metadata, "
            f"vec_distance_cosine(embedding, ?) AS distance "
            f"FROM {self._collection} WHERE {' AND '.join(clauses)} "
            f"ORDER BY distance"
        )
        if not post_filter:
            sql += " LIMIT ?"
            params.append(limit)

        results: list[QueryResult] = []
        async with conn.execute(sql, params) as cursor:
            async for row in cursor:
                metadata = json.loads(row[2]) if row[2] else {}
                if not matches_filter(metadata, post_filter):
                    continue
                distance = row[3] if row[3] is not None else 1.0
                results.append(
                    QueryResult(
                        id=row[0],
                        similarity=clamp_similarity(1.0 - float(distance)),
                        metadata=metadata,
                        vector=json.loads(row[1]),
                    )
                )
        return results

    async def _delete(self, ids: list[str]) -> None:
        conn = await self._get_conn()
        await conn.executemany(
            f"DELETE FROM {self._collection} WHERE id = ?",
            [(i,) for i in ids],
        )
        await conn.commit()

    async def _list(self, prefix: str) -> list[VectorRecord]:
        conn = await self._get_conn()
        # substr keeps the match case-sensitive, unlike LIKE
        sql = f"SELECT id, vec_to_json(embedding), metadata FROM {self._collection}"
        params: tuple[Any, ...] = ()
        if prefix:
            sql += " WHERE substr(id, 1, ?) = ?"
            params = (len(prefix), prefix)

        records: list[VectorRecord] = []
        async with conn.execute(sql, params) as cursor:
            async for row in cursor:
                records.append(
                    VectorRecord(
                        id=row[0],
                        vector=json.loads(row[1]),
                        metadata=json.loads(row[2]) if row[2] else {},
                    )
                )
        return records

    async def _reset(self) -> None:
        conn = await self._get_conn()
        await conn.execute(f"DROP TABLE IF EXISTS {self._collection}")
        await conn.commit()
        await self._create_table()

    async def _ping(self) -> None:
        conn = await self._get_conn()
        async with conn.execute("SELECT 1") as cursor:
            await cursor.fetchone()

    async def _close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None
