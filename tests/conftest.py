"""Pytest configuration and shared fixtures."""

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient

from forest_vectors.api.app import create_app
from forest_vectors.config import ProviderName
from forest_vectors.embeddings import EmbeddingResult, EmbeddingService, HashEmbeddingService
from forest_vectors.vectorization import (
    CorruptionDetector,
    MetadataSidecarStore,
    OperationCache,
    SelectiveVectorizationManager,
)
from forest_vectors.vectorstore import (
    LocalJSONProvider,
    ProviderStrategy,
    VectorStoreOrchestrator,
)


class StubEmbeddingService(EmbeddingService):
    """Embedding service returning a fixed value regardless of input."""

    def __init__(self, embedding: object) -> None:
        self.embedding = embedding
        self.calls: list[tuple[str, int]] = []

    @property
    def model_name(self) -> str:
        return "stub"

    async def embed(self, text: str, dimensions: int) -> EmbeddingResult:
        self.calls.append((text, dimensions))
        # model_construct skips field validation so malformed values reach the caller
        return EmbeddingResult.model_construct(
            text=text,
            embedding=self.embedding,
            model="stub",
            dimensions=dimensions,
        )


def local_strategy(base_dir: Path) -> ProviderStrategy:
    """Flat-file strategy rooted at a directory."""
    return ProviderStrategy(
        name=ProviderName.LOCALJSON,
        factory=lambda: LocalJSONProvider(base_dir=base_dir),
    )


def build_manager(
    data_dir: Path,
    embedding_service: EmbeddingService | None = None,
    cache_size: int = 100,
) -> SelectiveVectorizationManager:
    """Manager over the flat-file provider and the local hashing embedder."""
    detector = CorruptionDetector()
    orchestrator = VectorStoreOrchestrator(
        [local_strategy(data_dir / "vectors")],
        is_corruption=detector,
    )
    return SelectiveVectorizationManager(
        orchestrator=orchestrator,
        embedding_service=embedding_service or HashEmbeddingService(),
        sidecar=MetadataSidecarStore(data_dir),
        cache=OperationCache(cache_size),
        detector=detector,
    )


@pytest.fixture
async def manager(tmp_path: Path) -> AsyncGenerator[SelectiveVectorizationManager, None]:
    """Initialized manager on a temporary data directory.

    Yields:
        SelectiveVectorizationManager backed by LocalJSONProvider.
    """
    mgr = build_manager(tmp_path)
    await mgr.initialize()
    yield mgr
    await mgr.close()


@pytest.fixture
async def local_provider(tmp_path: Path) -> AsyncGenerator[LocalJSONProvider, None]:
    """Initialized flat-file provider.

    Yields:
        LocalJSONProvider writing under tmp_path.
    """
    provider = LocalJSONProvider(base_dir=tmp_path / "vectors", dimension=3)
    await provider.initialize()
    yield provider
    await provider.close()


@pytest.fixture
async def client(
    manager: SelectiveVectorizationManager,
) -> AsyncGenerator[AsyncClient, None]:
    """Create async test client for the FastAPI app.

    Yields:
        AsyncClient configured for testing.
    """
    app = create_app(manager=manager)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
