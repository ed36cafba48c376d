"""Provider registry.

Maps the closed set of provider names to constructors and builds the
ordered fallback chain the orchestrator walks.
"""

from collections.abc import Callable
from dataclasses import dataclass

from forest_vectors.config import ProviderName, Settings, get_settings
from forest_vectors.exceptions import ConfigurationError
from forest_vectors.vectorstore.base import VectorProvider
from forest_vectors.vectorstore.chroma import ChromaProvider
from forest_vectors.vectorstore.local_json import LocalJSONProvider
from forest_vectors.vectorstore.qdrant import QdrantProvider
from forest_vectors.vectorstore.sqlite_vec import SQLiteVecProvider

ProviderFactory = Callable[[], VectorProvider]


@dataclass(frozen=True)
class ProviderStrategy:
    """One entry of the fallback chain: a provider name and its constructor."""

    name: ProviderName
    factory: ProviderFactory


def create_provider(name: ProviderName, settings: Settings | None = None) -> VectorProvider:
    """Construct an uninitialized provider from settings.

    Args:
        name: Provider to build.
        settings: Application settings.

    Returns:
        VectorProvider instance.

    Raises:
        ConfigurationError: If the name is not a known provider.
    """
    settings = settings or get_settings()

    if name == ProviderName.QDRANT:
        return QdrantProvider(settings=settings.qdrant)
    if name == ProviderName.CHROMA:
        return ChromaProvider(settings=settings.chroma)
    if name == ProviderName.SQLITEVEC:
        cfg = settings.sqlitevec
        return SQLiteVecProvider(
            db_path=cfg.path or settings.data_dir / "forest_vectors.sqlite",
            collection=cfg.collection,
            dimension=cfg.dimension,
        )
    if name == ProviderName.LOCALJSON:
        cfg = settings.localjson
        return LocalJSONProvider(
            base_dir=cfg.base_dir or settings.data_dir / "vectors",
            collection=cfg.collection,
            dimension=cfg.dimension,
        )

    raise ConfigurationError(
        f"Unknown vector provider: {name}",
        details={"provider": str(name)},
    )


def build_strategies(settings: Settings | None = None) -> list[ProviderStrategy]:
    """Ordered fallback chain: primary, configured fallback, then flat-file.

    Duplicates are dropped, and the flat-file provider is always last
    unless it already appears earlier.
    """
    settings = settings or get_settings()
    order = [
        settings.vector_store.provider,
        settings.vector_store.fallback_provider,
        ProviderName.LOCALJSON,
    ]

    strategies: list[ProviderStrategy] = []
    seen: set[ProviderName] = set()
    for name in order:
        if name in seen:
            continue
        seen.add(name)
        strategies.append(
            ProviderStrategy(name=name, factory=lambda n=name: create_provider(n, settings))
        )
    return strategies
