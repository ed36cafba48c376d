"""Tests for provider resolution, fallback and store state."""

from pathlib import Path
from typing import Any

import pytest

from forest_vectors.config import ProviderName, Settings
from forest_vectors.exceptions import ConfigurationError, ProviderInitError
from forest_vectors.vectorization import CorruptionDetector
from forest_vectors.vectorstore import (
    ChromaProvider,
    LocalJSONProvider,
    ProviderStrategy,
    QdrantProvider,
    QueryResult,
    SQLiteVecProvider,
    StoreState,
    VectorStoreOrchestrator,
    build_strategies,
    create_provider,
)
from forest_vectors.vectorstore.orchestrator import SELF_TEST_NAMESPACE


class UnreachableProvider(LocalJSONProvider):
    """Provider whose backend never comes up."""

    name = ProviderName.QDRANT

    async def _initialize(self) -> None:
        raise ConnectionRefusedError("connection refused")


class CorruptOnceProvider(LocalJSONProvider):
    """Provider whose first query fails with a corruption signature."""

    name = ProviderName.CHROMA

    def __init__(self, base_dir: Path) -> None:
        super().__init__(base_dir=base_dir)
        self.query_calls = 0
        self.resets = 0

    async def _query(self, vector, limit, threshold, filter) -> list[QueryResult]:  # type: ignore[no-untyped-def]
        self.query_calls += 1
        if self.query_calls == 1:
            raise AttributeError("'float' object has no attribute 'tolist'")
        return await super()._query(vector, limit, threshold, filter)

    async def _reset(self) -> None:
        self.resets += 1
        await super()._reset()


class BlindProvider(LocalJSONProvider):
    """Provider that stores vectors but never finds them."""

    name = ProviderName.SQLITEVEC

    async def _query(self, vector, limit, threshold, filter) -> list[QueryResult]:  # type: ignore[no-untyped-def]
        return []


def _strategy(name: ProviderName, factory: Any) -> ProviderStrategy:
    return ProviderStrategy(name=name, factory=factory)


class TestResolve:
    """Tests for strategy resolution."""

    @pytest.mark.asyncio
    async def test_first_strategy_wins(self, tmp_path: Path) -> None:
        """A healthy primary is used without fallback."""
        orchestrator = VectorStoreOrchestrator(
            [_strategy(ProviderName.LOCALJSON, lambda: LocalJSONProvider(tmp_path))]
        )

        provider = await orchestrator.resolve()

        assert isinstance(provider, LocalJSONProvider)
        assert orchestrator.fallback_used is False
        assert orchestrator.state == StoreState.HEALTHY
        assert orchestrator.status is not None
        assert orchestrator.status.provider_name == "localjson"

    @pytest.mark.asyncio
    async def test_fallback_when_primary_unreachable(self, tmp_path: Path) -> None:
        """An unreachable primary falls through to the next strategy."""
        orchestrator = VectorStoreOrchestrator(
            [
                _strategy(ProviderName.QDRANT, lambda: UnreachableProvider(tmp_path / "q")),
                _strategy(ProviderName.LOCALJSON, lambda: LocalJSONProvider(tmp_path / "l")),
            ]
        )

        provider = await orchestrator.resolve()

        assert provider.name == ProviderName.LOCALJSON
        assert orchestrator.fallback_used is True
        attempts = orchestrator.attempts
        assert [a.name for a in attempts] == [ProviderName.QDRANT, ProviderName.LOCALJSON]
        assert not attempts[0].ok
        assert "connection refused" in str(attempts[0].error)
        assert attempts[1].ok

    @pytest.mark.asyncio
    async def test_factory_error_is_a_failed_attempt(self, tmp_path: Path) -> None:
        """An exception from the constructor moves on to the next strategy."""

        def broken() -> LocalJSONProvider:
            raise ConfigurationError("bad settings")

        orchestrator = VectorStoreOrchestrator(
            [
                _strategy(ProviderName.CHROMA, broken),
                _strategy(ProviderName.LOCALJSON, lambda: LocalJSONProvider(tmp_path)),
            ]
        )

        await orchestrator.resolve()
        assert orchestrator.fallback_used is True

    @pytest.mark.asyncio
    async def test_all_strategies_fail(self, tmp_path: Path) -> None:
        """When nothing initializes, ProviderInitError lists every attempt."""
        orchestrator = VectorStoreOrchestrator(
            [_strategy(ProviderName.QDRANT, lambda: UnreachableProvider(tmp_path))]
        )

        with pytest.raises(ProviderInitError) as exc_info:
            await orchestrator.resolve()

        assert "qdrant" in exc_info.value.details["attempts"]
        assert orchestrator.state == StoreState.UNINITIALIZED
        with pytest.raises(ProviderInitError):
            _ = orchestrator.provider

    @pytest.mark.asyncio
    async def test_resolve_is_idempotent(self, tmp_path: Path) -> None:
        """A second resolve returns the same provider without reconstructing."""
        built: list[LocalJSONProvider] = []

        def factory() -> LocalJSONProvider:
            provider = LocalJSONProvider(tmp_path)
            built.append(provider)
            return provider

        orchestrator = VectorStoreOrchestrator([_strategy(ProviderName.LOCALJSON, factory)])

        first = await orchestrator.resolve()
        second = await orchestrator.resolve()

        assert first is second
        assert len(built) == 1

    def test_requires_strategies(self) -> None:
        """An empty chain is rejected."""
        with pytest.raises(ProviderInitError):
            VectorStoreOrchestrator([])


class TestSelfTest:
    """Tests for the synthetic round trip."""

    @pytest.mark.asyncio
    async def test_self_test_record_is_removed(self, tmp_path: Path) -> None:
        """The self-test leaves no record behind."""
        orchestrator = VectorStoreOrchestrator(
            [_strategy(ProviderName.LOCALJSON, lambda: LocalJSONProvider(tmp_path))]
        )

        provider = await orchestrator.resolve()

        assert await provider.list_vectors(SELF_TEST_NAMESPACE) == []

    @pytest.mark.asyncio
    async def test_missed_self_test_falls_back(self, tmp_path: Path) -> None:
        """A provider that cannot return the self-test record is skipped and closed."""
        blind = BlindProvider(tmp_path / "blind")
        orchestrator = VectorStoreOrchestrator(
            [
                _strategy(ProviderName.SQLITEVEC, lambda: blind),
                _strategy(ProviderName.LOCALJSON, lambda: LocalJSONProvider(tmp_path / "l")),
            ]
        )

        provider = await orchestrator.resolve()

        assert provider.name == ProviderName.LOCALJSON
        assert orchestrator.fallback_used is True
        assert blind.is_initialized is False

    @pytest.mark.asyncio
    async def test_corruption_runs_handler(self, tmp_path: Path) -> None:
        """Corruption during the self-test runs recovery and keeps the provider."""
        corrupt = CorruptOnceProvider(tmp_path)
        orchestrator = VectorStoreOrchestrator(
            [_strategy(ProviderName.CHROMA, lambda: corrupt)],
            is_corruption=CorruptionDetector(),
        )
        seen: list[tuple[str, StoreState]] = []

        async def handler(trigger: str) -> None:
            seen.append((trigger, orchestrator.state))
            orchestrator.begin_recovery()
            await orchestrator.provider.reset_collection()
            orchestrator.mark_recovered()

        orchestrator.set_corruption_handler(handler)

        provider = await orchestrator.resolve()

        assert provider is corrupt
        assert seen == [("self_test", StoreState.DEGRADED)]
        assert corrupt.resets == 1
        assert orchestrator.state == StoreState.HEALTHY
        assert orchestrator.fallback_used is False

    @pytest.mark.asyncio
    async def test_corruption_without_handler_resets(self, tmp_path: Path) -> None:
        """Without a handler the provider's collections are reset directly."""
        corrupt = CorruptOnceProvider(tmp_path)
        orchestrator = VectorStoreOrchestrator(
            [_strategy(ProviderName.CHROMA, lambda: corrupt)],
            is_corruption=CorruptionDetector(),
        )

        await orchestrator.resolve()

        assert corrupt.resets == 1
        assert orchestrator.state == StoreState.HEALTHY

    @pytest.mark.asyncio
    async def test_failed_reset_stays_degraded(self, tmp_path: Path) -> None:
        """A reset that fails during the self-test leaves the store degraded."""

        class StuckProvider(CorruptOnceProvider):
            async def _reset(self) -> None:
                self.resets += 1
                raise PermissionError("collection locked")

        stuck = StuckProvider(tmp_path)
        orchestrator = VectorStoreOrchestrator(
            [_strategy(ProviderName.CHROMA, lambda: stuck)],
            is_corruption=CorruptionDetector(),
        )

        provider = await orchestrator.resolve()

        assert provider is stuck
        assert stuck.resets == 1
        assert orchestrator.state == StoreState.DEGRADED

    @pytest.mark.asyncio
    async def test_non_corruption_failure_moves_on(self, tmp_path: Path) -> None:
        """With the default predicate the same failure is an ordinary error."""
        corrupt = CorruptOnceProvider(tmp_path / "c")
        orchestrator = VectorStoreOrchestrator(
            [
                _strategy(ProviderName.CHROMA, lambda: corrupt),
                _strategy(ProviderName.LOCALJSON, lambda: LocalJSONProvider(tmp_path / "l")),
            ]
        )

        provider = await orchestrator.resolve()

        assert provider.name == ProviderName.LOCALJSON
        assert corrupt.resets == 0
        assert orchestrator.fallback_used is True

    @pytest.mark.asyncio
    async def test_self_test_disabled(self, tmp_path: Path) -> None:
        """With self-test off a blind provider is accepted."""
        orchestrator = VectorStoreOrchestrator(
            [_strategy(ProviderName.SQLITEVEC, lambda: BlindProvider(tmp_path))],
            self_test=False,
        )

        provider = await orchestrator.resolve()
        assert provider.name == ProviderName.SQLITEVEC


class TestStateTransitions:
    """Tests for degraded/recovering/closed states."""

    @pytest.mark.asyncio
    async def test_degrade_and_recover(self, tmp_path: Path) -> None:
        """The store moves through degraded and recovering back to healthy."""
        orchestrator = VectorStoreOrchestrator(
            [_strategy(ProviderName.LOCALJSON, lambda: LocalJSONProvider(tmp_path))]
        )
        await orchestrator.resolve()

        orchestrator.mark_degraded("query failed")
        assert orchestrator.state == StoreState.DEGRADED
        orchestrator.begin_recovery()
        assert orchestrator.state == StoreState.RECOVERING
        orchestrator.mark_recovered()
        assert orchestrator.state == StoreState.HEALTHY

    @pytest.mark.asyncio
    async def test_close_is_terminal(self, tmp_path: Path) -> None:
        """A closed store cannot be resolved again and ignores transitions."""
        orchestrator = VectorStoreOrchestrator(
            [_strategy(ProviderName.LOCALJSON, lambda: LocalJSONProvider(tmp_path))]
        )
        provider = await orchestrator.resolve()

        await orchestrator.close()
        await orchestrator.close()

        assert orchestrator.state == StoreState.CLOSED
        assert provider.is_initialized is False
        assert await orchestrator.ping() is False
        orchestrator.mark_recovered()
        assert orchestrator.state == StoreState.CLOSED
        with pytest.raises(ProviderInitError):
            await orchestrator.resolve()

    @pytest.mark.asyncio
    async def test_ping(self, tmp_path: Path) -> None:
        """ping is False before resolution and True after."""
        orchestrator = VectorStoreOrchestrator(
            [_strategy(ProviderName.LOCALJSON, lambda: LocalJSONProvider(tmp_path))]
        )
        assert await orchestrator.ping() is False
        await orchestrator.resolve()
        assert await orchestrator.ping() is True


class TestRegistry:
    """Tests for provider construction and the fallback chain."""

    def test_create_each_provider(self, tmp_path: Path) -> None:
        """Every provider name maps to its adapter."""
        settings = Settings(FOREST_DATA_DIR=tmp_path)

        assert isinstance(create_provider(ProviderName.QDRANT, settings), QdrantProvider)
        assert isinstance(create_provider(ProviderName.CHROMA, settings), ChromaProvider)
        sqlite = create_provider(ProviderName.SQLITEVEC, settings)
        assert isinstance(sqlite, SQLiteVecProvider)
        assert sqlite.db_path == tmp_path / "forest_vectors.sqlite"
        local = create_provider(ProviderName.LOCALJSON, settings)
        assert isinstance(local, LocalJSONProvider)
        assert local.path == tmp_path / "vectors" / "forest_vectors.json"

    def test_unknown_provider(self) -> None:
        """Names outside the closed set raise ConfigurationError."""
        with pytest.raises(ConfigurationError):
            create_provider("pinecone", Settings())  # type: ignore[arg-type]

    def test_default_chain(self) -> None:
        """Default order is sqlite-vec then flat-file, without duplicates."""
        strategies = build_strategies(Settings())
        assert [s.name for s in strategies] == [ProviderName.SQLITEVEC, ProviderName.LOCALJSON]

    def test_chain_always_ends_with_flat_file(self) -> None:
        """A custom primary and fallback are followed by the flat-file provider."""
        settings = Settings()
        settings.vector_store.provider = ProviderName.QDRANT
        settings.vector_store.fallback_provider = ProviderName.CHROMA

        strategies = build_strategies(settings)

        assert [s.name for s in strategies] == [
            ProviderName.QDRANT,
            ProviderName.CHROMA,
            ProviderName.LOCALJSON,
        ]

    def test_factories_bind_their_own_name(self, tmp_path: Path) -> None:
        """Each strategy's factory builds its own provider."""
        settings = Settings(FOREST_DATA_DIR=tmp_path)
        settings.vector_store.provider = ProviderName.CHROMA

        strategies = build_strategies(settings)

        assert isinstance(strategies[0].factory(), ChromaProvider)
        assert isinstance(strategies[1].factory(), LocalJSONProvider)
