"""Vector store orchestrator.

Produces exactly one healthy provider for the process. Strategies are
tried in order; the first one that initializes and passes the self-test
wins. The orchestrator also tracks the store state that corruption
detection and recovery move through.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from uuid import uuid4

from forest_vectors.config import ProviderName
from forest_vectors.exceptions import (
    CorruptionError,
    ErrorCode,
    ProviderInitError,
    QueryError,
)
from forest_vectors.logging_config import get_logger
from forest_vectors.observability.metrics import track_provider_init
from forest_vectors.vectorstore.base import VectorProvider
from forest_vectors.vectorstore.models import InitStatus
from forest_vectors.vectorstore.registry import ProviderStrategy

logger = get_logger(__name__)

SELF_TEST_NAMESPACE = "__selftest__:check"
SELF_TEST_MIN_SIMILARITY = 0.99

CorruptionPredicate = Callable[[BaseException], bool]
CorruptionHandler = Callable[[str], Awaitable[None]]


class StoreState(str, Enum):
    """Lifecycle state of the vector store."""

    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    SELF_TESTING = "self_testing"
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    RECOVERING = "recovering"
    CLOSED = "closed"


@dataclass
class InitOutcome:
    """Result of trying one strategy: a provider or the error it raised."""

    name: ProviderName
    provider: VectorProvider | None = None
    status: InitStatus | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        """Whether the strategy produced a usable provider."""
        return self.provider is not None and self.error is None


def _is_corruption_error(error: BaseException) -> bool:
    return isinstance(error, CorruptionError)


class VectorStoreOrchestrator:
    """Resolve and own the single active vector provider."""

    def __init__(
        self,
        strategies: list[ProviderStrategy],
        self_test: bool = True,
        self_test_dimension: int = 384,
        is_corruption: CorruptionPredicate | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            strategies: Fallback chain, tried in order.
            self_test: Whether to run the synthetic round trip.
            self_test_dimension: Dimension of the self-test vector.
            is_corruption: Predicate classifying corruption errors.
        """
        if not strategies:
            raise ProviderInitError("At least one provider strategy is required")
        self._strategies = list(strategies)
        self._self_test = self_test
        self._self_test_dimension = self_test_dimension
        self._is_corruption = is_corruption or _is_corruption_error
        self._on_corruption: CorruptionHandler | None = None

        self._provider: VectorProvider | None = None
        self._status: InitStatus | None = None
        self._fallback_used = False
        self._state = StoreState.UNINITIALIZED
        self._attempts: list[InitOutcome] = []
        self._lock = asyncio.Lock()

    # ----- observability ---------------------------------------------

    @property
    def state(self) -> StoreState:
        """Current store state."""
        return self._state

    @property
    def fallback_used(self) -> bool:
        """Whether the resolved provider is not the first strategy."""
        return self._fallback_used

    @property
    def status(self) -> InitStatus | None:
        """Init status of the resolved provider."""
        return self._status

    @property
    def attempts(self) -> list[InitOutcome]:
        """Outcome of every strategy tried during resolution."""
        return list(self._attempts)

    @property
    def provider(self) -> VectorProvider:
        """The resolved provider.

        Raises:
            ProviderInitError: If resolve() has not completed.
        """
        if self._provider is None:
            raise ProviderInitError(
                "Vector store has not been resolved",
                code=ErrorCode.PROVIDER_UNAVAILABLE,
                details={"state": self._state.value},
            )
        return self._provider

    def set_corruption_handler(self, handler: CorruptionHandler | None) -> None:
        """Register the recovery routine run when the self-test hits corruption."""
        self._on_corruption = handler

    # ----- resolution ------------------------------------------------

    async def resolve(self) -> VectorProvider:
        """Initialize the first working strategy and return its provider.

        Idempotent once a provider has been resolved.

        Raises:
            ProviderInitError: If every strategy fails, or the store is closed.
        """
        async with self._lock:
            if self._provider is not None:
                return self._provider
            if self._state == StoreState.CLOSED:
                raise ProviderInitError(
                    "Vector store is closed",
                    code=ErrorCode.PROVIDER_UNAVAILABLE,
                )

            self._state = StoreState.INITIALIZING
            self._attempts = []

            for index, strategy in enumerate(self._strategies):
                outcome = await self._try_strategy(strategy)
                self._attempts.append(outcome)
                if not outcome.ok or outcome.provider is None:
                    continue

                fallback = index > 0
                track_provider_init(strategy.name.value, success=True, fallback=fallback)
                self._provider = outcome.provider
                self._status = outcome.status
                self._fallback_used = fallback
                # A failed self-test recovery leaves the store degraded
                if self._state != StoreState.DEGRADED:
                    self._state = StoreState.HEALTHY
                if fallback:
                    logger.warning(
                        f"Using fallback vector provider: {strategy.name.value}",
                        extra={"failed": [a.name.value for a in self._attempts[:-1]]},
                    )
                return outcome.provider

            self._state = StoreState.UNINITIALIZED
            raise ProviderInitError(
                "No vector provider could be initialized",
                details={
                    "attempts": {a.name.value: str(a.error) for a in self._attempts},
                },
            )

    async def _try_strategy(self, strategy: ProviderStrategy) -> InitOutcome:
        outcome = InitOutcome(name=strategy.name)
        try:
            provider = strategy.factory()
            outcome.status = await provider.initialize()
            if not outcome.status.success:
                raise ProviderInitError(
                    f"{strategy.name.value} reported unsuccessful initialization",
                    details={"provider": strategy.name.value},
                )
        except Exception as e:
            logger.error(
                f"Vector provider {strategy.name.value} failed to initialize: {e}",
                extra={"provider": strategy.name.value},
            )
            track_provider_init(strategy.name.value, success=False)
            outcome.error = e
            return outcome

        if self._self_test:
            self._state = StoreState.SELF_TESTING
            try:
                await self._run_self_test(provider)
            except Exception as e:
                if self._is_corruption(e):
                    logger.warning(
                        f"Self-test detected corruption on {strategy.name.value}: {e}",
                        extra={"provider": strategy.name.value},
                    )
                    await self._recover_during_self_test(provider, strategy.name)
                else:
                    logger.error(
                        f"Self-test failed on {strategy.name.value}: {e}",
                        extra={"provider": strategy.name.value},
                    )
                    track_provider_init(strategy.name.value, success=False)
                    await self._close_quietly(provider)
                    outcome.error = e
                    return outcome

        outcome.provider = provider
        return outcome

    async def _run_self_test(self, provider: VectorProvider) -> None:
        check_id = f"{SELF_TEST_NAMESPACE}:{uuid4().hex}"
        sample = [0.1] * self._self_test_dimension
        metadata = {"self_test": check_id}

        await provider.upsert_vector(check_id, sample, metadata)
        results = await provider.query_vectors(
            sample,
            limit=1,
            threshold=SELF_TEST_MIN_SIMILARITY,
            filter=metadata,
        )
        if not results or results[0].id != check_id:
            raise QueryError(
                f"{provider.name.value} self-test record was not retrieved",
                details={"provider": provider.name.value, "check_id": check_id},
            )
        await provider.delete_vector(check_id)
        logger.info(
            f"Self-test passed: {provider.name.value}",
            extra={"similarity": results[0].similarity},
        )

    async def _recover_during_self_test(
        self,
        provider: VectorProvider,
        name: ProviderName,
    ) -> None:
        # The provider is adopted before recovery so the handler can reach it
        self._provider = provider
        self.mark_degraded(f"self-test corruption on {name.value}")
        try:
            if self._on_corruption is not None:
                await self._on_corruption("self_test")
            else:
                self.begin_recovery()
                await provider.reset_collection()
                self.mark_recovered()
        except Exception as e:
            logger.error(
                f"Self-test recovery failed: {e}",
                extra={"provider": name.value, "error_code": ErrorCode.RECOVERY_FAILED.value},
            )
            self.mark_degraded(f"self-test recovery failed on {name.value}")
        finally:
            self._provider = None

    async def _close_quietly(self, provider: VectorProvider) -> None:
        try:
            await provider.close()
        except Exception as e:
            logger.warning(f"Error closing {provider.name.value}: {e}")

    # ----- state transitions -----------------------------------------

    def mark_degraded(self, reason: str) -> None:
        """Record runtime corruption on the active provider."""
        if self._state == StoreState.CLOSED:
            return
        logger.warning(f"Vector store degraded: {reason}", extra={"state": self._state.value})
        self._state = StoreState.DEGRADED

    def begin_recovery(self) -> None:
        """Enter the recovering state."""
        if self._state != StoreState.CLOSED:
            self._state = StoreState.RECOVERING

    def mark_recovered(self) -> None:
        """Return to healthy after recovery."""
        if self._state != StoreState.CLOSED:
            self._state = StoreState.HEALTHY

    async def ping(self) -> bool:
        """Ping the active provider, False when none is resolved."""
        if self._provider is None:
            return False
        return await self._provider.ping()

    async def close(self) -> None:
        """Close the active provider. Terminal; safe to call repeatedly."""
        if self._provider is not None:
            await self._close_quietly(self._provider)
            self._provider = None
        self._state = StoreState.CLOSED
