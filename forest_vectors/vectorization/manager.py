"""Selective Vectorization Manager.

Embeds only the semantically meaningful part of each hierarchy entity and
keeps fast-changing scalar fields in the metadata sidecar. Query results
are joined back with their sidecar rows, and cache-eligible queries are
served from the operation cache.

Every public operation runs through :meth:`_guarded`: a corruption
signature triggers recovery and a degraded result, anything else is
re-raised unchanged.
"""

import asyncio
import re
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from forest_vectors.config import Settings, get_settings
from forest_vectors.embeddings import EmbeddingService, create_embedding_service
from forest_vectors.exceptions import ForestVectorError, SidecarError, ValidationError
from forest_vectors.logging_config import get_logger
from forest_vectors.observability.metrics import track_vectorized
from forest_vectors.vectorization.cache import CacheKey, OperationCache
from forest_vectors.vectorization.corruption import CorruptionDetector
from forest_vectors.vectorization.models import (
    Branch,
    BranchMetadata,
    BranchRow,
    BreakthroughInsight,
    BulkVectorizationResult,
    CacheStats,
    EnrichedResult,
    Goal,
    GoalMetadata,
    HTATree,
    LearningEvent,
    LearningHistory,
    RecoveryRecord,
    RecoveryStatus,
    Task,
    TaskMetadata,
    TaskRow,
    VectorizationOutcome,
    VectorizationStats,
    utc_now,
)
from forest_vectors.vectorization.prompts import build_prompt
from forest_vectors.vectorization.recovery import CorruptionRecovery
from forest_vectors.vectorization.sidecar import (
    BRANCH_METADATA,
    GOAL_METADATA,
    HTA_DOCUMENT,
    LEARNING_HISTORY,
    TASK_METADATA,
    VECTORIZED_DOCUMENTS,
    MetadataSidecarStore,
)
from forest_vectors.vectorization.types import (
    GOAL_LOCAL_ID,
    JSON_ONLY_FIELDS,
    EntityKind,
    VectorizationType,
    make_vector_id,
    namespace_prefix,
)
from forest_vectors.vectorstore import (
    StoreState,
    VectorProvider,
    VectorStoreOrchestrator,
    build_strategies,
    normalize_vector,
)
from forest_vectors.vectorstore.models import QueryResult

logger = get_logger(__name__)

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)

# Cached operation kinds
SIMILAR_TASKS = "similar_tasks"
RELATED_BREAKTHROUGHS = "related_breakthroughs"
CROSS_PROJECT_INSIGHTS = "cross_project_insights"

DEFAULT_DIFFICULTY = 3
DEFAULT_DURATION_MINUTES = 30
ENERGY_TOLERANCE = 2
TIME_SLACK = 1.2
RECOMMENDATION_LIMIT = 5
RECOMMENDATION_THRESHOLD = 0.05

_MINUTES = re.compile(r"(\d+)\s*min")
_HOURS = re.compile(r"(\d+)\s*hour")
_NUMBER = re.compile(r"(\d+)")
_PROJECT_ID = re.compile(r"[A-Za-z0-9][A-Za-z0-9_.-]*")


def parse_time_to_minutes(value: Any) -> int:
    """Parse a duration like ``"45 minutes"`` or ``"2 hours"`` into minutes.

    Bare numbers are minutes. Anything unparseable counts as 30 minutes.
    """
    if isinstance(value, bool) or value is None:
        return DEFAULT_DURATION_MINUTES
    if isinstance(value, (int, float)):
        return int(value)
    if not isinstance(value, str):
        return DEFAULT_DURATION_MINUTES

    text = value.lower()
    if match := _MINUTES.search(text):
        return int(match.group(1))
    if match := _HOURS.search(text):
        return int(match.group(1)) * 60
    if match := _NUMBER.search(text):
        return int(match.group(1))
    return DEFAULT_DURATION_MINUTES


def check_project_id(project_id: Any) -> None:
    """Reject project ids that could collide in vector ids or leave the sidecar root."""
    if not isinstance(project_id, str) or not _PROJECT_ID.fullmatch(project_id):
        raise ValidationError(
            "project_id must start with a letter or digit and contain only "
            "letters, digits, '_', '-' or '.'",
            details={"project_id": project_id},
        )


def _as_number(value: Any, default: float) -> float:
    if isinstance(value, bool) or value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _coerce(model: type[M], data: Any) -> M:
    """Validate planner data into a model, raising our ValidationError."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(
            f"Invalid {model.__name__}: {e.error_count()} error(s)",
            details={"errors": e.errors(include_url=False)},
        ) from e


def vector_metadata(fields: dict[str, Any]) -> dict[str, Any]:
    """Drop sidecar-only scalar fields and empty values from vector metadata."""
    return {
        key: value
        for key, value in fields.items()
        if value is not None and key not in JSON_ONLY_FIELDS
    }


def _merge_rows(
    existing: list[dict[str, Any]],
    updates: list[dict[str, Any]],
    key: str,
) -> list[dict[str, Any]]:
    merged = {row.get(key): row for row in existing if isinstance(row, dict)}
    for row in updates:
        merged[row[key]] = {**merged.get(row[key], {}), **row}
    return list(merged.values())


class SelectiveVectorizationManager:
    """Vectorize hierarchy entities and answer semantic queries over them."""

    def __init__(
        self,
        orchestrator: VectorStoreOrchestrator,
        embedding_service: EmbeddingService,
        sidecar: MetadataSidecarStore,
        cache: OperationCache | None = None,
        detector: Callable[[BaseException], bool] | None = None,
    ) -> None:
        """Initialize the manager.

        Args:
            orchestrator: Owner of the active vector provider.
            embedding_service: Opaque ``embed(text, dimensions)`` function.
            sidecar: Metadata sidecar store.
            cache: Operation cache for query results.
            detector: Corruption predicate.
        """
        self._orchestrator = orchestrator
        self._embedder = embedding_service
        self._sidecar = sidecar
        self._cache = cache or OperationCache()
        self._is_corruption = detector or CorruptionDetector()
        self._recovery = CorruptionRecovery(orchestrator, self._cache, sidecar)
        self._orchestrator.set_corruption_handler(self._recover_for)
        self._initialized = False
        self._init_lock = asyncio.Lock()

    # ----- properties ------------------------------------------------

    @property
    def cache(self) -> OperationCache:
        return self._cache

    @property
    def sidecar(self) -> MetadataSidecarStore:
        return self._sidecar

    @property
    def orchestrator(self) -> VectorStoreOrchestrator:
        return self._orchestrator

    @property
    def provider(self) -> VectorProvider:
        """Active vector provider."""
        return self._orchestrator.provider

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    # ----- lifecycle -------------------------------------------------

    async def initialize(self) -> None:
        """Resolve the vector store and prepare the sidecar. Idempotent."""
        if self._initialized:
            return
        async with self._init_lock:
            if self._initialized:
                return
            await self._orchestrator.resolve()
            await self._sidecar.ensure_root()
            self._initialized = True
            logger.info(
                "Selective vectorization initialized",
                extra={
                    "provider": self.provider.name.value,
                    "fallback_used": self._orchestrator.fallback_used,
                },
            )

    async def close(self) -> None:
        """Close the vector store and the embedding service."""
        await self._orchestrator.close()
        await self._embedder.close()
        self._initialized = False

    # ----- vectorization ---------------------------------------------

    async def vectorize_project_goal(
        self,
        project_id: str,
        goal: Goal | dict[str, Any],
    ) -> VectorizationOutcome:
        """Embed a project's goal and record it in ``goal_metadata``."""
        vtype = VectorizationType.GOAL

        async def _run() -> VectorizationOutcome:
            await self.initialize()
            data = _coerce(Goal, goal)
            vector_id = make_vector_id(project_id, vtype.kind, GOAL_LOCAL_ID)
            prompt = build_prompt(
                vtype.kind,
                data.goal,
                depth=0,
                child_count=len(data.strategic_branches),
            )
            await self._upsert(
                vector_id,
                prompt,
                vtype,
                {
                    "type": "goal",
                    "project_id": project_id,
                    "content": data.goal,
                    "complexity": data.complexity,
                    "domain": data.domain,
                    "estimated_duration": data.estimated_duration,
                },
            )
            now = utc_now()
            await self._save_sidecar(
                project_id,
                GOAL_METADATA,
                GoalMetadata(
                    id=project_id,
                    goal=data.goal,
                    complexity=data.complexity,
                    created_at=data.created_at or now,
                    vectorized=True,
                    last_vectorized=now,
                ).model_dump(exclude={"recovery_log", "corruption_recovery"}),
            )
            self._invalidate(project_id, vtype)
            return VectorizationOutcome(vectorized=True, type=vtype.label, id=vector_id)

        return await self._guarded(
            "vectorize_project_goal",
            project_id,
            _run,
            VectorizationOutcome(vectorized=False, type=vtype.label, degraded=True),
        )

    async def vectorize_hta_branches(
        self,
        project_id: str,
        branches: Sequence[Branch | dict[str, Any]],
    ) -> list[VectorizationOutcome]:
        """Embed strategic branches and update ``branch_metadata``."""
        vtype = VectorizationType.BRANCH

        async def _run() -> list[VectorizationOutcome]:
            await self.initialize()
            items = [_coerce(Branch, b) for b in branches]
            outcomes: list[VectorizationOutcome] = []
            for index, branch in enumerate(items):
                vector_id = make_vector_id(project_id, vtype.kind, branch.name)
                prompt = build_prompt(
                    vtype.kind,
                    f"{branch.name}: {branch.description}",
                    depth=1,
                    sibling_index=index,
                    child_count=len(branch.tasks),
                    branch=branch.name,
                )
                await self._upsert(
                    vector_id,
                    prompt,
                    vtype,
                    {
                        "type": "branch",
                        "project_id": project_id,
                        "name": branch.name,
                        "description": branch.description,
                        "strategic_importance": branch.strategic_importance,
                        "estimated_tasks": len(branch.tasks),
                    },
                )
                outcomes.append(
                    VectorizationOutcome(vectorized=True, type=vtype.label, id=vector_id)
                )

            if items:
                rows = [
                    BranchRow(
                        name=b.name,
                        priority=b.priority,
                        task_count=len(b.tasks),
                        vectorized=True,
                    ).model_dump()
                    for b in items
                ]
                await self._save_rows(
                    project_id, BRANCH_METADATA, BranchMetadata, "branches", rows, "name"
                )
                self._invalidate(project_id, vtype)
            return outcomes

        return await self._guarded("vectorize_hta_branches", project_id, _run, [])

    async def vectorize_task_content(
        self,
        project_id: str,
        tasks: Sequence[Task | dict[str, Any]],
    ) -> list[VectorizationOutcome]:
        """Embed task content and update ``task_metadata`` rows."""
        vtype = VectorizationType.TASK

        async def _run() -> list[VectorizationOutcome]:
            await self.initialize()
            items = [_coerce(Task, t) for t in tasks]
            outcomes: list[VectorizationOutcome] = []
            for index, task in enumerate(items):
                vector_id = make_vector_id(project_id, vtype.kind, task.id)
                prompt = build_prompt(
                    vtype.kind,
                    f"{task.title}: {task.description}",
                    depth=2,
                    sibling_index=index,
                    prereq_count=len(task.prerequisites),
                    branch=task.branch,
                )
                await self._upsert(
                    vector_id,
                    prompt,
                    vtype,
                    {
                        "type": "task",
                        "project_id": project_id,
                        "task_id": task.id,
                        "title": task.title,
                        "description": task.description,
                        "branch": task.branch,
                        "learning_objective": task.learning_objective,
                        "skill_tags": task.skill_tags,
                    },
                )
                outcomes.append(
                    VectorizationOutcome(vectorized=True, type=vtype.label, id=vector_id)
                )

            if items:
                rows = [
                    TaskRow(
                        id=t.id,
                        completed=t.completed,
                        priority=t.priority,
                        difficulty=t.difficulty,
                        duration=t.duration,
                        prerequisites=t.prerequisites,
                        progress=t.progress,
                        vectorized=True,
                    ).model_dump()
                    for t in items
                ]
                await self._save_rows(
                    project_id, TASK_METADATA, TaskMetadata, "tasks", rows, "id"
                )
                self._invalidate(project_id, vtype)
            return outcomes

        return await self._guarded("vectorize_task_content", project_id, _run, [])

    async def vectorize_learning_history(
        self,
        project_id: str,
        events: Sequence[LearningEvent | dict[str, Any]],
    ) -> list[VectorizationOutcome]:
        """Embed learning events. They have no sidecar document."""
        vtype = VectorizationType.LEARNING_EVENT

        async def _run() -> list[VectorizationOutcome]:
            await self.initialize()
            outcomes: list[VectorizationOutcome] = []
            for event in (_coerce(LearningEvent, e) for e in events):
                vector_id = make_vector_id(project_id, vtype.kind, event.id)
                await self._upsert(
                    vector_id,
                    f"{event.type}: {event.description} outcome: {event.outcome}",
                    vtype,
                    {
                        "type": "learning_event",
                        "project_id": project_id,
                        "event_id": event.id,
                        "event_type": event.type,
                        "task_id": event.task_id,
                        "outcome": event.outcome,
                        "insights": event.insights,
                        "breakthrough_level": event.breakthrough_level,
                        "timestamp": event.timestamp,
                    },
                )
                outcomes.append(
                    VectorizationOutcome(vectorized=True, type=vtype.label, id=vector_id)
                )
            return outcomes

        return await self._guarded("vectorize_learning_history", project_id, _run, [])

    async def vectorize_breakthrough_insight(
        self,
        project_id: str,
        insight: BreakthroughInsight | dict[str, Any],
    ) -> VectorizationOutcome:
        """Embed a breakthrough insight."""
        vtype = VectorizationType.BREAKTHROUGH

        async def _run() -> VectorizationOutcome:
            await self.initialize()
            data = _coerce(BreakthroughInsight, insight)
            vector_id = make_vector_id(project_id, vtype.kind, data.id)
            await self._upsert(
                vector_id,
                f"breakthrough: {data.description} context: {data.context} impact: {data.impact}",
                vtype,
                {
                    "type": "breakthrough",
                    "project_id": project_id,
                    "insight_id": data.id,
                    "description": data.description,
                    "context": data.context,
                    "impact_level": data.impact_level,
                    "related_tasks": data.related_tasks,
                    "knowledge_domain": data.knowledge_domain,
                    "timestamp": data.timestamp,
                },
            )
            self._invalidate(project_id, vtype)
            # Other projects' cross-project results may now include this insight
            self._cache.invalidate_operation(CROSS_PROJECT_INSIGHTS)
            return VectorizationOutcome(vectorized=True, type=vtype.label, id=vector_id)

        return await self._guarded(
            "vectorize_breakthrough_insight",
            project_id,
            _run,
            VectorizationOutcome(vectorized=False, type=vtype.label, degraded=True),
        )

    async def vectorize_user_context(
        self,
        project_id: str,
        context_id: str,
        text: str,
    ) -> VectorizationOutcome:
        """Embed a short user-context snippet as raw text."""
        vtype = VectorizationType.USER_CONTEXT

        async def _run() -> VectorizationOutcome:
            await self.initialize()
            if not context_id:
                raise ValidationError("context_id cannot be empty")
            vector_id = make_vector_id(project_id, vtype.kind, context_id)
            await self._upsert(
                vector_id,
                text,
                vtype,
                {
                    "type": "user_context",
                    "project_id": project_id,
                    "context_id": context_id,
                    "content": text,
                    "timestamp": utc_now(),
                },
            )
            return VectorizationOutcome(vectorized=True, type=vtype.label, id=vector_id)

        return await self._guarded(
            "vectorize_user_context",
            project_id,
            _run,
            VectorizationOutcome(vectorized=False, type=vtype.label, degraded=True),
        )

    # ----- semantic queries ------------------------------------------

    async def find_similar_tasks(
        self,
        project_id: str,
        query_text: str,
        limit: int = 10,
        threshold: float = 0.1,
    ) -> list[EnrichedResult]:
        """Tasks of a project semantically similar to free text."""
        vtype = VectorizationType.TASK

        async def _run() -> list[EnrichedResult]:
            results = await self._query(
                query_text,
                vtype,
                limit,
                threshold,
                {"project_id": project_id, "vectorization_type": vtype.label},
            )
            return await self._enrich(results, EntityKind.TASK)

        return await self._guarded(
            "find_similar_tasks",
            project_id,
            lambda: self._cached(SIMILAR_TASKS, project_id, query_text, vtype, _run),
            [],
        )

    async def find_related_breakthroughs(
        self,
        project_id: str,
        context: str,
        limit: int = 5,
        threshold: float = 0.15,
    ) -> list[EnrichedResult]:
        """Breakthrough insights of a project related to a context."""
        vtype = VectorizationType.BREAKTHROUGH

        async def _run() -> list[EnrichedResult]:
            results = await self._query(
                context,
                vtype,
                limit,
                threshold,
                {"project_id": project_id, "vectorization_type": vtype.label},
            )
            return await self._enrich(results, EntityKind.BREAKTHROUGH)

        return await self._guarded(
            "find_related_breakthroughs",
            project_id,
            lambda: self._cached(RELATED_BREAKTHROUGHS, project_id, context, vtype, _run),
            [],
        )

    async def find_cross_project_insights(
        self,
        source_project_id: str,
        target_context: str,
        limit: int = 8,
        threshold: float = 0.2,
    ) -> list[EnrichedResult]:
        """Breakthroughs from every project except the caller's own."""
        vtype = VectorizationType.BREAKTHROUGH

        async def _run() -> list[EnrichedResult]:
            results = await self._query(
                target_context,
                vtype,
                limit,
                threshold,
                {"vectorization_type": vtype.label},
            )
            foreign = [r for r in results if r.metadata.get("project_id") != source_project_id]
            return await self._enrich(foreign, EntityKind.BREAKTHROUGH)

        return await self._guarded(
            "find_cross_project_insights",
            source_project_id,
            lambda: self._cached(
                CROSS_PROJECT_INSIGHTS, source_project_id, target_context, vtype, _run
            ),
            [],
        )

    async def find_similar_context(
        self,
        project_id: str,
        text: str,
        limit: int = 5,
        threshold: float = 0.1,
    ) -> list[EnrichedResult]:
        """User-context snippets of a project similar to a text."""
        vtype = VectorizationType.USER_CONTEXT

        async def _run() -> list[EnrichedResult]:
            results = await self._query(
                text,
                vtype,
                limit,
                threshold,
                {"project_id": project_id, "vectorization_type": vtype.label},
            )
            return await self._enrich(results, EntityKind.CONTEXT)

        return await self._guarded("find_similar_context", project_id, _run, [])

    async def adaptive_task_recommendation(
        self,
        project_id: str,
        user_context: str,
        energy_level: int,
        time_available: str | int,
    ) -> list[EnrichedResult]:
        """Recommend open tasks that fit the caller's energy and time.

        Candidates are filtered on sidecar scalars first; only the survivors
        are ranked semantically, with the query limit capped to their count.
        """
        vtype = VectorizationType.TASK

        async def _run() -> list[EnrichedResult]:
            await self.initialize()
            document = await self._sidecar.load(project_id, TASK_METADATA)
            if not document:
                return []

            available = parse_time_to_minutes(time_available)
            viable = [
                row
                for row in document.get("tasks", [])
                if isinstance(row, dict) and self._is_viable(row, energy_level, available)
            ]
            if not viable:
                return []

            query = f"energy:{energy_level} time:{time_available} context:{user_context}"
            results = await self._query(
                query,
                vtype,
                min(len(viable), RECOMMENDATION_LIMIT),
                RECOMMENDATION_THRESHOLD,
                {"project_id": project_id, "vectorization_type": vtype.label},
            )
            viable_ids = {row.get("id") for row in viable}
            matching = [r for r in results if r.metadata.get("task_id") in viable_ids]
            return await self._enrich(matching, EntityKind.TASK)

        return await self._guarded("adaptive_task_recommendation", project_id, _run, [])

    @staticmethod
    def _is_viable(row: dict[str, Any], energy_level: int, available_minutes: int) -> bool:
        if row.get("completed"):
            return False
        difficulty = _as_number(row.get("difficulty"), DEFAULT_DIFFICULTY)
        if abs(difficulty - energy_level) > ENERGY_TOLERANCE:
            return False
        duration = parse_time_to_minutes(row.get("duration"))
        return duration <= available_minutes * TIME_SLACK

    # ----- bulk and maintenance --------------------------------------

    async def bulk_vectorize_project(self, project_id: str) -> BulkVectorizationResult:
        """Vectorize a project's stored hierarchy and learning history.

        Reads ``hta`` and ``learning_history`` from the sidecar. A stage
        that fails or degrades adds one error, as does a malformed history.
        A missing or malformed hierarchy is one error and nothing else runs.
        An invalid ``project_id`` raises ValidationError.
        """
        check_project_id(project_id)
        result = BulkVectorizationResult()

        async def _load_tree() -> HTATree | None:
            await self.initialize()
            document = await self._sidecar.load(project_id, HTA_DOCUMENT)
            return _coerce(HTATree, document) if document is not None else None

        try:
            tree = await self._guarded("bulk_vectorize_project", project_id, _load_tree, None)
        except (SidecarError, ValidationError) as e:
            logger.error(
                f"Bulk vectorization could not read hierarchy: {e}",
                extra={"project_id": project_id},
            )
            tree = None
        if tree is None:
            logger.warning("No hierarchy to vectorize", extra={"project_id": project_id})
            result.errors = 1
            return result

        if tree.goal:
            outcome = await self._bulk_stage(
                result, project_id, "goal", self.vectorize_project_goal(project_id, tree)
            )
            if outcome is not None and outcome.vectorized:
                result.vectorized += 1
                result.types.goals += 1
            elif outcome is not None:
                result.errors += 1

        if tree.strategic_branches:
            count = await self._bulk_many(
                result,
                project_id,
                "branches",
                self.vectorize_hta_branches(project_id, tree.strategic_branches),
                len(tree.strategic_branches),
            )
            result.types.branches += count

        if tree.frontier_nodes:
            count = await self._bulk_many(
                result,
                project_id,
                "tasks",
                self.vectorize_task_content(project_id, tree.frontier_nodes),
                len(tree.frontier_nodes),
            )
            result.types.tasks += count

        try:
            history_doc = await self._sidecar.load(project_id, LEARNING_HISTORY)
        except SidecarError as e:
            logger.error(f"Bulk vectorization could not read learning history: {e}")
            result.errors += 1
            history_doc = None
        history = None
        if history_doc:
            try:
                history = _coerce(LearningHistory, history_doc)
            except ValidationError as e:
                logger.error(
                    f"Bulk vectorization skipped malformed learning history: {e}",
                    extra={"project_id": project_id},
                )
                result.errors += 1
        if history is not None and history.events:
            count = await self._bulk_many(
                result,
                project_id,
                "learning_events",
                self.vectorize_learning_history(project_id, history.events),
                len(history.events),
            )
            result.types.learning_events += count

        logger.info(
            f"Bulk vectorization finished: {result.vectorized} records, {result.errors} errors",
            extra={"project_id": project_id, "types": result.types.model_dump()},
        )
        return result

    async def _bulk_stage(
        self,
        result: BulkVectorizationResult,
        project_id: str,
        stage: str,
        call: Awaitable[T],
    ) -> T | None:
        try:
            return await call
        except ValidationError:
            raise
        except ForestVectorError as e:
            logger.error(
                f"Bulk stage {stage} failed: {e.message}",
                extra={"project_id": project_id, "error_code": e.code.value},
            )
            result.errors += 1
            return None

    async def _bulk_many(
        self,
        result: BulkVectorizationResult,
        project_id: str,
        stage: str,
        call: Awaitable[list[VectorizationOutcome]],
        expected: int,
    ) -> int:
        outcomes = await self._bulk_stage(result, project_id, stage, call)
        if outcomes is None:
            return 0
        written = sum(1 for o in outcomes if o.vectorized)
        if written < expected:
            # Degraded by corruption recovery
            result.errors += 1
        result.vectorized += written
        return written

    async def delete_project_vectors(
        self,
        project_id: str,
        kind: EntityKind | None = None,
    ) -> int:
        """Delete a project's vectors, optionally only one entity kind."""

        async def _run() -> int:
            await self.initialize()
            deleted = await self.provider.delete_namespace(namespace_prefix(project_id, kind))
            self._cache.invalidate_project(project_id)
            if kind in (None, EntityKind.BREAKTHROUGH):
                self._cache.invalidate_operation(CROSS_PROJECT_INSIGHTS)
            return deleted

        return await self._guarded("delete_project_vectors", project_id, _run, 0)

    async def get_vectorization_stats(self) -> VectorizationStats:
        """Provider, cache and type statistics."""

        async def _store_stats() -> dict[str, Any]:
            await self.initialize()
            return (await self.provider.stats()).model_dump()

        vector_store = await self._guarded("get_vectorization_stats", None, _store_stats, {})
        return VectorizationStats(
            provider=self.provider.name.value,
            fallback_used=self._orchestrator.fallback_used,
            state=self._orchestrator.state.value,
            vector_store=vector_store,
            cache=self.cache_stats(),
            vectorization_types={t.label: t.describe() for t in VectorizationType},
        )

    def cache_stats(self) -> CacheStats:
        return CacheStats(
            size=self._cache.size,
            max_size=self._cache.max_size,
            hits=self._cache.hits,
            misses=self._cache.misses,
            hit_rate=self._cache.hit_rate,
        )

    def clear_vector_cache(self) -> None:
        """Drop cached results and reset hit/miss counters."""
        self._cache.clear()
        logger.info("Vector operation cache cleared")

    async def recover_from_corruption(self, trigger: str = "manual") -> list[RecoveryRecord]:
        """Run the recovery procedure on demand. Never raises."""
        await self.initialize()
        return await self._recovery.recover(trigger)

    async def get_corruption_recovery_status(self) -> RecoveryStatus:
        """Report past recoveries recorded in the sidecar and store health."""
        await self.initialize()
        reachable = await self._orchestrator.ping()

        latest: dict[str, str] = {}
        for project_id in await self._sidecar.list_projects():
            for name in VECTORIZED_DOCUMENTS:
                try:
                    document = await self._sidecar.load(project_id, name)
                except SidecarError as e:
                    logger.warning(
                        f"Skipping unreadable {name}: {e}",
                        extra={"project_id": project_id},
                    )
                    continue
                for entry in (document or {}).get("recovery_log", []) or []:
                    stamp = entry.get("timestamp") if isinstance(entry, dict) else None
                    if stamp and stamp > latest.get(project_id, ""):
                        latest[project_id] = stamp

        last = max(latest.values(), default=None)
        if self._recovery.last_recovery and (last is None or self._recovery.last_recovery > last):
            last = self._recovery.last_recovery

        state = self._orchestrator.state
        store_status = state.value if reachable else "unreachable"
        return RecoveryStatus(
            last_recovery=last,
            recovered_projects=[
                {"project_id": p, "last_recovery": ts} for p, ts in sorted(latest.items())
            ],
            corruption_detected=state in (StoreState.DEGRADED, StoreState.RECOVERING),
            vector_store_status=store_status,
        )

    # ----- internals -------------------------------------------------

    async def _guarded(
        self,
        operation: str,
        project_id: str | None,
        call: Callable[[], Awaitable[T]],
        degraded: T,
    ) -> T:
        """Run an operation; recover and degrade on corruption, re-raise otherwise."""
        if project_id is not None:
            check_project_id(project_id)
        try:
            return await call()
        except ValidationError:
            raise
        except Exception as e:
            if not self._is_corruption(e):
                raise
            logger.error(
                f"Corruption detected in {operation}: {e}",
                extra={"operation": operation, "project_id": project_id},
            )
            self._orchestrator.mark_degraded(f"{operation}: {e}")
            await self._recovery.recover(operation)
            return degraded

    async def _recover_for(self, trigger: str) -> None:
        await self._recovery.recover(trigger)

    async def _embed(self, text: str, vtype: VectorizationType) -> list[float]:
        result = await self._embedder.embed(text, vtype.dimension)
        return normalize_vector(result.embedding, expected_dimension=vtype.dimension)

    async def _upsert(
        self,
        vector_id: str,
        text: str,
        vtype: VectorizationType,
        fields: dict[str, Any],
    ) -> None:
        vector = await self._embed(text, vtype)
        metadata = vector_metadata({**fields, "vectorization_type": vtype.label})
        await self.provider.upsert_vector(vector_id, vector, metadata)
        track_vectorized(vtype.label)

    async def _query(
        self,
        text: str,
        vtype: VectorizationType,
        limit: int,
        threshold: float,
        filter: dict[str, Any],
    ) -> list[QueryResult]:
        await self.initialize()
        vector = await self._embed(text, vtype)
        return await self.provider.query_vectors(
            vector,
            limit=limit,
            threshold=threshold,
            filter=filter,
        )

    async def _cached(
        self,
        operation: str,
        project_id: str,
        query_text: str,
        vtype: VectorizationType,
        compute: Callable[[], Awaitable[list[EnrichedResult]]],
    ) -> list[EnrichedResult]:
        if not vtype.cache_eligible:
            return await compute()
        key = CacheKey(operation, project_id, query_text)
        cached = self._cache.get(key)
        if cached is not None:
            return cached
        results = await compute()
        self._cache.put(key, results)
        return results

    def _invalidate(self, project_id: str, vtype: VectorizationType) -> None:
        if vtype.cache_eligible:
            self._cache.invalidate_project(project_id)

    async def _enrich(
        self,
        results: list[QueryResult],
        kind: EntityKind,
    ) -> list[EnrichedResult]:
        task_rows: dict[str, dict[str, dict[str, Any]]] = {}
        enriched: list[EnrichedResult] = []
        for result in results:
            extra: dict[str, Any] = {}
            if kind == EntityKind.TASK:
                extra = await self._task_row(task_rows, result)
            elif kind == EntityKind.BREAKTHROUGH:
                extra = dict(result.metadata)
            enriched.append(EnrichedResult(**result.model_dump(), enriched_metadata=extra))
        return enriched

    async def _task_row(
        self,
        loaded: dict[str, dict[str, dict[str, Any]]],
        result: QueryResult,
    ) -> dict[str, Any]:
        project_id = result.metadata.get("project_id")
        if not isinstance(project_id, str):
            return {}
        if project_id not in loaded:
            try:
                document = await self._sidecar.load(project_id, TASK_METADATA) or {}
            except SidecarError as e:
                logger.error(
                    f"Failed to enrich task metadata: {e}",
                    extra={"project_id": project_id},
                )
                document = {}
            loaded[project_id] = {
                row["id"]: row
                for row in document.get("tasks", [])
                if isinstance(row, dict) and "id" in row
            }
        return dict(loaded[project_id].get(result.metadata.get("task_id"), {}))

    async def _save_sidecar(self, project_id: str, name: str, data: dict[str, Any]) -> None:
        """Write a sidecar document, keeping its recovery history."""
        existing = await self._sidecar.load(project_id, name) or {}
        for key in ("recovery_log", "corruption_recovery"):
            if key in existing:
                data[key] = existing[key]
        await self._sidecar.save(project_id, name, data)

    async def _save_rows(
        self,
        project_id: str,
        name: str,
        model: type[BranchMetadata] | type[TaskMetadata],
        rows_key: str,
        rows: list[dict[str, Any]],
        id_key: str,
    ) -> None:
        existing = await self._sidecar.load(project_id, name) or {}
        merged = _merge_rows(existing.get(rows_key, []) or [], rows, id_key)
        document = model.model_validate(
            {
                **existing,
                rows_key: merged,
                "vectorized": all(r.get("vectorized") is True for r in merged),
                "last_vectorized": utc_now(),
            }
        )
        await self._sidecar.save(project_id, name, document.model_dump())


def create_manager(
    settings: Settings | None = None,
    embedding_service: EmbeddingService | None = None,
) -> SelectiveVectorizationManager:
    """Build a manager wired from settings.

    Args:
        settings: Application settings.
        embedding_service: Embedding service override.

    Returns:
        Uninitialized SelectiveVectorizationManager.
    """
    settings = settings or get_settings()
    detector = CorruptionDetector(settings.corruption.signatures)
    orchestrator = VectorStoreOrchestrator(
        build_strategies(settings),
        self_test=settings.vector_store.self_test,
        self_test_dimension=settings.vector_store.self_test_dimension,
        is_corruption=detector,
    )
    return SelectiveVectorizationManager(
        orchestrator=orchestrator,
        embedding_service=embedding_service or create_embedding_service(settings.embedding),
        sidecar=MetadataSidecarStore(settings.data_dir),
        cache=OperationCache(settings.cache.max_size),
        detector=detector,
    )
