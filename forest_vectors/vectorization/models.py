"""Vectorization data models.

Entity models accept both the camelCase keys written by the task planner
(``strategicBranches``, ``learningObjective``, ...) and snake_case names.
Unknown keys are preserved.
"""

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, SerializerFunctionWrapHandler, model_serializer

from forest_vectors.vectorstore.models import QueryResult


def utc_now() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(UTC).isoformat()


class ForestModel(BaseModel):
    """Base for planner-facing models."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")


# ----- entities --------------------------------------------------------


class Task(ForestModel):
    """A leaf task of the hierarchy."""

    id: str = Field(description="Task identifier")
    title: str = Field(default="", description="Task title")
    description: str = Field(default="", description="Task description")
    branch: str | None = Field(default=None, description="Owning branch name")
    learning_objective: str | None = Field(default=None, alias="learningObjective")
    skill_tags: list[str] = Field(default_factory=list, alias="skillTags")
    completed: bool = Field(default=False)
    priority: Any = Field(default=None)
    difficulty: int | float | str | None = Field(default=None)
    duration: int | float | str | None = Field(default=None)
    prerequisites: list[Any] = Field(default_factory=list)
    progress: Any = Field(default=None)


class Branch(ForestModel):
    """A strategic branch under the goal."""

    name: str = Field(description="Branch name, unique within a project")
    description: str = Field(default="", description="Branch description")
    priority: Any = Field(default=None)
    strategic_importance: Any = Field(default=None, alias="strategicImportance")
    tasks: list[Any] = Field(default_factory=list, description="Tasks under the branch")


class Goal(ForestModel):
    """A project's top-level goal."""

    goal: str = Field(default="", description="Goal statement")
    complexity: Any = Field(default=None)
    domain: str | None = Field(default=None)
    estimated_duration: Any = Field(default=None, alias="estimatedDuration")
    created_at: str | None = Field(default=None)
    strategic_branches: list[Branch] = Field(default_factory=list, alias="strategicBranches")


class LearningEvent(ForestModel):
    """A recorded learning event."""

    id: str = Field(description="Event identifier")
    type: str = Field(default="", description="Event type")
    description: str = Field(default="")
    outcome: str = Field(default="")
    task_id: str | None = Field(default=None, alias="taskId")
    insights: Any = Field(default=None)
    breakthrough_level: Any = Field(default=None, alias="breakthroughLevel")
    timestamp: str | None = Field(default=None)


class BreakthroughInsight(ForestModel):
    """A breakthrough insight worth surfacing across projects."""

    id: str = Field(description="Insight identifier")
    description: str = Field(default="")
    context: str = Field(default="")
    impact: str = Field(default="")
    impact_level: Any = Field(default=None, alias="impactLevel")
    related_tasks: list[Any] = Field(default_factory=list, alias="relatedTasks")
    knowledge_domain: str | None = Field(default=None, alias="knowledgeDomain")
    timestamp: str | None = Field(default=None)


class HTATree(Goal):
    """The stored hierarchy document (``hta.json``)."""

    frontier_nodes: list[Task] = Field(default_factory=list, alias="frontierNodes")


class LearningHistory(ForestModel):
    """The stored learning history document (``learning_history.json``)."""

    events: list[LearningEvent] = Field(default_factory=list)


# ----- sidecar documents -----------------------------------------------


class RecoveryRecord(BaseModel):
    """Stamp left on a project's sidecar when recovery reset its flags.

    Attributes:
        project_id: Project whose rows were reset.
        timestamp: When recovery ran.
        fields_reset: ``document.field`` paths flipped to false.
    """

    project_id: str = Field(description="Project identifier")
    timestamp: str = Field(default_factory=utc_now, description="Recovery time")
    fields_reset: list[str] = Field(default_factory=list, description="Flags reset")


class SidecarDocument(ForestModel):
    """Fields every sidecar document carries."""

    vectorized: bool = Field(default=False)
    last_vectorized: str | None = Field(default=None)
    corruption_recovery: str | None = Field(default=None)
    recovery_log: list[RecoveryRecord] = Field(default_factory=list)


class GoalMetadata(SidecarDocument):
    """``goal_metadata`` sidecar document."""

    id: str = Field(description="Project identifier")
    goal: str = Field(default="")
    complexity: Any = Field(default=None)
    created_at: str | None = Field(default=None)


class BranchRow(ForestModel):
    """One branch row in ``branch_metadata``."""

    name: str
    priority: Any = None
    task_count: int = 0
    vectorized: bool = False


class BranchMetadata(SidecarDocument):
    """``branch_metadata`` sidecar document."""

    branches: list[BranchRow] = Field(default_factory=list)


class TaskRow(ForestModel):
    """One task row in ``task_metadata``; only fast-changing scalar fields."""

    id: str
    completed: bool = False
    priority: Any = None
    difficulty: int | float | str | None = None
    duration: int | float | str | None = None
    prerequisites: list[Any] = Field(default_factory=list)
    progress: Any = None
    vectorized: bool = False


class TaskMetadata(SidecarDocument):
    """``task_metadata`` sidecar document."""

    tasks: list[TaskRow] = Field(default_factory=list)


# ----- operation results -----------------------------------------------


class VectorizationOutcome(BaseModel):
    """Result of a single vectorize call."""

    vectorized: bool = Field(description="Whether the record was written")
    type: str | None = Field(default=None, description="Vectorization type label")
    id: str | None = Field(default=None, description="Vector id written")
    degraded: bool = Field(
        default=False,
        description="True when corruption recovery replaced the write",
    )


class EnrichedResult(QueryResult):
    """Query hit joined with its fast-access sidecar row."""

    enriched_metadata: dict[str, Any] = Field(default_factory=dict)


class BulkTypeCounts(BaseModel):
    """Per-kind counts of a bulk run.

    ``learning_events`` only appears in dumps when history was vectorized.
    """

    goals: int = 0
    branches: int = 0
    tasks: int = 0
    learning_events: int = 0

    @model_serializer(mode="wrap")
    def omit_empty_history(self, handler: SerializerFunctionWrapHandler) -> dict[str, Any]:
        data = handler(self)
        if not self.learning_events:
            data.pop("learning_events", None)
        return data


class BulkVectorizationResult(BaseModel):
    """Summary of :meth:`bulk_vectorize_project`."""

    vectorized: int = Field(default=0, description="Records written")
    errors: int = Field(default=0, description="Stages that failed")
    types: BulkTypeCounts = Field(default_factory=BulkTypeCounts)


class CacheStats(BaseModel):
    """Operation cache counters."""

    size: int
    max_size: int
    hits: int
    misses: int
    hit_rate: float


class VectorizationStats(BaseModel):
    """Engine statistics."""

    provider: str
    fallback_used: bool
    state: str
    vector_store: dict[str, Any] = Field(default_factory=dict)
    cache: CacheStats
    vectorization_types: dict[str, dict[str, Any]] = Field(default_factory=dict)


class RecoveryStatus(BaseModel):
    """Corruption recovery report."""

    last_recovery: str | None = None
    recovered_projects: list[dict[str, Any]] = Field(default_factory=list)
    corruption_detected: bool = False
    vector_store_status: str = "unknown"
