"""Vectorization types and vector id conventions."""

from enum import Enum

# Scalar fields that change often; kept in the metadata sidecar, never embedded
JSON_ONLY_FIELDS = (
    "id",
    "created_at",
    "updated_at",
    "completed",
    "priority",
    "difficulty",
    "duration",
    "prerequisites",
    "progress",
    "status",
    "path",
    "configuration",
)


class EntityKind(str, Enum):
    """Entity kind segment of a vector id."""

    GOAL = "goal"
    BRANCH = "branch"
    TASK = "task"
    LEARNING = "learning"
    BREAKTHROUGH = "breakthrough"
    CONTEXT = "context"


class VectorizationType(Enum):
    """What gets embedded, at which size, and whether queries over it are cached."""

    GOAL = ("PROJECT_GOAL", EntityKind.GOAL, 1536, True, 1)
    BRANCH = ("HTA_BRANCH", EntityKind.BRANCH, 1536, True, 2)
    TASK = ("TASK_CONTENT", EntityKind.TASK, 1536, True, 3)
    LEARNING_EVENT = ("LEARNING_HISTORY", EntityKind.LEARNING, 768, False, 4)
    USER_CONTEXT = ("USER_CONTEXT", EntityKind.CONTEXT, 384, False, 5)
    BREAKTHROUGH = ("BREAKTHROUGH_INSIGHT", EntityKind.BREAKTHROUGH, 1536, True, 1)

    def __init__(
        self,
        label: str,
        kind: EntityKind,
        dimension: int,
        cache_eligible: bool,
        priority: int,
    ) -> None:
        self.label = label
        self.kind = kind
        self.dimension = dimension
        self.cache_eligible = cache_eligible
        self.priority = priority

    @classmethod
    def from_label(cls, label: str) -> "VectorizationType":
        """Look up a type by the label stored in vector metadata."""
        for member in cls:
            if member.label == label:
                return member
        raise ValueError(f"Unknown vectorization type: {label}")

    def describe(self) -> dict[str, object]:
        """Reportable summary used in statistics."""
        return {
            "priority": self.priority,
            "dimension": self.dimension,
            "cache": self.cache_eligible,
        }


GOAL_LOCAL_ID = "primary"


def make_vector_id(project_id: str, kind: EntityKind, local_id: str) -> str:
    """Compose ``{projectId}:{entityKind}:{localId}``."""
    return f"{project_id}:{kind.value}:{local_id}"


def namespace_prefix(project_id: str, kind: EntityKind | None = None) -> str:
    """Id prefix selecting a project's vectors, optionally of one kind."""
    if kind is None:
        return f"{project_id}:"
    return f"{project_id}:{kind.value}:"
