"""Structured embedding prompts for hierarchy entities."""

from forest_vectors.vectorization.types import EntityKind


def build_prompt(
    kind: EntityKind,
    raw: str,
    depth: int = 0,
    sibling_index: int = 0,
    prereq_count: int = 0,
    child_count: int = 0,
    branch: str | None = None,
) -> str:
    """Build the embedding input for one hierarchy node.

    The header carries the node's position in the tree so that entities of
    the same kind embed comparably; the raw text follows on its own line.

    Args:
        kind: Entity kind.
        raw: Human-written text of the node.
        depth: Depth in the hierarchy (goal 0, branch 1, task 2).
        sibling_index: Position among siblings.
        prereq_count: Number of prerequisites.
        child_count: Number of children.
        branch: Owning branch name, if any.

    Returns:
        Prompt text.
    """
    header = [
        f"[{kind.value}]",
        f"depth={depth}",
        f"sibling={sibling_index}",
        f"prereqs={prereq_count}",
        f"children={child_count}",
    ]
    if branch:
        header.append(f"branch={branch}")
    return " ".join(header) + "\n" + raw.strip()
