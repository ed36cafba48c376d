"""Metadata sidecar store.

Per-project JSON documents kept outside the vector backend for fast,
non-semantic access::

    <data_dir>/projects/<project_id>/<name>.json
"""

import asyncio
import json
import os
import tempfile
from pathlib import Path
from typing import Any

from forest_vectors.exceptions import SidecarError
from forest_vectors.logging_config import get_logger

logger = get_logger(__name__)

GOAL_METADATA = "goal_metadata"
BRANCH_METADATA = "branch_metadata"
TASK_METADATA = "task_metadata"
HTA_DOCUMENT = "hta"
LEARNING_HISTORY = "learning_history"

# Documents whose vectorized flags recovery resets
VECTORIZED_DOCUMENTS = (GOAL_METADATA, BRANCH_METADATA, TASK_METADATA)


class MetadataSidecarStore:
    """Read and write per-project JSON documents."""

    def __init__(self, data_dir: Path) -> None:
        """Initialize the store.

        Args:
            data_dir: Root data directory.
        """
        self._root = Path(data_dir) / "projects"

    @property
    def root(self) -> Path:
        """Directory holding one subdirectory per project."""
        return self._root

    def path_for(self, project_id: str, name: str) -> Path:
        """File path of a project document.

        Raises:
            SidecarError: If the path would leave the project's own directory.
        """
        project_dir = self._root / project_id
        path = project_dir / f"{name}.json"
        resolved_dir = project_dir.resolve()
        if resolved_dir.parent != self._root.resolve() or path.resolve().parent != resolved_dir:
            raise SidecarError(
                f"Invalid sidecar location for project {project_id!r}",
                details={"project_id": project_id, "name": name},
            )
        return path

    async def ensure_root(self) -> None:
        """Create the projects directory."""
        await asyncio.to_thread(self._root.mkdir, parents=True, exist_ok=True)

    async def load(self, project_id: str, name: str) -> dict[str, Any] | None:
        """Load a document, or None when it does not exist.

        Raises:
            SidecarError: If the file exists but is not a JSON object.
        """
        return await asyncio.to_thread(self._read, self.path_for(project_id, name))

    async def save(self, project_id: str, name: str, data: dict[str, Any]) -> None:
        """Atomically replace a document.

        Raises:
            SidecarError: If the file cannot be written.
        """
        path = self.path_for(project_id, name)
        try:
            payload = json.dumps(data, ensure_ascii=False, indent=2, default=str)
            await asyncio.to_thread(self._write, path, payload)
        except (OSError, TypeError, ValueError) as e:
            raise SidecarError(
                f"Failed to write {name} for {project_id}: {e}",
                details={"path": str(path)},
            ) from e
        logger.debug(f"Saved {name}", extra={"project_id": project_id})

    async def list_projects(self) -> list[str]:
        """Project ids that have a sidecar directory."""

        def _scan() -> list[str]:
            if not self._root.is_dir():
                return []
            return sorted(p.name for p in self._root.iterdir() if p.is_dir())

        return await asyncio.to_thread(_scan)

    def _read(self, path: Path) -> dict[str, Any] | None:
        if not path.exists():
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise SidecarError(
                f"Unreadable sidecar document: {path.name}: {e}",
                details={"path": str(path)},
            ) from e
        if not isinstance(data, dict):
            raise SidecarError(
                f"Sidecar document is not an object: {path.name}",
                details={"path": str(path)},
            )
        return data

    def _write(self, path: Path, payload: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.stem}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
