"""Corruption recovery.

Recovery resets the active provider's collections, clears the operation
cache, and flips every ``vectorized: true`` flag in the metadata sidecar
to false so the data gets re-vectorized. Each step logs and continues on
failure: recovery runs inside an already failing call path and must not
raise a second exception over the original one. The store returns to
healthy only when the collection reset succeeded. Running it again on an
already recovered store changes nothing.
"""

from typing import Any

from forest_vectors.exceptions import ErrorCode
from forest_vectors.logging_config import get_logger
from forest_vectors.observability.metrics import track_recovery
from forest_vectors.vectorization.cache import OperationCache
from forest_vectors.vectorization.models import RecoveryRecord, utc_now
from forest_vectors.vectorization.sidecar import (
    VECTORIZED_DOCUMENTS,
    MetadataSidecarStore,
)
from forest_vectors.vectorstore.orchestrator import VectorStoreOrchestrator

logger = get_logger(__name__)

ROW_COLLECTIONS = ("branches", "tasks")


def reset_vectorized_flags(name: str, document: dict[str, Any]) -> list[str]:
    """Flip vectorized flags in one sidecar document in place.

    Returns:
        Paths of the flags that were reset, empty if nothing was true.
    """
    reset: list[str] = []
    if document.get("vectorized") is True:
        document["vectorized"] = False
        reset.append(f"{name}.vectorized")

    for key in ROW_COLLECTIONS:
        rows = document.get(key)
        if not isinstance(rows, list):
            continue
        for row in rows:
            if isinstance(row, dict) and row.get("vectorized") is True:
                row["vectorized"] = False
                label = row.get("id") or row.get("name") or "?"
                reset.append(f"{name}.{key}[{label}].vectorized")
    return reset


class CorruptionRecovery:
    """Run the recovery procedure against one orchestrator, cache and sidecar."""

    def __init__(
        self,
        orchestrator: VectorStoreOrchestrator,
        cache: OperationCache,
        sidecar: MetadataSidecarStore,
    ) -> None:
        self._orchestrator = orchestrator
        self._cache = cache
        self._sidecar = sidecar
        self._last_recovery: str | None = None
        self._runs = 0

    @property
    def last_recovery(self) -> str | None:
        """Timestamp of the last completed run in this process."""
        return self._last_recovery

    @property
    def runs(self) -> int:
        return self._runs

    async def recover(self, trigger: str = "manual") -> list[RecoveryRecord]:
        """Run every recovery step. Never raises.

        Args:
            trigger: Operation that detected corruption (for logs and metrics).

        Returns:
            One record per sidecar document whose flags were reset.
        """
        logger.warning(f"Corruption recovery started: {trigger}", extra={"trigger": trigger})
        self._orchestrator.begin_recovery()

        reset_ok = await self._reset_provider()
        self._clear_cache()
        records = await self._reset_sidecars()

        if reset_ok:
            self._orchestrator.mark_recovered()
        else:
            # The corrupt collection is still in place
            self._orchestrator.mark_degraded(f"{trigger}: collection reset failed")
        self._last_recovery = utc_now()
        self._runs += 1
        track_recovery(trigger)
        logger.info(
            "Corruption recovery finished",
            extra={"trigger": trigger, "documents_reset": len(records)},
        )
        return records

    async def _reset_provider(self) -> bool:
        try:
            provider = self._orchestrator.provider
            await provider.reset_collection()
        except Exception as e:
            logger.error(
                f"Recovery could not reset vector collection: {e}",
                extra={"error_code": ErrorCode.RECOVERY_FAILED.value},
            )
            return False
        return True

    def _clear_cache(self) -> None:
        try:
            self._cache.clear()
        except Exception as e:
            logger.error(
                f"Recovery could not clear cache: {e}",
                extra={"error_code": ErrorCode.RECOVERY_FAILED.value},
            )

    async def _reset_sidecars(self) -> list[RecoveryRecord]:
        try:
            projects = await self._sidecar.list_projects()
        except Exception as e:
            logger.error(
                f"Recovery could not list projects: {e}",
                extra={"error_code": ErrorCode.RECOVERY_FAILED.value},
            )
            return []

        records: list[RecoveryRecord] = []
        for project_id in projects:
            for name in VECTORIZED_DOCUMENTS:
                try:
                    record = await self._reset_document(project_id, name)
                except Exception as e:
                    logger.error(
                        f"Recovery could not reset {name}: {e}",
                        extra={
                            "project_id": project_id,
                            "error_code": ErrorCode.RECOVERY_FAILED.value,
                        },
                    )
                    continue
                if record is not None:
                    records.append(record)
        return records

    async def _reset_document(self, project_id: str, name: str) -> RecoveryRecord | None:
        document = await self._sidecar.load(project_id, name)
        if document is None:
            return None

        fields = reset_vectorized_flags(name, document)
        if not fields:
            return None

        record = RecoveryRecord(project_id=project_id, fields_reset=fields)
        log = document.get("recovery_log")
        if not isinstance(log, list):
            log = []
        log.append(record.model_dump())
        document["recovery_log"] = log
        document["corruption_recovery"] = record.timestamp

        await self._sidecar.save(project_id, name, document)
        logger.info(
            f"Reset {len(fields)} vectorized flags in {name}",
            extra={"project_id": project_id},
        )
        return record
