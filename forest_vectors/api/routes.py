"""API routes for vectorization status and maintenance."""

from typing import Any

from fastapi import APIRouter, HTTPException, Request, status

from forest_vectors.logging_config import get_logger
from forest_vectors.vectorization import (
    BulkVectorizationResult,
    RecoveryStatus,
    SelectiveVectorizationManager,
    VectorizationStats,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/api/v1", tags=["Vectorization"])


def get_manager(request: Request) -> SelectiveVectorizationManager:
    """Manager attached to the application, or 503 when absent."""
    manager = getattr(request.app.state, "manager", None)
    if manager is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"error": "Vectorization manager not configured"},
        )
    return manager


@router.get("/vectorization/stats", response_model=VectorizationStats)
async def vectorization_stats(request: Request) -> VectorizationStats:
    """Provider, cache and vectorization type statistics."""
    return await get_manager(request).get_vectorization_stats()


@router.get("/vectorization/recovery", response_model=RecoveryStatus)
async def recovery_status(request: Request) -> RecoveryStatus:
    """Corruption recovery history and store status."""
    return await get_manager(request).get_corruption_recovery_status()


@router.post("/vectorization/cache/clear")
async def clear_cache(request: Request) -> dict[str, Any]:
    """Drop cached query results."""
    get_manager(request).clear_vector_cache()
    return {"cleared": True}


@router.post(
    "/projects/{project_id}/vectorize",
    response_model=BulkVectorizationResult,
)
async def bulk_vectorize(project_id: str, request: Request) -> BulkVectorizationResult:
    """Vectorize a project's stored hierarchy and learning history."""
    logger.info("Bulk vectorization requested", extra={"project_id": project_id})
    return await get_manager(request).bulk_vectorize_project(project_id)
