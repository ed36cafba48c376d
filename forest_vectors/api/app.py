"""FastAPI application entry point.

Configures the application with logging, exception handling, health
checks, metrics, and the vectorization manager.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from forest_vectors import __version__
from forest_vectors.api.routes import router
from forest_vectors.config import get_settings
from forest_vectors.exceptions import ErrorCode, ForestVectorError, ProviderInitError
from forest_vectors.logging_config import get_logger, setup_logging
from forest_vectors.observability import MetricsMiddleware, get_metrics
from forest_vectors.observability.metrics import get_metrics_content_type
from forest_vectors.vectorization import SelectiveVectorizationManager, create_manager
from forest_vectors.vectorstore import StoreState

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager.

    Builds and initializes the vectorization manager on startup and closes
    it on shutdown. A store that cannot start leaves the app running but
    not ready.
    """
    settings = get_settings()
    setup_logging(level=settings.log_level)
    logger.info(
        "Starting Forest Vectors",
        extra={
            "version": __version__,
            "environment": settings.environment.value,
        },
    )

    if getattr(app.state, "manager", None) is None:
        app.state.manager = create_manager(settings)
    manager: SelectiveVectorizationManager = app.state.manager
    try:
        await manager.initialize()
    except ProviderInitError as e:
        logger.error(
            f"Vector store unavailable at startup: {e.message}",
            extra={"details": e.details},
        )

    yield

    logger.info("Shutting down Forest Vectors")
    await manager.close()


def create_app(manager: SelectiveVectorizationManager | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        manager: Prebuilt manager (for testing). Built at startup otherwise.

    Returns:
        Configured FastAPI application instance.
    """
    settings = get_settings()

    app = FastAPI(
        title="Forest Vectors",
        description="Resilient multi-backend vector storage and selective vectorization",
        version=__version__,
        lifespan=lifespan,
        debug=settings.debug,
    )
    app.state.manager = manager

    app.add_middleware(MetricsMiddleware)
    app.add_exception_handler(ForestVectorError, forest_exception_handler)

    app.add_api_route("/health", health_check, methods=["GET"], tags=["Health"])
    app.add_api_route("/health/ready", readiness_check, methods=["GET"], tags=["Health"])
    app.add_api_route("/health/live", liveness_check, methods=["GET"], tags=["Health"])
    app.add_api_route("/metrics", metrics_endpoint, methods=["GET"], tags=["Observability"])
    app.include_router(router)

    return app


async def forest_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """Convert ForestVectorError exceptions to structured JSON responses."""
    if not isinstance(exc, ForestVectorError):
        return JSONResponse(
            status_code=500,
            content={
                "error": {
                    "code": ErrorCode.INTERNAL_ERROR.value,
                    "message": str(exc),
                    "details": {},
                }
            },
        )

    logger.error(
        f"Request failed: {exc.message}",
        extra={
            "error_code": exc.code.value,
            "path": request.url.path,
            "details": exc.details,
        },
    )

    return JSONResponse(
        status_code=_get_status_code(exc.code),
        content=exc.to_dict(),
    )


def _get_status_code(error_code: ErrorCode) -> int:
    """Map error code to HTTP status code."""
    if error_code in (ErrorCode.VALIDATION_ERROR, ErrorCode.EMBEDDING_DIMENSION_MISMATCH):
        return 400

    if error_code == ErrorCode.COLLECTION_NOT_FOUND:
        return 404

    if error_code in (
        ErrorCode.PROVIDER_INIT_ERROR,
        ErrorCode.PROVIDER_UNAVAILABLE,
        ErrorCode.CORRUPTION_DETECTED,
    ):
        return 503

    if error_code == ErrorCode.EMBEDDING_SERVICE_ERROR:
        return 502

    return 500


async def health_check() -> dict[str, Any]:
    """Basic health check endpoint.

    Returns:
        Health status with version and timestamp.
    """
    return {
        "status": "healthy",
        "version": __version__,
        "timestamp": datetime.now(UTC).isoformat(),
    }


async def readiness_check(request: Request) -> JSONResponse:
    """Readiness check: ready only while the vector store is healthy."""
    manager: SelectiveVectorizationManager | None = getattr(request.app.state, "manager", None)

    checks: dict[str, str] = {"config": "ok"}
    if manager is None:
        checks["vector_store"] = "not_configured"
    else:
        state = manager.orchestrator.state
        if state != StoreState.HEALTHY:
            checks["vector_store"] = state.value
        elif not await manager.orchestrator.ping():
            checks["vector_store"] = "unreachable"
        else:
            checks["vector_store"] = "ok"

    all_ok = all(v == "ok" for v in checks.values())
    return JSONResponse(
        status_code=200 if all_ok else 503,
        content={
            "status": "ready" if all_ok else "not_ready",
            "checks": checks,
            "timestamp": datetime.now(UTC).isoformat(),
        },
    )


async def liveness_check() -> dict[str, str]:
    """Liveness check."""
    return {"status": "alive"}


async def metrics_endpoint() -> Response:
    """Prometheus exposition."""
    return Response(content=get_metrics(), media_type=get_metrics_content_type())


app = create_app()
