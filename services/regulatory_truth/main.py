"""
Regulatory Truth Service - Main Application
===========================================

FastAPI admin surface for the regulatory truth pipeline: rule lifecycle,
conflict resolution and stage triggers.

Version: 0.1.0
"""

from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from shared.config import settings
from shared.logging import get_logger, setup_logging
from shared.models.common import ErrorResponse, HealthResponse
from services.regulatory_truth import __version__
from services.regulatory_truth.pipeline import RegulatoryTruthPipeline
from services.regulatory_truth.routes import conflicts, pipeline, rules


# Setup logging
setup_logging(
    log_level=settings.log_level.value,
    json_logs=settings.is_production,
    service_name="regulatory-truth",
)

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> Any:
    """Application lifespan manager."""
    logger.info(
        "regulatory_truth_starting",
        environment=settings.environment.value,
        port=settings.port,
    )

    # Tests install their own pipeline before startup
    if getattr(app.state, "pipeline", None) is None:
        try:
            app.state.pipeline = await RegulatoryTruthPipeline.from_settings()
        except Exception as e:
            logger.error("startup_failed", error=str(e))
            raise

    yield

    logger.info("regulatory_truth_shutting_down")
    await app.state.pipeline.close()
    app.state.pipeline = None


app = FastAPI(
    title="Regulatory Truth Service",
    description="Provenance-backed regulatory rules from primary legal sources",
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors.origins_list,
    allow_credentials=settings.cors.allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# Health Check Endpoints
# ============================================================================


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check(request: Request) -> HealthResponse:
    """
    Service health check.

    Returns health status of the store and the extraction provider.
    """
    pipeline_instance: RegulatoryTruthPipeline | None = getattr(request.app.state, "pipeline", None)
    if pipeline_instance is None:
        return HealthResponse(status="unhealthy", service="regulatory-truth", version=__version__)

    components = await pipeline_instance.health()
    # An unconfigured provider only disables extraction
    healthy = all(c.get("status") in ("healthy", "unconfigured") for c in components.values())

    return HealthResponse(
        status="healthy" if healthy else "degraded",
        service="regulatory-truth",
        version=__version__,
        components=components,
    )


@app.get("/", tags=["Health"])
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "service": "Regulatory Truth Service",
        "version": __version__,
        "docs": "/docs",
    }


# ============================================================================
# Include Routers
# ============================================================================

app.include_router(rules.router, prefix="/api/v1/rules", tags=["Rules"])
app.include_router(conflicts.router, prefix="/api/v1/conflicts", tags=["Conflicts"])
app.include_router(pipeline.router, prefix="/api/v1/pipeline", tags=["Pipeline"])


# ============================================================================
# Error Handlers
# ============================================================================


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle HTTP exceptions."""
    logger.warning(
        "http_exception",
        status_code=exc.status_code,
        detail=exc.detail,
        path=request.url.path,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=str(exc.detail), error_code=str(exc.status_code)).model_dump(mode="json"),
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger.error(
        "unhandled_exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(error="Internal server error", error_code="500").model_dump(mode="json"),
    )


# ============================================================================
# Run with Uvicorn
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "services.regulatory_truth.main:app",
        host="0.0.0.0",
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.value.lower(),
    )
