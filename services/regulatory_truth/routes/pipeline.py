"""
Pipeline Routes
===============

Trigger pipeline stages and read watchdog alerts. Sentinel and extraction
runs are long, so they are queued as background tasks.

Version: 0.1.0
"""

from datetime import timedelta

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from shared.logging import get_logger
from shared.models import AlertSeverity, WatchdogAlert, utcnow
from services.regulatory_truth.pipeline import RegulatoryTruthPipeline
from services.regulatory_truth.routes.dependencies import get_pipeline

logger = get_logger(__name__)
router = APIRouter()


class SentinelRequest(BaseModel):
    """Request to scan due items."""

    source_id: str | None = None
    limit: int | None = Field(default=None, ge=1, le=10_000)


class ExtractionRequest(BaseModel):
    """Request to extract evidence."""

    evidence_ids: list[str] | None = Field(default=None, description="Default: everything not yet extracted")
    limit: int | None = Field(default=None, ge=1, le=10_000)


class QueuedResponse(BaseModel):
    """A stage queued in the background."""

    queued: bool = True
    stage: str
    message: str


class SeedResponse(BaseModel):
    """Outcome of seeding the source catalogue."""

    created: list[str]
    existing: list[str]
    entry_items_created: int


async def _run_sentinel(pipeline: RegulatoryTruthPipeline, request: SentinelRequest) -> None:
    report = await pipeline.run_sentinel(source_id=request.source_id, limit=request.limit)
    logger.info(
        "background_sentinel_completed",
        scanned=report.batch.total,
        failed=report.batch.failed,
        new_evidence=len(report.evidence_ids),
    )


async def _run_extraction(pipeline: RegulatoryTruthPipeline, request: ExtractionRequest) -> None:
    batch = await pipeline.run_extraction(request.evidence_ids, limit=request.limit)
    logger.info("background_extraction_completed", evidence=batch.total, failed=batch.failed)


@router.post("/seed", response_model=SeedResponse)
async def seed_sources(pipeline: RegulatoryTruthPipeline = Depends(get_pipeline)) -> SeedResponse:
    """Seed the built-in source catalogue (idempotent)."""
    report = await pipeline.seed()
    return SeedResponse(
        created=report.created,
        existing=report.existing,
        entry_items_created=report.entry_items_created,
    )


@router.post("/sentinel", response_model=QueuedResponse, status_code=status.HTTP_202_ACCEPTED)
async def run_sentinel(
    request: SentinelRequest,
    background_tasks: BackgroundTasks,
    pipeline: RegulatoryTruthPipeline = Depends(get_pipeline),
) -> QueuedResponse:
    """Queue a sentinel run."""
    if request.source_id is not None and await pipeline.regulatory_store.get_source(request.source_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Source {request.source_id} not found")

    background_tasks.add_task(_run_sentinel, pipeline, request)
    return QueuedResponse(stage="sentinel", message="Sentinel run queued")


@router.post("/extract", response_model=QueuedResponse, status_code=status.HTTP_202_ACCEPTED)
async def run_extraction(
    request: ExtractionRequest,
    background_tasks: BackgroundTasks,
    pipeline: RegulatoryTruthPipeline = Depends(get_pipeline),
) -> QueuedResponse:
    """Queue an extraction run."""
    if pipeline.extraction is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="No extraction provider configured",
        )

    background_tasks.add_task(_run_extraction, pipeline, request)
    return QueuedResponse(stage="extraction", message="Extraction run queued")


@router.get("/alerts", response_model=list[WatchdogAlert])
async def list_alerts(
    hours: int = Query(default=24, ge=1, le=24 * 30),
    severity: AlertSeverity | None = Query(default=None),
    pipeline: RegulatoryTruthPipeline = Depends(get_pipeline),
) -> list[WatchdogAlert]:
    """Watchdog alerts raised in the last ``hours``."""
    return await pipeline.rule_store.list_alerts(utcnow() - timedelta(hours=hours), severity=severity)
