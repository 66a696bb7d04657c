"""
Conflict Routes
===============

Inspect structural conflicts and resolve them, either by the arbiter or
with a reviewer-chosen winner.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from shared.logging import get_logger
from shared.models import ConflictStatus, RegulatoryConflict
from services.regulatory_truth.conflicts import ResolutionOutcome
from services.regulatory_truth.pipeline import RegulatoryTruthPipeline
from services.regulatory_truth.routes.dependencies import get_pipeline

logger = get_logger(__name__)
router = APIRouter()


class ResolveRequest(BaseModel):
    """Request to resolve one conflict."""

    winner_id: str | None = Field(default=None, description="Reviewer's choice; the arbiter decides when omitted")
    actor: str = Field(default="api", min_length=1, max_length=100)


class ResolutionResponse(BaseModel):
    """Outcome of a resolution attempt."""

    conflict_id: str
    resolved: bool
    winner_id: str | None = None
    loser_id: str | None = None
    strategy: str | None = None
    message: str | None = None

    @classmethod
    def from_outcome(cls, outcome: ResolutionOutcome) -> "ResolutionResponse":
        return cls(
            conflict_id=outcome.conflict_id,
            resolved=outcome.resolved,
            winner_id=outcome.winner_id,
            loser_id=outcome.loser_id,
            strategy=outcome.strategy,
            message=outcome.message,
        )


@router.get("", response_model=list[RegulatoryConflict])
async def list_conflicts(
    conflict_status: ConflictStatus | None = Query(default=ConflictStatus.OPEN, alias="status"),
    rule_id: str | None = Query(default=None),
    pipeline: RegulatoryTruthPipeline = Depends(get_pipeline),
) -> list[RegulatoryConflict]:
    """List conflicts (OPEN by default)."""
    return await pipeline.rule_store.list_conflicts(conflict_status, rule_id=rule_id)


@router.get("/{conflict_id}", response_model=RegulatoryConflict)
async def get_conflict(
    conflict_id: str,
    pipeline: RegulatoryTruthPipeline = Depends(get_pipeline),
) -> RegulatoryConflict:
    """Get a conflict by id."""
    conflict = await pipeline.rule_store.get_conflict(conflict_id)
    if conflict is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Conflict {conflict_id} not found")
    return conflict


@router.post("/resolve-open", response_model=list[ResolutionResponse])
async def resolve_open_conflicts(
    pipeline: RegulatoryTruthPipeline = Depends(get_pipeline),
) -> list[ResolutionResponse]:
    """Run the arbiter over every open conflict."""
    outcomes = await pipeline.resolve_conflicts()
    return [ResolutionResponse.from_outcome(o) for o in outcomes]


@router.post("/{conflict_id}/resolve", response_model=ResolutionResponse)
async def resolve_conflict(
    conflict_id: str,
    request: ResolveRequest,
    pipeline: RegulatoryTruthPipeline = Depends(get_pipeline),
) -> ResolutionResponse:
    """Resolve one conflict."""
    if await pipeline.rule_store.get_conflict(conflict_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Conflict {conflict_id} not found")

    outcome = await pipeline.resolver.resolve(conflict_id, winner_id=request.winner_id, actor=request.actor)
    logger.info(
        "conflict_resolution_requested",
        conflict_id=conflict_id,
        actor=request.actor,
        resolved=outcome.resolved,
    )
    return ResolutionResponse.from_outcome(outcome)
