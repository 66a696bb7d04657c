"""
Rule Routes
===========

Read rules and drive their lifecycle. Every transition goes through the
lifecycle manager, so the provenance and publication gates always apply.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from shared.logging import get_logger
from shared.models import MatchType, RegulatoryRule, RuleStatus, SourcePointer
from services.regulatory_truth.lifecycle import BlockReason, TransitionResult
from services.regulatory_truth.pipeline import RegulatoryTruthPipeline
from services.regulatory_truth.routes.dependencies import get_pipeline

logger = get_logger(__name__)
router = APIRouter()


# ============================================================================
# Models
# ============================================================================


class RuleDetail(BaseModel):
    """A rule with its resolved source pointers."""

    rule: RegulatoryRule
    source_pointers: list[SourcePointer] = Field(default_factory=list)


class TransitionRequest(BaseModel):
    """Request to move a rule to another status."""

    target: RuleStatus
    actor: str = Field(..., min_length=1, max_length=100)
    reason: str | None = Field(default=None, max_length=2000)


class PointerCheck(BaseModel):
    """Re-verification result of one source pointer."""

    pointer_id: str
    evidence_id: str
    found: bool
    match_type: MatchType
    reason: str | None = None


class TransitionResponse(BaseModel):
    """Outcome of a transition request."""

    rule_id: str
    success: bool
    from_status: RuleStatus | None = None
    to_status: RuleStatus
    block_reason: str | None = None
    message: str | None = None
    pointer_checks: list[PointerCheck] = Field(default_factory=list)

    @classmethod
    def from_result(cls, result: TransitionResult) -> "TransitionResponse":
        return cls(
            rule_id=result.rule_id,
            success=result.success,
            from_status=result.from_status,
            to_status=result.to_status,
            block_reason=result.block_reason.value if result.block_reason else None,
            message=result.message,
            pointer_checks=[
                PointerCheck(
                    pointer_id=c.pointer_id,
                    evidence_id=c.evidence_id,
                    found=c.found,
                    match_type=c.match_type,
                    reason=c.reason,
                )
                for c in result.pointer_checks
            ],
        )


class PublishRequest(BaseModel):
    """Request to publish a batch of rules."""

    rule_ids: list[str] = Field(..., min_length=1, max_length=500)
    actor: str = Field(default="api", min_length=1, max_length=100)


class PublishResponse(BaseModel):
    """Per-rule outcome of a batch publish."""

    published: list[str]
    blocked: list[TransitionResponse]


# ============================================================================
# Endpoints
# ============================================================================


@router.get("", response_model=list[RegulatoryRule])
async def list_rules(
    rule_status: list[RuleStatus] | None = Query(default=None, alias="status"),
    concept_slug: str | None = Query(default=None),
    pipeline: RegulatoryTruthPipeline = Depends(get_pipeline),
) -> list[RegulatoryRule]:
    """List rules, optionally filtered by status and concept."""
    return await pipeline.rule_store.list_rules(statuses=rule_status, concept_slug=concept_slug)


@router.get("/{rule_id}", response_model=RuleDetail)
async def get_rule(
    rule_id: str,
    pipeline: RegulatoryTruthPipeline = Depends(get_pipeline),
) -> RuleDetail:
    """Get a rule and its source pointers."""
    rule = await pipeline.rule_store.get_rule(rule_id)
    if rule is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Rule {rule_id} not found")

    pointers = await pipeline.rule_store.get_source_pointers(rule.source_pointer_ids)
    return RuleDetail(rule=rule, source_pointers=pointers)


@router.post("/publish", response_model=PublishResponse)
async def publish_rules(
    request: PublishRequest,
    pipeline: RegulatoryTruthPipeline = Depends(get_pipeline),
) -> PublishResponse:
    """Publish rules; each rule passes or fails the gate on its own."""
    report = await pipeline.publish(request.rule_ids, actor=request.actor)
    return PublishResponse(
        published=report.published,
        blocked=[TransitionResponse.from_result(r) for r in report.blocked],
    )


@router.post("/{rule_id}/transition", response_model=TransitionResponse)
async def transition_rule(
    rule_id: str,
    request: TransitionRequest,
    pipeline: RegulatoryTruthPipeline = Depends(get_pipeline),
) -> TransitionResponse:
    """
    Request a status transition.

    Blocked transitions return 200 with ``success: false`` and the block
    reason; only an unknown rule is a 404.
    """
    result = await pipeline.lifecycle.transition(rule_id, request.target, request.actor, request.reason)
    if result.block_reason == BlockReason.RULE_NOT_FOUND:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=result.message)

    logger.info(
        "rule_transition_requested",
        rule_id=rule_id,
        target=request.target.value,
        actor=request.actor,
        success=result.success,
    )
    return TransitionResponse.from_result(result)
