"""
Route dependencies.
"""

from fastapi import HTTPException, Request, status

from services.regulatory_truth.pipeline import RegulatoryTruthPipeline


def get_pipeline(request: Request) -> RegulatoryTruthPipeline:
    """The pipeline assembled at startup."""
    pipeline: RegulatoryTruthPipeline | None = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Pipeline not initialized",
        )
    return pipeline
