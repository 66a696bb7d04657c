"""
Common Models
=============

API envelopes shared by the admin service.

Version: 0.1.0
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from shared.models.regulatory import utcnow


class ErrorResponse(BaseModel):
    """Error body returned by the admin API."""

    success: bool = False
    error: str
    error_code: str | None = None
    details: dict[str, Any] | None = None
    timestamp: datetime = Field(default_factory=utcnow)


class HealthResponse(BaseModel):
    """Service health with per-component status (store, provider, limiter)."""

    status: str = "healthy"
    service: str
    version: str
    timestamp: datetime = Field(default_factory=utcnow)
    components: dict[str, dict[str, Any]] = Field(default_factory=dict)

    @property
    def is_healthy(self) -> bool:
        return self.status == "healthy"
