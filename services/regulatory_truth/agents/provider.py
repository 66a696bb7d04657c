"""
Extraction / Composition Provider Contract
==========================================

The pipeline treats extraction and composition as opaque external
services. It depends only on the typed payloads below; providers must
surface failures as ExtractionError / CompositionError, never as silent
empty results.

Version: 0.1.0
"""

from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from pydantic import BaseModel, Field

from shared.models import AuthorityLevel, CandidateFact


class ExtractedQuote(BaseModel):
    """A quote grounding an extracted value."""

    exact_quote: str = Field(..., min_length=1)
    article_number: str | None = None
    law_reference: str | None = None


class ExtractedFact(BaseModel):
    """One fact returned by ``extract``."""

    value: str = Field(..., min_length=1)
    value_type: str = "text"
    concept_slug: str = Field(..., min_length=1, description="kebab-case concept key, e.g. pdv-standard-rate")
    domain: str | None = None
    confidence: float = Field(..., ge=0.0, le=1.0)
    quotes: list[ExtractedQuote] = Field(..., min_length=1)


class DraftPointer(BaseModel):
    """A source pointer proposed by ``compose``."""

    evidence_id: str
    exact_quote: str = Field(..., min_length=1)
    article_number: str | None = None
    law_reference: str | None = None


class DraftRule(BaseModel):
    """A rule proposal returned by ``compose``."""

    concept_slug: str = Field(..., min_length=1)
    value: str = Field(..., min_length=1)
    value_type: str = "text"
    authority_level: AuthorityLevel | None = None
    effective_from: date | None = None
    effective_until: date | None = None
    confidence: float = Field(..., ge=0.0, le=1.0)


class CompositionResult(BaseModel):
    """Output of ``compose``."""

    draft_rule: DraftRule
    source_pointers: list[DraftPointer] = Field(default_factory=list)
    agent_run_id: str | None = Field(default=None, description="Provider-side run id, if any")


@dataclass(frozen=True)
class SchemaHint:
    """Context passed to ``extract`` about the evidence being read."""

    url: str
    content_type: str
    authority_level: AuthorityLevel
    domain: str | None = None


@dataclass(frozen=True)
class RunMeta:
    """Context passed to ``compose``."""

    agent_run_id: str
    authority_level: AuthorityLevel
    evidence_ids: list[str] = field(default_factory=list)


class ExtractionProvider(ABC):
    """Turns evidence text into candidate facts and facts into rule drafts."""

    name: str = "provider"

    @abstractmethod
    async def extract(self, evidence_text: str, schema_hint: SchemaHint) -> list[ExtractedFact]:
        """
        Extract candidate facts from evidence text.

        Raises:
            ExtractionError: Provider failure or invalid payload
        """
        ...

    @abstractmethod
    async def compose(self, candidate_facts: Sequence[CandidateFact], run_meta: RunMeta) -> CompositionResult:
        """
        Compose candidate facts for one concept into a draft rule.

        Raises:
            CompositionError: Provider failure or invalid payload
        """
        ...

    async def health_check(self) -> dict[str, Any]:
        """Provider health; remote providers override this."""
        return {"status": "healthy", "provider": self.name}
