"""
LLM-Backed Provider
===================

Default ExtractionProvider backed by ``shared.llm``. The model is asked
for JSON matching the provider contract; anything that fails validation
becomes a typed provider error.

Version: 0.1.0
"""

import json
from collections.abc import Sequence
from typing import Any

import anthropic
from pydantic import BaseModel, Field, ValidationError

from shared.llm import LLMOutputError, LLMProvider, get_llm_provider
from shared.logging import get_logger
from shared.models import CandidateFact
from services.regulatory_truth.agents.provider import (
    CompositionResult,
    DraftPointer,
    DraftRule,
    ExtractedFact,
    ExtractionProvider,
    RunMeta,
    SchemaHint,
)
from services.regulatory_truth.errors import CompositionError, ExtractionError

logger = get_logger(__name__)

MAX_EVIDENCE_CHARS = 60_000

EXTRACTOR_SYSTEM_PROMPT = """You extract verifiable regulatory facts (tax rates, thresholds, deadlines, amounts) from official Croatian and EU sources.

Rules:
- Every fact must be backed by at least one quote copied VERBATIM from the text. Never paraphrase quotes.
- concept_slug is a stable kebab-case key, e.g. "pdv-standard-rate", "pausal-revenue-threshold".
- confidence is your certainty in [0, 1].
- Return {"facts": [...]}; return {"facts": []} only if the text contains no regulatory facts."""

EXTRACTOR_PROMPT = """Source URL: {url}
Content type: {content_type}
Source authority: {authority}
Domain hint: {domain}

Each fact: {{"value": str, "value_type": str, "concept_slug": str, "domain": str|null, "confidence": float,
"quotes": [{{"exact_quote": str, "article_number": str|null, "law_reference": str|null}}]}}

TEXT:
{text}"""

COMPOSER_SYSTEM_PROMPT = """You compose candidate regulatory facts about ONE concept into a single rule proposal.

Rules:
- Pick the value best supported by the quotes; do not invent values.
- effective_from / effective_until are ISO dates or null when the text does not state them.
- source_pointers reuse the candidate quotes verbatim, with their evidence_id."""

COMPOSER_PROMPT = """Source authority: {authority}

Candidate facts:
{facts}

Return {{"draft_rule": {{"concept_slug": str, "value": str, "value_type": str, "authority_level": str|null,
"effective_from": str|null, "effective_until": str|null, "confidence": float}},
"source_pointers": [{{"evidence_id": str, "exact_quote": str, "article_number": str|null, "law_reference": str|null}}]}}"""


class _ExtractionPayload(BaseModel):
    facts: list[ExtractedFact] = Field(default_factory=list)


class _CompositionPayload(BaseModel):
    draft_rule: DraftRule
    source_pointers: list[DraftPointer] = Field(default_factory=list)


class LLMExtractionProvider(ExtractionProvider):
    """Extraction and composition through the configured LLM."""

    name = "llm"

    def __init__(self, llm: LLMProvider | None = None) -> None:
        self._llm = llm or get_llm_provider()

    async def extract(self, evidence_text: str, schema_hint: SchemaHint) -> list[ExtractedFact]:
        if len(evidence_text) > MAX_EVIDENCE_CHARS:
            logger.info("evidence_text_truncated", url=schema_hint.url, chars=len(evidence_text))

        prompt = EXTRACTOR_PROMPT.format(
            url=schema_hint.url,
            content_type=schema_hint.content_type,
            authority=schema_hint.authority_level.value,
            domain=schema_hint.domain or "any",
            text=evidence_text[:MAX_EVIDENCE_CHARS],
        )

        try:
            raw = await self._llm.generate_json(prompt, system_prompt=EXTRACTOR_SYSTEM_PROMPT)
            payload = _ExtractionPayload.model_validate(raw)
        except (LLMOutputError, ValidationError) as e:
            raise ExtractionError(f"Invalid extraction payload: {e}") from e
        except anthropic.APIError as e:
            raise ExtractionError(f"Extraction provider failed: {e}") from e

        logger.debug("llm_extraction_completed", url=schema_hint.url, facts=len(payload.facts))
        return payload.facts

    async def compose(self, candidate_facts: Sequence[CandidateFact], run_meta: RunMeta) -> CompositionResult:
        facts = [
            {
                "id": f.id,
                "value": f.value,
                "value_type": f.value_type,
                "concept_slug": f.suggested_concept_slug,
                "confidence": f.confidence,
                "quotes": [q.model_dump(mode="json", exclude={"match_type"}) for q in f.grounding_quotes],
            }
            for f in candidate_facts
        ]
        prompt = COMPOSER_PROMPT.format(
            authority=run_meta.authority_level.value,
            facts=json.dumps(facts, ensure_ascii=False, indent=2),
        )

        try:
            raw = await self._llm.generate_json(prompt, system_prompt=COMPOSER_SYSTEM_PROMPT)
            payload = _CompositionPayload.model_validate(raw)
        except (LLMOutputError, ValidationError) as e:
            raise CompositionError(f"Invalid composition payload: {e}") from e
        except anthropic.APIError as e:
            raise CompositionError(f"Composition provider failed: {e}") from e

        return CompositionResult(
            draft_rule=payload.draft_rule,
            source_pointers=payload.source_pointers,
            agent_run_id=run_meta.agent_run_id,
        )

    async def health_check(self) -> dict[str, Any]:
        health = await self._llm.health_check()
        return {**health, "provider": self.name, "model": self._llm.model}
