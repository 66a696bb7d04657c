"""
Agents
======

Extraction/composition provider contract, the LLM-backed provider and the
extraction stage that turns evidence into draft rules.
"""

from services.regulatory_truth.agents.llm_provider import LLMExtractionProvider
from services.regulatory_truth.agents.provider import (
    CompositionResult,
    DraftPointer,
    DraftRule,
    ExtractedFact,
    ExtractedQuote,
    ExtractionProvider,
    RunMeta,
    SchemaHint,
)
from services.regulatory_truth.agents.stage import ExtractionOutcome, ExtractionStage

__all__ = [
    "ExtractionProvider",
    "ExtractedFact",
    "ExtractedQuote",
    "DraftRule",
    "DraftPointer",
    "CompositionResult",
    "SchemaHint",
    "RunMeta",
    "LLMExtractionProvider",
    "ExtractionStage",
    "ExtractionOutcome",
]
