"""
Shared Models
=============

Pydantic models shared by the pipeline, its CLI, its admin API and the
downstream consumers that read published rules.

Models:
- Monitoring (RegulatorySource, DiscoveredItem)
- Evidence (Evidence, EvidenceArtifact)
- Extraction (CandidateFact, GroundingQuote, SourcePointer, AgentRun)
- Rules (RegulatoryRule, RegulatoryConflict)
- Observability (WatchdogAlert, SoftFailRecord)
- Common (ErrorResponse, HealthResponse)
"""

from shared.models.common import ErrorResponse, HealthResponse
from shared.models.regulatory import (
    AUTHORITY_RANKS,
    AgentRun,
    AgentRunStatus,
    AgentType,
    AlertSeverity,
    AlertType,
    AuthorityLevel,
    CandidateFact,
    CandidateFactStatus,
    ConflictStatus,
    ConflictType,
    DiscoveredItem,
    Evidence,
    EvidenceArtifact,
    FreshnessRisk,
    GroundingQuote,
    MatchType,
    NodeRole,
    NodeType,
    RegulatoryConflict,
    RegulatoryRule,
    RegulatorySource,
    RuleStatus,
    RuleTransition,
    SoftFailRecord,
    SourcePointer,
    WatchdogAlert,
    authority_rank,
    new_id,
    utcnow,
)

__all__ = [
    # Enums
    "AuthorityLevel",
    "AUTHORITY_RANKS",
    "authority_rank",
    "RuleStatus",
    "NodeType",
    "NodeRole",
    "FreshnessRisk",
    "MatchType",
    "CandidateFactStatus",
    "ConflictType",
    "ConflictStatus",
    "AlertSeverity",
    "AlertType",
    "AgentType",
    "AgentRunStatus",
    # Entities
    "RegulatorySource",
    "DiscoveredItem",
    "Evidence",
    "EvidenceArtifact",
    "GroundingQuote",
    "CandidateFact",
    "SourcePointer",
    "RuleTransition",
    "RegulatoryRule",
    "RegulatoryConflict",
    "WatchdogAlert",
    "AgentRun",
    "SoftFailRecord",
    # Helpers
    "new_id",
    "utcnow",
    # Common
    "ErrorResponse",
    "HealthResponse",
]
