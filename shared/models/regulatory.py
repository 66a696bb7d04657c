"""
Regulatory Truth Models
=======================

Entities of the regulatory truth pipeline: monitored sources, immutable
evidence snapshots, extracted candidate facts, source pointers, rules,
conflicts, watchdog alerts and lineage records.

Version: 0.1.0
"""

from datetime import UTC, date, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    """Timezone-aware current time."""
    return datetime.now(UTC)


def new_id(prefix: str) -> str:
    """Generate a prefixed opaque identifier (e.g. ``rule_3f2a...``)."""
    return f"{prefix}_{uuid4().hex[:20]}"


# =============================================================================
# Enumerations
# =============================================================================


class AuthorityLevel(str, Enum):
    """Legal weight of a source, strongest first."""

    LAW = "LAW"
    REGULATION = "REGULATION"
    GUIDANCE = "GUIDANCE"
    PROCEDURE = "PROCEDURE"
    PRACTICE = "PRACTICE"

    @property
    def rank(self) -> int:
        """Numeric rank, lower means higher authority."""
        return AUTHORITY_RANKS[self]


AUTHORITY_RANKS: dict[AuthorityLevel, int] = {
    AuthorityLevel.LAW: 1,
    AuthorityLevel.REGULATION: 2,
    AuthorityLevel.GUIDANCE: 3,
    AuthorityLevel.PROCEDURE: 4,
    AuthorityLevel.PRACTICE: 5,
}

UNKNOWN_AUTHORITY_RANK = 999


def authority_rank(level: AuthorityLevel | str | None) -> int:
    """Rank for an authority level; unknown levels sort last."""
    if level is None:
        return UNKNOWN_AUTHORITY_RANK
    try:
        return AuthorityLevel(level).rank
    except ValueError:
        return UNKNOWN_AUTHORITY_RANK


class RuleStatus(str, Enum):
    """Lifecycle states of a regulatory rule."""

    DRAFT = "DRAFT"
    PENDING_REVIEW = "PENDING_REVIEW"
    APPROVED = "APPROVED"
    PUBLISHED = "PUBLISHED"
    REJECTED = "REJECTED"
    CONFLICT = "CONFLICT"


class NodeType(str, Enum):
    """Structural classification of a monitored URL."""

    HUB = "HUB"  # Listing / index pages that link to documents
    LEAF = "LEAF"  # Individual documents


class NodeRole(str, Enum):
    """What a monitored URL is for."""

    ENTRY_POINT = "ENTRY_POINT"
    NEWS_FEED = "NEWS_FEED"
    INDEX = "INDEX"
    ARCHIVE = "ARCHIVE"
    REGULATION = "REGULATION"
    GUIDANCE = "GUIDANCE"
    FORM = "FORM"
    DATA = "DATA"


class FreshnessRisk(str, Enum):
    """How urgently a resource must be re-scanned."""

    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    STATIC = "STATIC"


class MatchType(str, Enum):
    """How a quote was located inside evidence text."""

    EXACT = "exact"
    NORMALIZED = "normalized"
    NONE = "none"


class CandidateFactStatus(str, Enum):
    """Status of an extracted candidate fact."""

    CANDIDATE = "CANDIDATE"
    PROMOTED = "PROMOTED"
    REJECTED = "REJECTED"


class ConflictType(str, Enum):
    """Structural contradiction kinds."""

    VALUE_MISMATCH = "VALUE_MISMATCH"
    AUTHORITY_SUPERSEDE = "AUTHORITY_SUPERSEDE"


class ConflictStatus(str, Enum):
    """Conflict resolution status."""

    OPEN = "OPEN"
    RESOLVED = "RESOLVED"


class AlertSeverity(str, Enum):
    """Watchdog alert severity."""

    INFO = "INFO"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"


class AlertType(str, Enum):
    """Watchdog alert categories."""

    FETCH_FAILURE = "FETCH_FAILURE"
    CIRCUIT_OPEN = "CIRCUIT_OPEN"
    BATCH_FAILURE = "BATCH_FAILURE"
    EXTRACTION_REJECTED = "EXTRACTION_REJECTED"
    PROVENANCE_FAILURE = "PROVENANCE_FAILURE"
    CONFLICT_UNRESOLVED = "CONFLICT_UNRESOLVED"
    PUBLISHED_RULE_OUTRANKED = "PUBLISHED_RULE_OUTRANKED"


class AgentType(str, Enum):
    """External agent invocations recorded for lineage."""

    EXTRACTOR = "EXTRACTOR"
    COMPOSER = "COMPOSER"


class AgentRunStatus(str, Enum):
    """Outcome of an agent invocation."""

    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


# =============================================================================
# Sources & monitoring
# =============================================================================


class RegulatorySource(BaseModel):
    """A monitored regulatory origin."""

    id: str = Field(default_factory=lambda: new_id("src"))
    slug: str = Field(..., description="Stable human-readable key (e.g. porezna-uprava)")
    name: str
    url: str = Field(..., description="Base / entry URL")
    hierarchy: AuthorityLevel = AuthorityLevel.GUIDANCE
    fetch_interval_hours: int = Field(default=24, ge=1)
    is_active: bool = True

    last_fetched_at: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)


class DiscoveredItem(BaseModel):
    """A concrete URL monitored under a source."""

    id: str = Field(default_factory=lambda: new_id("item"))
    source_id: str
    url: str

    # Classification (set on first scan, stable thereafter)
    node_type: NodeType = NodeType.LEAF
    node_role: NodeRole | None = None
    freshness_risk: FreshnessRisk = FreshnessRisk.MEDIUM
    classified: bool = False

    # Velocity profile
    change_frequency: float = Field(default=0.5, ge=0.0, le=1.0)
    scan_count: int = 0
    last_changed_at: datetime | None = None

    # Scan bookkeeping
    last_content_hash: str | None = None
    last_scanned_at: datetime | None = None
    next_scan_due: datetime = Field(default_factory=utcnow)
    discovered_at: datetime = Field(default_factory=utcnow)


# =============================================================================
# Evidence
# =============================================================================


class Evidence(BaseModel):
    """Immutable snapshot of fetched content."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: new_id("ev"))
    source_id: str
    url: str
    content_hash: str = Field(..., min_length=64, max_length=64)
    raw_content: str
    content_type: str = "html"
    fetched_at: datetime = Field(default_factory=utcnow)
    artifact_id: str | None = Field(
        default=None,
        description="Parsed artifact holding extractable text (e.g. PDF text layer)",
    )


class EvidenceArtifact(BaseModel):
    """Text derived from an evidence snapshot by a parser."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: new_id("art"))
    evidence_id: str
    kind: str = "text"
    text: str
    created_at: datetime = Field(default_factory=utcnow)


# =============================================================================
# Extraction & composition
# =============================================================================


class GroundingQuote(BaseModel):
    """A quote backing an extracted value."""

    evidence_id: str
    exact_quote: str = Field(..., min_length=1)
    article_number: str | None = None
    law_reference: str | None = None
    match_type: MatchType = MatchType.NONE


class CandidateFact(BaseModel):
    """An unvetted extraction awaiting composition."""

    id: str = Field(default_factory=lambda: new_id("cf"))
    value: str
    value_type: str = "text"
    suggested_concept_slug: str
    suggested_domain: str | None = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    grounding_quotes: list[GroundingQuote] = Field(default_factory=list)

    status: CandidateFactStatus = CandidateFactStatus.CANDIDATE
    agent_run_id: str | None = None
    promoted_to_rule_id: str | None = None
    created_at: datetime = Field(default_factory=utcnow)


class SourcePointer(BaseModel):
    """A located, quoted claim within an evidence snapshot."""

    id: str = Field(default_factory=lambda: new_id("sp"))
    evidence_id: str
    exact_quote: str = Field(..., min_length=1)
    article_number: str | None = None
    law_reference: str | None = None
    match_type: MatchType = MatchType.NONE
    created_at: datetime = Field(default_factory=utcnow)


class RuleTransition(BaseModel):
    """One entry of a rule's status history."""

    from_status: RuleStatus
    to_status: RuleStatus
    actor: str
    reason: str | None = None
    at: datetime = Field(default_factory=utcnow)


class RegulatoryRule(BaseModel):
    """The unit of published regulatory truth."""

    id: str = Field(default_factory=lambda: new_id("rule"))
    concept_slug: str
    value: str
    value_type: str = "text"
    authority_level: AuthorityLevel = AuthorityLevel.GUIDANCE

    effective_from: date | None = None
    effective_until: date | None = None

    status: RuleStatus = RuleStatus.DRAFT
    status_reason: str | None = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)

    source_pointer_ids: list[str] = Field(default_factory=list)

    # Lineage
    originating_candidate_fact_ids: list[str] = Field(default_factory=list)
    originating_agent_run_ids: list[str] = Field(default_factory=list)

    history: list[RuleTransition] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def authority_rank(self) -> int:
        """Numeric authority rank (LAW=1 ... PRACTICE=5)."""
        return authority_rank(self.authority_level)

    @property
    def has_lineage(self) -> bool:
        """Whether the rule can be traced to candidate facts or agent runs."""
        return bool(self.originating_candidate_fact_ids or self.originating_agent_run_ids)


class RegulatoryConflict(BaseModel):
    """A detected contradiction between two rules."""

    id: str = Field(default_factory=lambda: new_id("conf"))
    conflict_type: ConflictType
    item_a_id: str
    item_b_id: str
    description: str
    status: ConflictStatus = ConflictStatus.OPEN

    resolution: dict[str, Any] | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
    resolved_at: datetime | None = None

    def involves(self, rule_id: str) -> bool:
        """Check if the conflict references a rule."""
        return rule_id in (self.item_a_id, self.item_b_id)

    def other(self, rule_id: str) -> str:
        """Id of the opposing rule."""
        return self.item_b_id if rule_id == self.item_a_id else self.item_a_id


# =============================================================================
# Observability & lineage
# =============================================================================


class WatchdogAlert(BaseModel):
    """Append-only observability event."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: new_id("alert"))
    type: AlertType
    severity: AlertSeverity
    entity_id: str | None = None
    message: str
    details: dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=utcnow)


class AgentRun(BaseModel):
    """Audit record of one extraction / composition invocation."""

    id: str = Field(default_factory=lambda: new_id("run"))
    agent_type: AgentType
    evidence_id: str | None = None
    input_ids: list[str] = Field(default_factory=list)
    output_ids: list[str] = Field(default_factory=list)
    status: AgentRunStatus = AgentRunStatus.RUNNING
    error: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = None


class SoftFailRecord(BaseModel):
    """Persisted record of an isolated stage failure."""

    id: str = Field(default_factory=lambda: new_id("sf"))
    operation: str
    entity_type: str | None = None
    entity_id: str | None = None
    error_message: str
    error_type: str | None = None
    duration_ms: float = 0.0
    metadata: dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=utcnow)
