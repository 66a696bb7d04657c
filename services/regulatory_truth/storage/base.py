"""
Storage Ports
=============

The pipeline depends on two logically separate durable stores:

- RegulatoryStore: system-wide regulatory data written by the sentinel
  (sources, discovered items, immutable evidence, parsed artifacts).
- RuleStore: pipeline data (candidate facts, agent runs, source pointers,
  rules, conflicts, watchdog alerts, soft-fail records).

Each has its own adapters; they are never merged into one client.

Version: 0.1.0
"""

from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import datetime

from shared.models import (
    AgentRun,
    AlertSeverity,
    CandidateFact,
    ConflictStatus,
    DiscoveredItem,
    Evidence,
    EvidenceArtifact,
    RegulatoryConflict,
    RegulatoryRule,
    RegulatorySource,
    RuleStatus,
    SoftFailRecord,
    SourcePointer,
    WatchdogAlert,
)


def conflict_pair_key(rule_a_id: str, rule_b_id: str) -> str:
    """Order-independent key for a pair of rules."""
    first, second = sorted((rule_a_id, rule_b_id))
    return f"{first}|{second}"


class RegulatoryStore(ABC):
    """System-wide regulatory data: sources, items, evidence."""

    # -- Sources ---------------------------------------------------------

    @abstractmethod
    async def upsert_source(self, source: RegulatorySource) -> tuple[RegulatorySource, bool]:
        """Insert a source unless its slug exists. Returns (source, created)."""
        ...

    @abstractmethod
    async def get_source(self, source_id: str) -> RegulatorySource | None:
        ...

    @abstractmethod
    async def get_source_by_slug(self, slug: str) -> RegulatorySource | None:
        ...

    @abstractmethod
    async def list_sources(self, active_only: bool = True) -> list[RegulatorySource]:
        ...

    @abstractmethod
    async def mark_source_fetched(self, source_id: str, fetched_at: datetime) -> None:
        """Update ``last_fetched_at``; the only source mutation the pipeline makes."""
        ...

    # -- Discovered items ------------------------------------------------

    @abstractmethod
    async def get_item(self, item_id: str) -> DiscoveredItem | None:
        ...

    @abstractmethod
    async def get_item_by_url(self, url: str) -> DiscoveredItem | None:
        ...

    @abstractmethod
    async def add_item_if_new(self, item: DiscoveredItem) -> bool:
        """Insert an item unless its URL is already monitored."""
        ...

    @abstractmethod
    async def save_item(self, item: DiscoveredItem) -> None:
        """Persist scan results for an existing item."""
        ...

    @abstractmethod
    async def list_items(self, source_id: str | None = None) -> list[DiscoveredItem]:
        ...

    @abstractmethod
    async def list_due_items(
        self,
        now: datetime,
        limit: int,
        source_id: str | None = None,
    ) -> list[DiscoveredItem]:
        """
        Items of active sources with ``next_scan_due <= now``, ordered by
        their source's ``last_fetched_at`` (never fetched first), then by
        ``next_scan_due``.
        """
        ...

    @abstractmethod
    async def count_items_discovered_since(self, since: datetime) -> int:
        ...

    @abstractmethod
    async def count_sources_checked_since(self, since: datetime) -> int:
        ...

    # -- Evidence --------------------------------------------------------

    @abstractmethod
    async def create_evidence(self, evidence: Evidence) -> tuple[Evidence, bool]:
        """
        Store a snapshot. Idempotent on (url, content_hash): an existing
        snapshot is returned instead of a duplicate. Never rewrites an
        existing id. Returns (evidence, created).
        """
        ...

    @abstractmethod
    async def get_evidence(self, evidence_id: str) -> Evidence | None:
        ...

    @abstractmethod
    async def find_evidence_by_hash(self, content_hash: str) -> list[Evidence]:
        ...

    @abstractmethod
    async def latest_evidence_for_url(self, url: str) -> Evidence | None:
        ...

    @abstractmethod
    async def list_evidence(
        self,
        since: datetime | None = None,
        limit: int | None = None,
    ) -> list[Evidence]:
        """Evidence ordered oldest first."""
        ...

    @abstractmethod
    async def attach_artifact(self, artifact: EvidenceArtifact) -> Evidence:
        """
        Store a parsed artifact and link it from its evidence. The link is
        the only field ever set after creation, and only when empty.
        """
        ...

    @abstractmethod
    async def get_artifact(self, artifact_id: str) -> EvidenceArtifact | None:
        ...


class RuleStore(ABC):
    """Pipeline data: facts, pointers, rules, conflicts, alerts."""

    # -- Candidate facts & agent runs -----------------------------------

    @abstractmethod
    async def save_candidate_fact(self, fact: CandidateFact) -> None:
        ...

    @abstractmethod
    async def get_candidate_facts(self, fact_ids: Iterable[str]) -> list[CandidateFact]:
        ...

    @abstractmethod
    async def list_candidate_facts(self, evidence_id: str | None = None) -> list[CandidateFact]:
        """Unpromoted candidates, optionally only those grounded in an evidence."""
        ...

    @abstractmethod
    async def save_agent_run(self, run: AgentRun) -> None:
        ...

    @abstractmethod
    async def get_agent_run(self, run_id: str) -> AgentRun | None:
        ...

    @abstractmethod
    async def has_completed_extraction(self, evidence_id: str) -> bool:
        ...

    # -- Source pointers -------------------------------------------------

    @abstractmethod
    async def add_source_pointer(self, pointer: SourcePointer) -> None:
        """Insert a pointer. Pointers are never updated."""
        ...

    @abstractmethod
    async def get_source_pointers(self, pointer_ids: Iterable[str]) -> list[SourcePointer]:
        ...

    @abstractmethod
    async def pointers_for_evidence(self, evidence_id: str) -> list[SourcePointer]:
        ...

    # -- Rules -----------------------------------------------------------

    @abstractmethod
    async def save_rule(self, rule: RegulatoryRule) -> None:
        ...

    @abstractmethod
    async def get_rule(self, rule_id: str) -> RegulatoryRule | None:
        ...

    @abstractmethod
    async def list_rules(
        self,
        statuses: Iterable[RuleStatus] | None = None,
        concept_slug: str | None = None,
    ) -> list[RegulatoryRule]:
        ...

    @abstractmethod
    async def rules_citing_article(
        self,
        article_number: str,
        statuses: Iterable[RuleStatus],
    ) -> list[RegulatoryRule]:
        """Rules with at least one pointer quoting the given article."""
        ...

    @abstractmethod
    async def count_rules_created_since(self, since: datetime) -> int:
        ...

    @abstractmethod
    async def average_confidence_since(self, since: datetime) -> float:
        ...

    # -- Conflicts -------------------------------------------------------

    @abstractmethod
    async def create_conflict_if_absent(self, conflict: RegulatoryConflict) -> bool:
        """Insert unless an OPEN conflict already links the same unordered pair."""
        ...

    @abstractmethod
    async def save_conflict(self, conflict: RegulatoryConflict) -> None:
        ...

    @abstractmethod
    async def get_conflict(self, conflict_id: str) -> RegulatoryConflict | None:
        ...

    @abstractmethod
    async def list_conflicts(
        self,
        status: ConflictStatus | None = None,
        rule_id: str | None = None,
    ) -> list[RegulatoryConflict]:
        ...

    # -- Observability ---------------------------------------------------

    @abstractmethod
    async def append_alert(self, alert: WatchdogAlert) -> None:
        ...

    @abstractmethod
    async def list_alerts(
        self,
        since: datetime,
        severity: AlertSeverity | None = None,
    ) -> list[WatchdogAlert]:
        ...

    @abstractmethod
    async def record_soft_failure(self, record: SoftFailRecord) -> None:
        ...

    @abstractmethod
    async def list_soft_failures(self, since: datetime | None = None) -> list[SoftFailRecord]:
        ...
