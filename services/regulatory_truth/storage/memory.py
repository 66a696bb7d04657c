"""
In-Memory Stores
================

Dict-backed adapters for both storage ports. Used by tests, dry runs and
local development. Records are copied on the way in and out so callers
never mutate stored state without saving it.

Version: 0.1.0
"""

import asyncio
from collections.abc import Iterable
from datetime import datetime

from shared.models import (
    AgentRun,
    AgentRunStatus,
    AgentType,
    AlertSeverity,
    CandidateFact,
    CandidateFactStatus,
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
from services.regulatory_truth.errors import EvidenceImmutabilityError, EvidenceNotFoundError
from services.regulatory_truth.storage.base import RegulatoryStore, RuleStore, conflict_pair_key


_NEVER = datetime.min


class InMemoryRegulatoryStore(RegulatoryStore):
    """Regulatory data held in process memory."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._sources: dict[str, RegulatorySource] = {}
        self._items: dict[str, DiscoveredItem] = {}
        self._evidence: dict[str, Evidence] = {}
        self._artifacts: dict[str, EvidenceArtifact] = {}

    # -- Sources ---------------------------------------------------------

    async def upsert_source(self, source: RegulatorySource) -> tuple[RegulatorySource, bool]:
        async with self._lock:
            for existing in self._sources.values():
                if existing.slug == source.slug:
                    return existing.model_copy(deep=True), False
            self._sources[source.id] = source.model_copy(deep=True)
            return source, True

    async def get_source(self, source_id: str) -> RegulatorySource | None:
        source = self._sources.get(source_id)
        return source.model_copy(deep=True) if source else None

    async def get_source_by_slug(self, slug: str) -> RegulatorySource | None:
        for source in self._sources.values():
            if source.slug == slug:
                return source.model_copy(deep=True)
        return None

    async def list_sources(self, active_only: bool = True) -> list[RegulatorySource]:
        return [
            s.model_copy(deep=True)
            for s in self._sources.values()
            if s.is_active or not active_only
        ]

    async def mark_source_fetched(self, source_id: str, fetched_at: datetime) -> None:
        source = self._sources.get(source_id)
        if source is not None:
            source.last_fetched_at = fetched_at

    # -- Discovered items ------------------------------------------------

    async def get_item(self, item_id: str) -> DiscoveredItem | None:
        item = self._items.get(item_id)
        return item.model_copy(deep=True) if item else None

    async def get_item_by_url(self, url: str) -> DiscoveredItem | None:
        for item in self._items.values():
            if item.url == url:
                return item.model_copy(deep=True)
        return None

    async def add_item_if_new(self, item: DiscoveredItem) -> bool:
        async with self._lock:
            if any(existing.url == item.url for existing in self._items.values()):
                return False
            self._items[item.id] = item.model_copy(deep=True)
            return True

    async def save_item(self, item: DiscoveredItem) -> None:
        self._items[item.id] = item.model_copy(deep=True)

    async def list_items(self, source_id: str | None = None) -> list[DiscoveredItem]:
        return [
            i.model_copy(deep=True)
            for i in self._items.values()
            if source_id is None or i.source_id == source_id
        ]

    async def list_due_items(
        self,
        now: datetime,
        limit: int,
        source_id: str | None = None,
    ) -> list[DiscoveredItem]:
        due: list[tuple[datetime, datetime, DiscoveredItem]] = []
        for item in self._items.values():
            source = self._sources.get(item.source_id)
            if source is None or not source.is_active:
                continue
            if source_id is not None and item.source_id != source_id:
                continue
            if item.next_scan_due > now:
                continue
            last_fetched = (source.last_fetched_at or _NEVER).replace(tzinfo=None)
            due.append((last_fetched, item.next_scan_due, item))

        due.sort(key=lambda row: (row[0], row[1]))
        return [row[2].model_copy(deep=True) for row in due[:limit]]

    async def count_items_discovered_since(self, since: datetime) -> int:
        return sum(1 for i in self._items.values() if i.discovered_at >= since)

    async def count_sources_checked_since(self, since: datetime) -> int:
        return sum(
            1
            for s in self._sources.values()
            if s.last_fetched_at is not None and s.last_fetched_at >= since
        )

    # -- Evidence --------------------------------------------------------

    async def create_evidence(self, evidence: Evidence) -> tuple[Evidence, bool]:
        async with self._lock:
            existing = self._evidence.get(evidence.id)
            if existing is not None:
                if existing.content_hash != evidence.content_hash or existing.raw_content != evidence.raw_content:
                    raise EvidenceImmutabilityError(f"Evidence {evidence.id} already exists with other content")
                return existing, False

            for stored in self._evidence.values():
                if stored.url == evidence.url and stored.content_hash == evidence.content_hash:
                    return stored, False

            self._evidence[evidence.id] = evidence
            return evidence, True

    async def get_evidence(self, evidence_id: str) -> Evidence | None:
        return self._evidence.get(evidence_id)

    async def find_evidence_by_hash(self, content_hash: str) -> list[Evidence]:
        return [e for e in self._evidence.values() if e.content_hash == content_hash]

    async def latest_evidence_for_url(self, url: str) -> Evidence | None:
        matching = [e for e in self._evidence.values() if e.url == url]
        return max(matching, key=lambda e: e.fetched_at) if matching else None

    async def list_evidence(
        self,
        since: datetime | None = None,
        limit: int | None = None,
    ) -> list[Evidence]:
        evidence = sorted(self._evidence.values(), key=lambda e: e.fetched_at)
        if since is not None:
            evidence = [e for e in evidence if e.fetched_at >= since]
        return evidence[:limit] if limit is not None else evidence

    async def attach_artifact(self, artifact: EvidenceArtifact) -> Evidence:
        async with self._lock:
            evidence = self._evidence.get(artifact.evidence_id)
            if evidence is None:
                raise EvidenceNotFoundError(artifact.evidence_id)
            if evidence.artifact_id is not None:
                return evidence

            self._artifacts[artifact.id] = artifact
            linked = evidence.model_copy(update={"artifact_id": artifact.id})
            self._evidence[evidence.id] = linked
            return linked

    async def get_artifact(self, artifact_id: str) -> EvidenceArtifact | None:
        return self._artifacts.get(artifact_id)


class InMemoryRuleStore(RuleStore):
    """Pipeline data held in process memory."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._facts: dict[str, CandidateFact] = {}
        self._runs: dict[str, AgentRun] = {}
        self._pointers: dict[str, SourcePointer] = {}
        self._rules: dict[str, RegulatoryRule] = {}
        self._conflicts: dict[str, RegulatoryConflict] = {}
        self._alerts: list[WatchdogAlert] = []
        self._soft_failures: list[SoftFailRecord] = []

    # -- Candidate facts & agent runs -----------------------------------

    async def save_candidate_fact(self, fact: CandidateFact) -> None:
        self._facts[fact.id] = fact.model_copy(deep=True)

    async def get_candidate_facts(self, fact_ids: Iterable[str]) -> list[CandidateFact]:
        return [self._facts[f].model_copy(deep=True) for f in fact_ids if f in self._facts]

    async def list_candidate_facts(self, evidence_id: str | None = None) -> list[CandidateFact]:
        return [
            f.model_copy(deep=True)
            for f in self._facts.values()
            if f.status == CandidateFactStatus.CANDIDATE
            and (
                evidence_id is None
                or any(q.evidence_id == evidence_id for q in f.grounding_quotes)
            )
        ]

    async def save_agent_run(self, run: AgentRun) -> None:
        self._runs[run.id] = run.model_copy(deep=True)

    async def get_agent_run(self, run_id: str) -> AgentRun | None:
        run = self._runs.get(run_id)
        return run.model_copy(deep=True) if run else None

    async def has_completed_extraction(self, evidence_id: str) -> bool:
        return any(
            r.agent_type == AgentType.EXTRACTOR
            and r.evidence_id == evidence_id
            and r.status == AgentRunStatus.COMPLETED
            for r in self._runs.values()
        )

    # -- Source pointers -------------------------------------------------

    async def add_source_pointer(self, pointer: SourcePointer) -> None:
        async with self._lock:
            if pointer.id in self._pointers:
                raise ValueError(f"Source pointer {pointer.id} already exists")
            self._pointers[pointer.id] = pointer.model_copy(deep=True)

    async def get_source_pointers(self, pointer_ids: Iterable[str]) -> list[SourcePointer]:
        return [self._pointers[p].model_copy(deep=True) for p in pointer_ids if p in self._pointers]

    async def pointers_for_evidence(self, evidence_id: str) -> list[SourcePointer]:
        return [p.model_copy(deep=True) for p in self._pointers.values() if p.evidence_id == evidence_id]

    # -- Rules -----------------------------------------------------------

    async def save_rule(self, rule: RegulatoryRule) -> None:
        self._rules[rule.id] = rule.model_copy(deep=True)

    async def get_rule(self, rule_id: str) -> RegulatoryRule | None:
        rule = self._rules.get(rule_id)
        return rule.model_copy(deep=True) if rule else None

    async def list_rules(
        self,
        statuses: Iterable[RuleStatus] | None = None,
        concept_slug: str | None = None,
    ) -> list[RegulatoryRule]:
        wanted = set(statuses) if statuses is not None else None
        return [
            r.model_copy(deep=True)
            for r in self._rules.values()
            if (wanted is None or r.status in wanted)
            and (concept_slug is None or r.concept_slug == concept_slug)
        ]

    async def rules_citing_article(
        self,
        article_number: str,
        statuses: Iterable[RuleStatus],
    ) -> list[RegulatoryRule]:
        wanted = set(statuses)
        citing: list[RegulatoryRule] = []
        for rule in self._rules.values():
            if rule.status not in wanted:
                continue
            if any(
                self._pointers[p].article_number == article_number
                for p in rule.source_pointer_ids
                if p in self._pointers
            ):
                citing.append(rule.model_copy(deep=True))
        return citing

    async def count_rules_created_since(self, since: datetime) -> int:
        return sum(1 for r in self._rules.values() if r.created_at >= since)

    async def average_confidence_since(self, since: datetime) -> float:
        recent = [r.confidence for r in self._rules.values() if r.created_at >= since]
        return sum(recent) / len(recent) if recent else 0.0

    # -- Conflicts -------------------------------------------------------

    async def create_conflict_if_absent(self, conflict: RegulatoryConflict) -> bool:
        key = conflict_pair_key(conflict.item_a_id, conflict.item_b_id)
        async with self._lock:
            for existing in self._conflicts.values():
                if (
                    existing.status == ConflictStatus.OPEN
                    and conflict_pair_key(existing.item_a_id, existing.item_b_id) == key
                ):
                    return False
            self._conflicts[conflict.id] = conflict.model_copy(deep=True)
            return True

    async def save_conflict(self, conflict: RegulatoryConflict) -> None:
        self._conflicts[conflict.id] = conflict.model_copy(deep=True)

    async def get_conflict(self, conflict_id: str) -> RegulatoryConflict | None:
        conflict = self._conflicts.get(conflict_id)
        return conflict.model_copy(deep=True) if conflict else None

    async def list_conflicts(
        self,
        status: ConflictStatus | None = None,
        rule_id: str | None = None,
    ) -> list[RegulatoryConflict]:
        return [
            c.model_copy(deep=True)
            for c in sorted(self._conflicts.values(), key=lambda c: c.created_at)
            if (status is None or c.status == status)
            and (rule_id is None or c.involves(rule_id))
        ]

    # -- Observability ---------------------------------------------------

    async def append_alert(self, alert: WatchdogAlert) -> None:
        self._alerts.append(alert)

    async def list_alerts(
        self,
        since: datetime,
        severity: AlertSeverity | None = None,
    ) -> list[WatchdogAlert]:
        return [
            a
            for a in self._alerts
            if a.occurred_at >= since and (severity is None or a.severity == severity)
        ]

    async def record_soft_failure(self, record: SoftFailRecord) -> None:
        self._soft_failures.append(record)

    async def list_soft_failures(self, since: datetime | None = None) -> list[SoftFailRecord]:
        return [r for r in self._soft_failures if since is None or r.occurred_at >= since]
