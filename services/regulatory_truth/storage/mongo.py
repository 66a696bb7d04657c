"""
MongoDB Stores
==============

Motor-backed adapters for the two storage ports. The regulatory store and
the rule store each receive their own database handle.

Documents use the model id as ``_id``. Enums are stored as their values
and calendar dates as ISO strings.

Version: 0.1.0
"""

from collections.abc import Iterable
from datetime import UTC, date, datetime
from enum import Enum
from typing import Any, TypeVar

from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import BaseModel
from pymongo import ASCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from shared.logging import get_logger
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
from services.regulatory_truth.errors import (
    EvidenceImmutabilityError,
    EvidenceNotFoundError,
    StoreConsistencyError,
)
from services.regulatory_truth.storage.base import RegulatoryStore, RuleStore, conflict_pair_key

logger = get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

_NEVER = datetime.min.replace(tzinfo=UTC)


def _encode(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _encode(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_encode(v) for v in value]
    return value


def to_document(model: BaseModel, **extra: Any) -> dict[str, Any]:
    """Serialize a model into a Mongo document keyed by its id."""
    doc = _encode(model.model_dump())
    doc["_id"] = doc.pop("id")
    doc.update(extra)
    return doc


def from_document(model_cls: type[ModelT], doc: dict[str, Any] | None) -> ModelT | None:
    """Rebuild a model from a Mongo document."""
    if doc is None:
        return None
    data = dict(doc)
    data["id"] = data.pop("_id")
    data.pop("pair_key", None)
    return model_cls.model_validate(data)


async def _collect(cursor: Any, model_cls: type[ModelT]) -> list[ModelT]:
    return [from_document(model_cls, doc) async for doc in cursor]  # type: ignore[misc]


class MongoRegulatoryStore(RegulatoryStore):
    """Regulatory data in the regulatory MongoDB database."""

    def __init__(self, db: AsyncIOMotorDatabase) -> None:  # type: ignore[type-arg]
        self._db = db
        self._sources = db.sources
        self._items = db.discovered_items
        self._evidence = db.evidence
        self._artifacts = db.evidence_artifacts

    # -- Sources ---------------------------------------------------------

    async def upsert_source(self, source: RegulatorySource) -> tuple[RegulatorySource, bool]:
        doc = await self._sources.find_one_and_update(
            {"slug": source.slug},
            {"$setOnInsert": to_document(source)},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        stored = from_document(RegulatorySource, doc)
        if stored is None:
            raise StoreConsistencyError("sources", source.slug)
        return stored, stored.id == source.id

    async def get_source(self, source_id: str) -> RegulatorySource | None:
        return from_document(RegulatorySource, await self._sources.find_one({"_id": source_id}))

    async def get_source_by_slug(self, slug: str) -> RegulatorySource | None:
        return from_document(RegulatorySource, await self._sources.find_one({"slug": slug}))

    async def list_sources(self, active_only: bool = True) -> list[RegulatorySource]:
        query = {"is_active": True} if active_only else {}
        return await _collect(self._sources.find(query), RegulatorySource)

    async def mark_source_fetched(self, source_id: str, fetched_at: datetime) -> None:
        await self._sources.update_one({"_id": source_id}, {"$set": {"last_fetched_at": fetched_at}})

    # -- Discovered items ------------------------------------------------

    async def get_item(self, item_id: str) -> DiscoveredItem | None:
        return from_document(DiscoveredItem, await self._items.find_one({"_id": item_id}))

    async def get_item_by_url(self, url: str) -> DiscoveredItem | None:
        return from_document(DiscoveredItem, await self._items.find_one({"url": url}))

    async def add_item_if_new(self, item: DiscoveredItem) -> bool:
        result = await self._items.update_one(
            {"url": item.url},
            {"$setOnInsert": to_document(item)},
            upsert=True,
        )
        return result.upserted_id is not None

    async def save_item(self, item: DiscoveredItem) -> None:
        await self._items.replace_one({"_id": item.id}, to_document(item), upsert=True)

    async def list_items(self, source_id: str | None = None) -> list[DiscoveredItem]:
        query = {"source_id": source_id} if source_id else {}
        return await _collect(self._items.find(query), DiscoveredItem)

    async def list_due_items(
        self,
        now: datetime,
        limit: int,
        source_id: str | None = None,
    ) -> list[DiscoveredItem]:
        sources = {s.id: s for s in await self.list_sources(active_only=True)}
        if source_id is not None:
            sources = {k: v for k, v in sources.items() if k == source_id}
        if not sources:
            return []

        cursor = self._items.find(
            {"source_id": {"$in": list(sources)}, "next_scan_due": {"$lte": now}}
        ).sort("next_scan_due", ASCENDING)
        due = await _collect(cursor, DiscoveredItem)

        due.sort(key=lambda i: (sources[i.source_id].last_fetched_at or _NEVER, i.next_scan_due))
        return due[:limit]

    async def count_items_discovered_since(self, since: datetime) -> int:
        return await self._items.count_documents({"discovered_at": {"$gte": since}})

    async def count_sources_checked_since(self, since: datetime) -> int:
        return await self._sources.count_documents({"last_fetched_at": {"$gte": since}})

    # -- Evidence --------------------------------------------------------

    async def create_evidence(self, evidence: Evidence) -> tuple[Evidence, bool]:
        existing = await self.get_evidence(evidence.id)
        if existing is not None:
            if existing.content_hash != evidence.content_hash or existing.raw_content != evidence.raw_content:
                raise EvidenceImmutabilityError(f"Evidence {evidence.id} already exists with other content")
            return existing, False

        try:
            await self._evidence.insert_one(to_document(evidence))
        except DuplicateKeyError:
            doc = await self._evidence.find_one({"url": evidence.url, "content_hash": evidence.content_hash})
            stored = from_document(Evidence, doc)
            if stored is None:
                raise
            logger.debug("evidence_already_stored", url=evidence.url, evidence_id=stored.id)
            return stored, False
        return evidence, True

    async def get_evidence(self, evidence_id: str) -> Evidence | None:
        return from_document(Evidence, await self._evidence.find_one({"_id": evidence_id}))

    async def find_evidence_by_hash(self, content_hash: str) -> list[Evidence]:
        return await _collect(self._evidence.find({"content_hash": content_hash}), Evidence)

    async def latest_evidence_for_url(self, url: str) -> Evidence | None:
        doc = await self._evidence.find_one({"url": url}, sort=[("fetched_at", -1)])
        return from_document(Evidence, doc)

    async def list_evidence(
        self,
        since: datetime | None = None,
        limit: int | None = None,
    ) -> list[Evidence]:
        query = {"fetched_at": {"$gte": since}} if since else {}
        cursor = self._evidence.find(query).sort("fetched_at", ASCENDING)
        if limit is not None:
            cursor = cursor.limit(limit)
        return await _collect(cursor, Evidence)

    async def attach_artifact(self, artifact: EvidenceArtifact) -> Evidence:
        evidence = await self.get_evidence(artifact.evidence_id)
        if evidence is None:
            raise EvidenceNotFoundError(artifact.evidence_id)
        if evidence.artifact_id is not None:
            return evidence

        await self._artifacts.insert_one(to_document(artifact))
        await self._evidence.update_one(
            {"_id": evidence.id, "artifact_id": None},
            {"$set": {"artifact_id": artifact.id}},
        )
        linked = await self.get_evidence(evidence.id)
        if linked is None:
            raise StoreConsistencyError("evidence", evidence.id)
        return linked

    async def get_artifact(self, artifact_id: str) -> EvidenceArtifact | None:
        return from_document(EvidenceArtifact, await self._artifacts.find_one({"_id": artifact_id}))


class MongoRuleStore(RuleStore):
    """Pipeline data in the core MongoDB database."""

    def __init__(self, db: AsyncIOMotorDatabase) -> None:  # type: ignore[type-arg]
        self._db = db
        self._facts = db.candidate_facts
        self._runs = db.agent_runs
        self._pointers = db.source_pointers
        self._rules = db.rules
        self._conflicts = db.conflicts
        self._alerts = db.watchdog_alerts
        self._soft_failures = db.soft_failures

    # -- Candidate facts & agent runs -----------------------------------

    async def save_candidate_fact(self, fact: CandidateFact) -> None:
        await self._facts.replace_one({"_id": fact.id}, to_document(fact), upsert=True)

    async def get_candidate_facts(self, fact_ids: Iterable[str]) -> list[CandidateFact]:
        return await _collect(self._facts.find({"_id": {"$in": list(fact_ids)}}), CandidateFact)

    async def list_candidate_facts(self, evidence_id: str | None = None) -> list[CandidateFact]:
        query: dict[str, Any] = {"status": CandidateFactStatus.CANDIDATE.value}
        if evidence_id is not None:
            query["grounding_quotes.evidence_id"] = evidence_id
        return await _collect(self._facts.find(query), CandidateFact)

    async def save_agent_run(self, run: AgentRun) -> None:
        await self._runs.replace_one({"_id": run.id}, to_document(run), upsert=True)

    async def get_agent_run(self, run_id: str) -> AgentRun | None:
        return from_document(AgentRun, await self._runs.find_one({"_id": run_id}))

    async def has_completed_extraction(self, evidence_id: str) -> bool:
        count = await self._runs.count_documents(
            {
                "evidence_id": evidence_id,
                "agent_type": AgentType.EXTRACTOR.value,
                "status": AgentRunStatus.COMPLETED.value,
            },
            limit=1,
        )
        return count > 0

    # -- Source pointers -------------------------------------------------

    async def add_source_pointer(self, pointer: SourcePointer) -> None:
        await self._pointers.insert_one(to_document(pointer))

    async def get_source_pointers(self, pointer_ids: Iterable[str]) -> list[SourcePointer]:
        return await _collect(self._pointers.find({"_id": {"$in": list(pointer_ids)}}), SourcePointer)

    async def pointers_for_evidence(self, evidence_id: str) -> list[SourcePointer]:
        return await _collect(self._pointers.find({"evidence_id": evidence_id}), SourcePointer)

    # -- Rules -----------------------------------------------------------

    async def save_rule(self, rule: RegulatoryRule) -> None:
        await self._rules.replace_one({"_id": rule.id}, to_document(rule), upsert=True)

    async def get_rule(self, rule_id: str) -> RegulatoryRule | None:
        return from_document(RegulatoryRule, await self._rules.find_one({"_id": rule_id}))

    async def list_rules(
        self,
        statuses: Iterable[RuleStatus] | None = None,
        concept_slug: str | None = None,
    ) -> list[RegulatoryRule]:
        query: dict[str, Any] = {}
        if statuses is not None:
            query["status"] = {"$in": [s.value for s in statuses]}
        if concept_slug is not None:
            query["concept_slug"] = concept_slug
        return await _collect(self._rules.find(query), RegulatoryRule)

    async def rules_citing_article(
        self,
        article_number: str,
        statuses: Iterable[RuleStatus],
    ) -> list[RegulatoryRule]:
        pointer_ids = await self._pointers.distinct("_id", {"article_number": article_number})
        if not pointer_ids:
            return []
        query = {
            "source_pointer_ids": {"$in": pointer_ids},
            "status": {"$in": [s.value for s in statuses]},
        }
        return await _collect(self._rules.find(query), RegulatoryRule)

    async def count_rules_created_since(self, since: datetime) -> int:
        return await self._rules.count_documents({"created_at": {"$gte": since}})

    async def average_confidence_since(self, since: datetime) -> float:
        pipeline = [
            {"$match": {"created_at": {"$gte": since}}},
            {"$group": {"_id": None, "avg": {"$avg": "$confidence"}}},
        ]
        async for row in self._rules.aggregate(pipeline):
            return float(row.get("avg") or 0.0)
        return 0.0

    # -- Conflicts -------------------------------------------------------

    async def create_conflict_if_absent(self, conflict: RegulatoryConflict) -> bool:
        key = conflict_pair_key(conflict.item_a_id, conflict.item_b_id)
        result = await self._conflicts.update_one(
            {"pair_key": key, "status": ConflictStatus.OPEN.value},
            {"$setOnInsert": to_document(conflict, pair_key=key)},
            upsert=True,
        )
        return result.upserted_id is not None

    async def save_conflict(self, conflict: RegulatoryConflict) -> None:
        key = conflict_pair_key(conflict.item_a_id, conflict.item_b_id)
        await self._conflicts.replace_one(
            {"_id": conflict.id},
            to_document(conflict, pair_key=key),
            upsert=True,
        )

    async def get_conflict(self, conflict_id: str) -> RegulatoryConflict | None:
        return from_document(RegulatoryConflict, await self._conflicts.find_one({"_id": conflict_id}))

    async def list_conflicts(
        self,
        status: ConflictStatus | None = None,
        rule_id: str | None = None,
    ) -> list[RegulatoryConflict]:
        query: dict[str, Any] = {}
        if status is not None:
            query["status"] = status.value
        if rule_id is not None:
            query["$or"] = [{"item_a_id": rule_id}, {"item_b_id": rule_id}]
        cursor = self._conflicts.find(query).sort("created_at", ASCENDING)
        return await _collect(cursor, RegulatoryConflict)

    # -- Observability ---------------------------------------------------

    async def append_alert(self, alert: WatchdogAlert) -> None:
        await self._alerts.insert_one(to_document(alert))

    async def list_alerts(
        self,
        since: datetime,
        severity: AlertSeverity | None = None,
    ) -> list[WatchdogAlert]:
        query: dict[str, Any] = {"occurred_at": {"$gte": since}}
        if severity is not None:
            query["severity"] = severity.value
        cursor = self._alerts.find(query).sort("occurred_at", ASCENDING)
        return await _collect(cursor, WatchdogAlert)

    async def record_soft_failure(self, record: SoftFailRecord) -> None:
        await self._soft_failures.insert_one(to_document(record))

    async def list_soft_failures(self, since: datetime | None = None) -> list[SoftFailRecord]:
        query = {"occurred_at": {"$gte": since}} if since else {}
        cursor = self._soft_failures.find(query).sort("occurred_at", ASCENDING)
        return await _collect(cursor, SoftFailRecord)
