"""
Extraction Stage
================

Runs the provider over evidence snapshots:

1. Extract candidate facts (one EXTRACTOR AgentRun per evidence)
2. Quote gate: facts whose quotes are not in the evidence text are dropped
3. Compose each concept's facts into a DRAFT rule with source pointers
   (one COMPOSER AgentRun per concept), stamping pointer match types
4. Detect and seed structural conflicts; the new draft and any unpublished
   rule it contradicts move to CONFLICT

Version: 0.1.0
"""

import asyncio
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

from shared.logging import get_logger, run_context
from shared.models import (
    AgentRun,
    AgentRunStatus,
    AgentType,
    AlertSeverity,
    AlertType,
    AuthorityLevel,
    CandidateFact,
    CandidateFactStatus,
    Evidence,
    GroundingQuote,
    RegulatoryConflict,
    RegulatoryRule,
    RuleStatus,
    SourcePointer,
    utcnow,
)
from services.regulatory_truth.agents.provider import ExtractionProvider, RunMeta, SchemaHint
from services.regulatory_truth.conflicts import ConflictDetector
from services.regulatory_truth.content import EvidenceContentProvider
from services.regulatory_truth.errors import (
    CompositionError,
    EvidenceNotFoundError,
    ExtractionError,
    ProviderError,
)
from services.regulatory_truth.lifecycle import TERMINAL_STATUSES, RuleLifecycleManager
from services.regulatory_truth.provenance import find_quote_in_evidence
from services.regulatory_truth.soft_fail import BatchResult, SoftFailContext, SoftFailRunner
from services.regulatory_truth.storage import RegulatoryStore, RuleStore
from services.regulatory_truth.watchdog import Watchdog

logger = get_logger(__name__)

CONFLICT_DETECTOR_ACTOR = "conflict_detector"


@dataclass
class ExtractionOutcome:
    """What one evidence snapshot produced."""

    evidence_id: str
    agent_run_id: str
    candidate_fact_ids: list[str] = field(default_factory=list)
    rejected_facts: int = 0
    rule_ids: list[str] = field(default_factory=list)
    conflict_ids: list[str] = field(default_factory=list)


class ExtractionStage:
    """Evidence -> candidate facts -> draft rules."""

    def __init__(
        self,
        regulatory_store: RegulatoryStore,
        rule_store: RuleStore,
        provider: ExtractionProvider,
        content: EvidenceContentProvider,
        detector: ConflictDetector,
        lifecycle: RuleLifecycleManager,
        runner: SoftFailRunner,
        watchdog: Watchdog | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._regulatory = regulatory_store
        self._rules = rule_store
        self._provider = provider
        self._content = content
        self._detector = detector
        self._lifecycle = lifecycle
        self._runner = runner
        self._watchdog = watchdog
        self._clock = clock

    async def _finish_run(
        self,
        run: AgentRun,
        status: AgentRunStatus,
        output_ids: list[str] | None = None,
        error: str | None = None,
    ) -> None:
        run.status = status
        run.output_ids = output_ids or []
        run.error = error
        run.completed_at = self._clock()
        await self._rules.save_agent_run(run)

    async def _authority_for(self, evidence: Evidence) -> AuthorityLevel:
        source = await self._regulatory.get_source(evidence.source_id)
        return source.hierarchy if source is not None else AuthorityLevel.GUIDANCE

    async def extract_evidence(self, evidence_id: str) -> ExtractionOutcome:
        """
        Extract, gate and compose one evidence snapshot.

        Candidate facts left uncomposed by an earlier failed run are
        composed instead of extracting again.

        Raises:
            EvidenceNotFoundError: If the evidence does not exist
            ExtractionError: If the provider fails
            CompositionError: If composing a concept fails
        """
        evidence = await self._regulatory.get_evidence(evidence_id)
        if evidence is None:
            raise EvidenceNotFoundError(evidence_id)

        authority = await self._authority_for(evidence)

        stranded = await self._rules.list_candidate_facts(evidence.id)
        if stranded:
            return await self._resume_composition(evidence, authority, stranded)

        text = await self._content.text_for(evidence)

        run = AgentRun(
            agent_type=AgentType.EXTRACTOR,
            evidence_id=evidence.id,
            input_ids=[evidence.id],
            started_at=self._clock(),
            metadata={"provider": self._provider.name, "url": evidence.url},
        )
        await self._rules.save_agent_run(run)

        hint = SchemaHint(url=evidence.url, content_type=evidence.content_type, authority_level=authority)
        try:
            extracted = await self._provider.extract(text, hint)
        except ProviderError as e:
            await self._finish_run(run, AgentRunStatus.FAILED, error=str(e))
            raise
        except Exception as e:
            await self._finish_run(run, AgentRunStatus.FAILED, error=str(e))
            raise ExtractionError(f"Extraction failed for {evidence.id}: {e}") from e

        outcome = ExtractionOutcome(evidence_id=evidence.id, agent_run_id=run.id)
        accepted: list[CandidateFact] = []

        for fact in extracted:
            quotes: list[GroundingQuote] = []
            for quote in fact.quotes:
                match = find_quote_in_evidence(text, quote.exact_quote)
                if not match.found:
                    break
                quotes.append(
                    GroundingQuote(
                        evidence_id=evidence.id,
                        exact_quote=quote.exact_quote,
                        article_number=quote.article_number,
                        law_reference=quote.law_reference,
                        match_type=match.match_type,
                    )
                )
            else:
                candidate = CandidateFact(
                    value=fact.value,
                    value_type=fact.value_type,
                    suggested_concept_slug=fact.concept_slug,
                    suggested_domain=fact.domain,
                    confidence=fact.confidence,
                    grounding_quotes=quotes,
                    agent_run_id=run.id,
                    created_at=self._clock(),
                )
                await self._rules.save_candidate_fact(candidate)
                accepted.append(candidate)
                continue

            outcome.rejected_facts += 1
            logger.warning(
                "candidate_fact_rejected",
                evidence_id=evidence.id,
                concept_slug=fact.concept_slug,
                reason="quote_not_found",
            )

        outcome.candidate_fact_ids = [c.id for c in accepted]
        await self._finish_run(run, AgentRunStatus.COMPLETED, output_ids=outcome.candidate_fact_ids)

        if outcome.rejected_facts and self._watchdog is not None:
            await self._watchdog.raise_alert(
                AlertType.EXTRACTION_REJECTED,
                AlertSeverity.WARNING,
                f"{outcome.rejected_facts} extracted fact(s) had quotes missing from the evidence",
                entity_id=evidence.id,
                details={"url": evidence.url, "accepted": len(accepted)},
            )

        await self._compose_by_concept(accepted, evidence, authority, outcome)

        logger.info(
            "evidence_extracted",
            evidence_id=evidence.id,
            facts=len(accepted),
            rejected=outcome.rejected_facts,
            rules=len(outcome.rule_ids),
            conflicts=len(outcome.conflict_ids),
        )
        return outcome

    async def _compose_by_concept(
        self,
        candidates: list[CandidateFact],
        evidence: Evidence,
        authority: AuthorityLevel,
        outcome: ExtractionOutcome,
    ) -> None:
        by_concept: dict[str, list[CandidateFact]] = defaultdict(list)
        for candidate in candidates:
            by_concept[candidate.suggested_concept_slug].append(candidate)

        for facts in by_concept.values():
            rule, conflict_ids = await self.compose_facts(facts, evidence, authority)
            outcome.rule_ids.append(rule.id)
            outcome.conflict_ids.extend(conflict_ids)

    async def _resume_composition(
        self,
        evidence: Evidence,
        authority: AuthorityLevel,
        stranded: list[CandidateFact],
    ) -> ExtractionOutcome:
        """Compose candidate facts left behind by an interrupted run, without re-extracting."""
        outcome = ExtractionOutcome(
            evidence_id=evidence.id,
            agent_run_id=stranded[0].agent_run_id or "",
            candidate_fact_ids=[f.id for f in stranded],
        )
        logger.info("composition_resumed", evidence_id=evidence.id, facts=len(stranded))

        await self._compose_by_concept(stranded, evidence, authority, outcome)
        return outcome

    async def compose_facts(
        self,
        facts: list[CandidateFact],
        evidence: Evidence,
        authority: AuthorityLevel,
    ) -> tuple[RegulatoryRule, list[str]]:
        """
        Compose facts for one concept into a DRAFT rule.

        Returns:
            (rule, ids of conflicts created for it)
        """
        run = AgentRun(
            agent_type=AgentType.COMPOSER,
            evidence_id=evidence.id,
            input_ids=[f.id for f in facts],
            started_at=self._clock(),
            metadata={"provider": self._provider.name},
        )
        await self._rules.save_agent_run(run)

        meta = RunMeta(agent_run_id=run.id, authority_level=authority, evidence_ids=[evidence.id])
        try:
            result = await self._provider.compose(facts, meta)
        except ProviderError as e:
            await self._finish_run(run, AgentRunStatus.FAILED, error=str(e))
            raise
        except Exception as e:
            await self._finish_run(run, AgentRunStatus.FAILED, error=str(e))
            raise CompositionError(f"Composition failed for {facts[0].suggested_concept_slug}: {e}") from e

        texts: dict[str, str] = {evidence.id: await self._content.text_for(evidence)}
        pointer_ids: list[str] = []
        for draft_pointer in result.source_pointers:
            if draft_pointer.evidence_id not in texts:
                cited = await self._regulatory.get_evidence(draft_pointer.evidence_id)
                texts[draft_pointer.evidence_id] = await self._content.text_for(cited) if cited else ""

            match = find_quote_in_evidence(texts[draft_pointer.evidence_id], draft_pointer.exact_quote)
            pointer = SourcePointer(
                evidence_id=draft_pointer.evidence_id,
                exact_quote=draft_pointer.exact_quote,
                article_number=draft_pointer.article_number,
                law_reference=draft_pointer.law_reference,
                match_type=match.match_type,
                created_at=self._clock(),
            )
            await self._rules.add_source_pointer(pointer)
            pointer_ids.append(pointer.id)

        draft = result.draft_rule
        now = self._clock()
        rule = RegulatoryRule(
            concept_slug=draft.concept_slug,
            value=draft.value,
            value_type=draft.value_type,
            authority_level=draft.authority_level or authority,
            effective_from=draft.effective_from,
            effective_until=draft.effective_until,
            status=RuleStatus.DRAFT,
            confidence=draft.confidence,
            source_pointer_ids=pointer_ids,
            originating_candidate_fact_ids=[f.id for f in facts],
            originating_agent_run_ids=list(
                dict.fromkeys([f.agent_run_id for f in facts if f.agent_run_id] + [run.id])
            ),
            created_at=now,
            updated_at=now,
        )
        await self._rules.save_rule(rule)

        for fact in facts:
            fact.status = CandidateFactStatus.PROMOTED
            fact.promoted_to_rule_id = rule.id
            await self._rules.save_candidate_fact(fact)

        if result.agent_run_id and result.agent_run_id != run.id:
            run.metadata["provider_run_id"] = result.agent_run_id
        await self._finish_run(run, AgentRunStatus.COMPLETED, output_ids=[rule.id, *pointer_ids])

        conflicts = await self._detector.detect_and_seed(rule)
        if conflicts:
            await self._lifecycle.mark_conflict(
                rule.id,
                CONFLICT_DETECTOR_ACTOR,
                reason=f"{len(conflicts)} structural conflict(s) detected",
            )
            await self._mark_counterparts(rule, conflicts)

        logger.info(
            "rule_drafted",
            rule_id=rule.id,
            concept_slug=rule.concept_slug,
            pointers=len(pointer_ids),
            conflicts=len(conflicts),
        )
        return rule, [c.id for c in conflicts]

    async def _mark_counterparts(self, rule: RegulatoryRule, conflicts: list[RegulatoryConflict]) -> None:
        """Move the unpublished rules a new draft contradicts to CONFLICT."""
        for conflict in conflicts:
            other = await self._rules.get_rule(conflict.other(rule.id))
            if other is None or other.status in TERMINAL_STATUSES:
                continue
            await self._lifecycle.mark_conflict(
                other.id,
                CONFLICT_DETECTOR_ACTOR,
                reason=f"Contradicted by new draft {rule.id} (conflict {conflict.id})",
            )

    async def pending_evidence_ids(self, limit: int | None = None) -> list[str]:
        """
        Evidence still needing work, oldest first.

        A snapshot is pending until it has a completed extraction run and
        none of its candidate facts is still waiting for composition.
        """
        pending: list[str] = []
        for evidence in await self._regulatory.list_evidence():
            extracted = await self._rules.has_completed_extraction(evidence.id)
            if extracted and not await self._rules.list_candidate_facts(evidence.id):
                continue
            pending.append(evidence.id)
            if limit is not None and len(pending) >= limit:
                break
        return pending

    async def run(
        self,
        evidence_ids: list[str] | None = None,
        limit: int | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> BatchResult[ExtractionOutcome]:
        """
        Extract the given evidence, or every pending snapshot.

        Each snapshot is isolated by the soft-fail runner.
        """
        ids = evidence_ids if evidence_ids is not None else await self.pending_evidence_ids(limit)
        logger.info("extraction_run_started", evidence=len(ids))

        with run_context(stage="extraction"):
            return await self._runner.run_batch(
                ids,
                lambda evidence_id, _index: self.extract_evidence(evidence_id),
                SoftFailContext(operation="extract_evidence", entity_type="evidence"),
                key=lambda evidence_id: evidence_id,
                cancel_event=cancel_event,
            )
