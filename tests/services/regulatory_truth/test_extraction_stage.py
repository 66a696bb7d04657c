"""
Tests for the Extraction Stage
==============================

Tests for:
- Quote gate on extracted facts
- Composition into DRAFT rules with verified pointers
- Conflict seeding for new drafts
- Failure isolation per evidence

Version: 0.1.0
"""

import pytest

from shared.models import (
    AgentRunStatus,
    AlertSeverity,
    AlertType,
    AuthorityLevel,
    CandidateFactStatus,
    Evidence,
    MatchType,
    RuleStatus,
)
from services.regulatory_truth.errors import ConfigurationError, ExtractionError
from services.regulatory_truth.pipeline import RegulatoryTruthPipeline
from services.regulatory_truth.storage import InMemoryRegulatoryStore, InMemoryRuleStore
from tests.factories import (
    FakeExtractionProvider,
    RecordingSink,
    make_evidence,
    make_fact,
    make_rule,
    make_source,
)

LAW_TEXT = "Članak 38. Stopa PDV-a je 25%. Porezni obveznik podnosi prijavu mjesečno."


async def law_evidence(
    store: InMemoryRegulatoryStore,
    text: str = LAW_TEXT,
    url: str = "https://narodne-novine.nn.hr/clanci/sluzbeni/2024_01_1.html",
) -> Evidence:
    source, _ = await store.upsert_source(
        make_source("narodne-novine", "https://narodne-novine.nn.hr/", AuthorityLevel.LAW)
    )
    evidence, _ = await store.create_evidence(make_evidence(text, source_id=source.id, url=url))
    return evidence


class TestExtraction:
    """Tests for extracting and composing one evidence snapshot."""

    @pytest.mark.asyncio
    async def test_grounded_fact_becomes_draft_rule(
        self,
        pipeline: RegulatoryTruthPipeline,
        regulatory_store: InMemoryRegulatoryStore,
        rule_store: InMemoryRuleStore,
        provider: FakeExtractionProvider,
    ) -> None:
        """Test that a grounded fact is composed into a DRAFT rule with lineage."""
        evidence = await law_evidence(regulatory_store)
        provider.facts = [make_fact("25%", article_number="Članak 38.")]

        batch = await pipeline.run_extraction([evidence.id])

        assert batch.succeeded == 1
        outcome = batch.results[0].value
        assert outcome is not None
        assert outcome.rejected_facts == 0
        assert len(outcome.candidate_fact_ids) == 1
        assert len(outcome.rule_ids) == 1
        assert provider.extract_calls[0].authority_level == AuthorityLevel.LAW

        rule = await rule_store.get_rule(outcome.rule_ids[0])
        assert rule is not None
        assert rule.status == RuleStatus.DRAFT
        assert rule.authority_level == AuthorityLevel.LAW
        assert rule.value == "25%"
        assert rule.originating_candidate_fact_ids == outcome.candidate_fact_ids
        assert outcome.agent_run_id in rule.originating_agent_run_ids
        assert len(rule.originating_agent_run_ids) == 2

        pointers = await rule_store.get_source_pointers(rule.source_pointer_ids)
        assert len(pointers) == 1
        assert pointers[0].evidence_id == evidence.id
        assert pointers[0].match_type == MatchType.EXACT
        assert pointers[0].article_number == "Članak 38."

        facts = await rule_store.get_candidate_facts(outcome.candidate_fact_ids)
        assert facts[0].status == CandidateFactStatus.PROMOTED
        assert facts[0].promoted_to_rule_id == rule.id

        run = await rule_store.get_agent_run(outcome.agent_run_id)
        assert run is not None
        assert run.status == AgentRunStatus.COMPLETED
        assert run.output_ids == outcome.candidate_fact_ids

    @pytest.mark.asyncio
    async def test_ungrounded_fact_is_rejected(
        self,
        pipeline: RegulatoryTruthPipeline,
        regulatory_store: InMemoryRegulatoryStore,
        rule_store: InMemoryRuleStore,
        provider: FakeExtractionProvider,
        sink: RecordingSink,
    ) -> None:
        """Test that a fact whose quote is not in the evidence is dropped."""
        evidence = await law_evidence(regulatory_store)
        provider.facts = [
            make_fact("25%"),
            make_fact("13%", concept_slug="pdv-reduced-rate", quote="Snižena stopa iznosi 13%."),
        ]

        batch = await pipeline.run_extraction([evidence.id])

        outcome = batch.results[0].value
        assert outcome is not None
        assert outcome.rejected_facts == 1
        assert len(outcome.rule_ids) == 1

        rules = await rule_store.list_rules()
        assert [r.concept_slug for r in rules] == ["pdv-standard-rate"]

        alerts = await rule_store.list_alerts(evidence.fetched_at)
        assert [a.type for a in alerts] == [AlertType.EXTRACTION_REJECTED]
        assert alerts[0].severity == AlertSeverity.WARNING
        assert sink.alerts == []

    @pytest.mark.asyncio
    async def test_facts_are_grouped_by_concept(
        self,
        pipeline: RegulatoryTruthPipeline,
        regulatory_store: InMemoryRegulatoryStore,
        provider: FakeExtractionProvider,
    ) -> None:
        """Test that one composition runs per concept."""
        evidence = await law_evidence(regulatory_store)
        provider.facts = [
            make_fact("25%", confidence=0.8),
            make_fact("25%", confidence=0.9, quote="Članak 38. Stopa PDV-a je 25%."),
            make_fact("Mjesečno", concept_slug="pdv-filing-period", quote="podnosi prijavu mjesečno"),
        ]

        batch = await pipeline.run_extraction([evidence.id])

        outcome = batch.results[0].value
        assert outcome is not None
        assert len(outcome.rule_ids) == 2
        assert len(provider.compose_calls) == 2

    @pytest.mark.asyncio
    async def test_new_draft_conflicting_with_existing_rule(
        self,
        pipeline: RegulatoryTruthPipeline,
        regulatory_store: InMemoryRegulatoryStore,
        rule_store: InMemoryRuleStore,
        provider: FakeExtractionProvider,
    ) -> None:
        """Test that a contradicting draft and the rule it contradicts move to CONFLICT."""
        existing = make_rule("13%", status=RuleStatus.APPROVED)
        await rule_store.save_rule(existing)
        evidence = await law_evidence(regulatory_store)
        provider.facts = [make_fact("25%")]

        batch = await pipeline.run_extraction([evidence.id])

        outcome = batch.results[0].value
        assert outcome is not None
        assert len(outcome.conflict_ids) == 1

        rule = await rule_store.get_rule(outcome.rule_ids[0])
        assert rule is not None
        assert rule.status == RuleStatus.CONFLICT
        assert rule.history[-1].actor == "conflict_detector"

        conflict = await rule_store.get_conflict(outcome.conflict_ids[0])
        assert conflict is not None
        assert conflict.involves(existing.id)

        counterpart = await rule_store.get_rule(existing.id)
        assert counterpart is not None
        assert counterpart.status == RuleStatus.CONFLICT
        assert counterpart.history[-1].actor == "conflict_detector"
        assert counterpart.history[-1].from_status == RuleStatus.APPROVED

    @pytest.mark.asyncio
    async def test_published_counterpart_keeps_status(
        self,
        pipeline: RegulatoryTruthPipeline,
        regulatory_store: InMemoryRegulatoryStore,
        rule_store: InMemoryRuleStore,
        provider: FakeExtractionProvider,
    ) -> None:
        """Test that a published rule contradicted by a new draft stays PUBLISHED."""
        existing = make_rule("13%", status=RuleStatus.PUBLISHED)
        await rule_store.save_rule(existing)
        evidence = await law_evidence(regulatory_store)
        provider.facts = [make_fact("25%")]

        batch = await pipeline.run_extraction([evidence.id])

        outcome = batch.results[0].value
        assert outcome is not None
        assert len(outcome.conflict_ids) == 1

        rule = await rule_store.get_rule(outcome.rule_ids[0])
        assert rule is not None and rule.status == RuleStatus.CONFLICT
        counterpart = await rule_store.get_rule(existing.id)
        assert counterpart is not None
        assert counterpart.status == RuleStatus.PUBLISHED
        assert counterpart.history == []

    @pytest.mark.asyncio
    async def test_draft_override_of_authority(
        self,
        pipeline: RegulatoryTruthPipeline,
        regulatory_store: InMemoryRegulatoryStore,
        rule_store: InMemoryRuleStore,
        provider: FakeExtractionProvider,
    ) -> None:
        """Test that a composed authority level wins over the source default."""
        evidence = await law_evidence(regulatory_store)
        provider.facts = [make_fact("25%")]
        provider.drafts = {"pdv-standard-rate": {"authority_level": AuthorityLevel.REGULATION}}

        batch = await pipeline.run_extraction([evidence.id])

        outcome = batch.results[0].value
        assert outcome is not None
        rule = await rule_store.get_rule(outcome.rule_ids[0])
        assert rule is not None and rule.authority_level == AuthorityLevel.REGULATION


class TestExtractionFailures:
    """Tests for failure isolation."""

    @pytest.mark.asyncio
    async def test_provider_failure_fails_the_run(
        self,
        pipeline: RegulatoryTruthPipeline,
        regulatory_store: InMemoryRegulatoryStore,
        rule_store: InMemoryRuleStore,
        provider: FakeExtractionProvider,
    ) -> None:
        """Test that a provider error surfaces and marks the agent run FAILED."""
        evidence = await law_evidence(regulatory_store)
        provider.fail_marker = "Članak 38."
        assert pipeline.extraction is not None

        with pytest.raises(ExtractionError):
            await pipeline.extraction.extract_evidence(evidence.id)

        assert await rule_store.has_completed_extraction(evidence.id) is False
        assert await rule_store.list_rules() == []

    @pytest.mark.asyncio
    async def test_one_bad_snapshot_does_not_stop_the_batch(
        self,
        pipeline: RegulatoryTruthPipeline,
        regulatory_store: InMemoryRegulatoryStore,
        rule_store: InMemoryRuleStore,
        provider: FakeExtractionProvider,
        sink: RecordingSink,
    ) -> None:
        """Test per-evidence isolation and the batch alert."""
        good = await law_evidence(regulatory_store)
        bad = await law_evidence(
            regulatory_store,
            text="BROKEN Stopa PDV-a je 25%.",
            url="https://narodne-novine.nn.hr/clanci/sluzbeni/2024_01_2.html",
        )
        provider.facts = [make_fact("25%")]
        provider.fail_marker = "BROKEN"

        batch = await pipeline.run_extraction([good.id, bad.id, "ev_missing"])

        assert batch.succeeded == 1
        assert batch.failed == 2
        failures = await rule_store.list_soft_failures()
        assert sorted(f.error_type for f in failures) == ["EvidenceNotFoundError", "ExtractionError"]

        assert [a.type for a in sink.alerts] == [AlertType.BATCH_FAILURE]
        assert sink.alerts[0].severity == AlertSeverity.CRITICAL

    @pytest.mark.asyncio
    async def test_failed_composition_is_retried(
        self,
        pipeline: RegulatoryTruthPipeline,
        regulatory_store: InMemoryRegulatoryStore,
        rule_store: InMemoryRuleStore,
        provider: FakeExtractionProvider,
    ) -> None:
        """Test that facts left by a failed composition are composed by the next run."""
        evidence = await law_evidence(regulatory_store)
        provider.facts = [make_fact("25%"), make_fact("mjesečno", "pdv-filing-period", "prijavu mjesečno")]
        provider.compose_failures = 1
        assert pipeline.extraction is not None

        first = await pipeline.run_extraction()

        assert first.failed == 1
        assert [f.error_type for f in await rule_store.list_soft_failures()] == ["CompositionError"]
        assert await rule_store.list_rules() == []
        assert await pipeline.extraction.pending_evidence_ids() == [evidence.id]

        second = await pipeline.run_extraction()

        assert second.total == 1
        assert second.succeeded == 1
        assert len(provider.extract_calls) == 1
        outcome = second.results[0].value
        assert outcome is not None
        assert len(outcome.rule_ids) == 2

        rules = await rule_store.list_rules()
        assert sorted(r.concept_slug for r in rules) == ["pdv-filing-period", "pdv-standard-rate"]
        assert all(r.status == RuleStatus.DRAFT for r in rules)

        facts = await rule_store.get_candidate_facts(outcome.candidate_fact_ids)
        assert all(f.status == CandidateFactStatus.PROMOTED for f in facts)
        assert await pipeline.extraction.pending_evidence_ids() == []

    @pytest.mark.asyncio
    async def test_extraction_requires_provider(
        self,
        regulatory_store: InMemoryRegulatoryStore,
        rule_store: InMemoryRuleStore,
    ) -> None:
        """Test that extraction without a provider is a configuration error."""
        pipeline = RegulatoryTruthPipeline(regulatory_store, rule_store, sinks=[])

        with pytest.raises(ConfigurationError):
            await pipeline.run_extraction()
        await pipeline.close()


class TestPendingEvidence:
    """Tests for selecting evidence that still needs extraction."""

    @pytest.mark.asyncio
    async def test_completed_evidence_is_skipped(
        self,
        pipeline: RegulatoryTruthPipeline,
        regulatory_store: InMemoryRegulatoryStore,
        provider: FakeExtractionProvider,
    ) -> None:
        """Test that only unextracted snapshots are pending."""
        first = await law_evidence(regulatory_store)
        second = await law_evidence(
            regulatory_store,
            text="Stopa PDV-a je 25%.",
            url="https://narodne-novine.nn.hr/clanci/sluzbeni/2024_01_3.html",
        )
        provider.facts = [make_fact("25%")]
        assert pipeline.extraction is not None

        await pipeline.run_extraction([first.id])

        assert await pipeline.extraction.pending_evidence_ids() == [second.id]

        batch = await pipeline.run_extraction()

        assert batch.total == 1
        assert await pipeline.extraction.pending_evidence_ids() == []


class TestEndToEnd:
    """Tests for the full path from evidence to a published rule."""

    @pytest.mark.asyncio
    async def test_extract_review_approve_publish(
        self,
        pipeline: RegulatoryTruthPipeline,
        regulatory_store: InMemoryRegulatoryStore,
        rule_store: InMemoryRuleStore,
        provider: FakeExtractionProvider,
    ) -> None:
        """Test that a grounded extraction can be published."""
        evidence = await law_evidence(regulatory_store)
        provider.facts = [make_fact("25%")]

        batch = await pipeline.run_extraction([evidence.id])
        outcome = batch.results[0].value
        assert outcome is not None
        rule_id = outcome.rule_ids[0]

        assert (await pipeline.lifecycle.submit_for_review(rule_id)).success is True
        assert (await pipeline.lifecycle.approve(rule_id, actor="reviewer")).success is True
        report = await pipeline.publish([rule_id], actor="editor")

        assert report.published == [rule_id]
        rule = await rule_store.get_rule(rule_id)
        assert rule is not None
        assert rule.status == RuleStatus.PUBLISHED
        assert [h.to_status for h in rule.history] == [
            RuleStatus.PENDING_REVIEW,
            RuleStatus.APPROVED,
            RuleStatus.PUBLISHED,
        ]
