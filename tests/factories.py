"""
Test Factories
==============

Builders and fakes shared by the regtruth test suite.
"""

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta
from typing import Any

import httpx

from shared.models import (
    AuthorityLevel,
    CandidateFact,
    Evidence,
    RegulatoryRule,
    RegulatorySource,
    RuleStatus,
    SourcePointer,
    WatchdogAlert,
)
from services.regulatory_truth.agents import (
    CompositionResult,
    DraftPointer,
    DraftRule,
    ExtractedFact,
    ExtractedQuote,
    ExtractionProvider,
    RunMeta,
    SchemaHint,
)
from services.regulatory_truth.errors import CompositionError, ExtractionError
from services.regulatory_truth.hashing import hash_content
from services.regulatory_truth.watchdog import AlertSink, DailyDigest

START = datetime(2025, 3, 1, 8, 0, tzinfo=UTC)


# =============================================================================
# Clocks
# =============================================================================


class FakeClock:
    """Wall clock that only moves when told to."""

    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeMonotonic:
    """Monotonic clock plus a sleep that advances it instantly."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


# =============================================================================
# Builders
# =============================================================================


def make_source(
    slug: str = "porezna-uprava",
    url: str = "https://www.porezna-uprava.hr/",
    hierarchy: AuthorityLevel = AuthorityLevel.GUIDANCE,
) -> RegulatorySource:
    return RegulatorySource(slug=slug, name=slug.replace("-", " ").title(), url=url, hierarchy=hierarchy)


def make_evidence(
    text: str = "Stopa PDV-a je 25%.",
    source_id: str = "src_test",
    url: str = "https://www.porezna-uprava.hr/pdv",
    content_type: str = "text",
    fetched_at: datetime = START,
) -> Evidence:
    return Evidence(
        source_id=source_id,
        url=url,
        content_hash=hash_content(text, content_type),
        raw_content=text,
        content_type=content_type,
        fetched_at=fetched_at,
    )


def make_pointer(
    evidence_id: str,
    quote: str = "Stopa PDV-a je 25%.",
    article_number: str | None = None,
) -> SourcePointer:
    return SourcePointer(evidence_id=evidence_id, exact_quote=quote, article_number=article_number)


def make_rule(
    value: str = "25%",
    concept_slug: str = "pdv-standard-rate",
    authority: AuthorityLevel = AuthorityLevel.GUIDANCE,
    status: RuleStatus = RuleStatus.DRAFT,
    confidence: float = 0.9,
    effective_from: date | None = None,
    effective_until: date | None = None,
    pointer_ids: Sequence[str] = (),
    with_lineage: bool = True,
) -> RegulatoryRule:
    return RegulatoryRule(
        concept_slug=concept_slug,
        value=value,
        authority_level=authority,
        status=status,
        confidence=confidence,
        effective_from=effective_from,
        effective_until=effective_until,
        source_pointer_ids=list(pointer_ids),
        originating_candidate_fact_ids=["cf_test"] if with_lineage else [],
        originating_agent_run_ids=["run_test"] if with_lineage else [],
    )


def make_fact(
    value: str = "25%",
    concept_slug: str = "pdv-standard-rate",
    quote: str = "Stopa PDV-a je 25%.",
    confidence: float = 0.95,
    article_number: str | None = None,
) -> ExtractedFact:
    return ExtractedFact(
        value=value,
        concept_slug=concept_slug,
        confidence=confidence,
        quotes=[ExtractedQuote(exact_quote=quote, article_number=article_number)],
    )


# =============================================================================
# Fakes
# =============================================================================


class FakeExtractionProvider(ExtractionProvider):
    """
    Deterministic provider.

    ``facts`` is returned for every evidence; ``fail_marker`` makes
    extraction fail for evidence whose text contains it. ``drafts``
    overrides draft fields per concept slug. The next ``compose_failures``
    compose calls raise CompositionError.
    """

    name = "fake"

    def __init__(
        self,
        facts: Sequence[ExtractedFact] = (),
        fail_marker: str | None = None,
        drafts: dict[str, dict[str, Any]] | None = None,
    ) -> None:
        self.facts = list(facts)
        self.fail_marker = fail_marker
        self.drafts = drafts or {}
        self.compose_failures = 0
        self.extract_calls: list[SchemaHint] = []
        self.compose_calls: list[RunMeta] = []

    async def extract(self, evidence_text: str, schema_hint: SchemaHint) -> list[ExtractedFact]:
        self.extract_calls.append(schema_hint)
        if self.fail_marker is not None and self.fail_marker in evidence_text:
            raise ExtractionError(f"Provider refused {schema_hint.url}")
        return list(self.facts)

    async def compose(self, candidate_facts: Sequence[CandidateFact], run_meta: RunMeta) -> CompositionResult:
        self.compose_calls.append(run_meta)
        if self.compose_failures > 0:
            self.compose_failures -= 1
            raise CompositionError(f"Composer unavailable for run {run_meta.agent_run_id}")
        best = max(candidate_facts, key=lambda f: f.confidence)
        draft = DraftRule(
            concept_slug=best.suggested_concept_slug,
            value=best.value,
            value_type=best.value_type,
            confidence=best.confidence,
        )
        overrides = self.drafts.get(best.suggested_concept_slug)
        if overrides:
            draft = draft.model_copy(update=overrides)

        pointers = [
            DraftPointer(
                evidence_id=quote.evidence_id,
                exact_quote=quote.exact_quote,
                article_number=quote.article_number,
                law_reference=quote.law_reference,
            )
            for fact in candidate_facts
            for quote in fact.grounding_quotes
        ]
        return CompositionResult(draft_rule=draft, source_pointers=pointers, agent_run_id=run_meta.agent_run_id)


class RecordingSink(AlertSink):
    """Sink that keeps what it was sent."""

    name = "recording"

    def __init__(self, deliver: bool = True) -> None:
        self.deliver = deliver
        self.alerts: list[WatchdogAlert] = []
        self.digests: list[DailyDigest] = []

    async def send(self, alert: WatchdogAlert) -> bool:
        self.alerts.append(alert)
        return self.deliver

    async def send_digest(self, digest: DailyDigest) -> bool:
        self.digests.append(digest)
        return self.deliver


class ExplodingSink(AlertSink):
    """Sink whose transport always raises."""

    name = "exploding"

    async def send(self, alert: WatchdogAlert) -> bool:
        raise RuntimeError("sink down")

    async def send_digest(self, digest: DailyDigest) -> bool:
        raise RuntimeError("sink down")


@dataclass
class Page:
    status: int
    body: bytes
    content_type: str


@dataclass
class SiteMap:
    """In-process web served through ``httpx.MockTransport``."""

    pages: dict[str, Page] = field(default_factory=dict)
    requests: list[str] = field(default_factory=list)

    def add(
        self,
        url: str,
        body: str | bytes,
        content_type: str = "text/html; charset=utf-8",
        status: int = 200,
    ) -> None:
        data = body.encode("utf-8") if isinstance(body, str) else body
        self.pages[url] = Page(status=status, body=data, content_type=content_type)

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requests.append(url)
        page = self.pages.get(url)
        if page is None:
            return httpx.Response(404, text="Not found")
        return httpx.Response(page.status, content=page.body, headers={"content-type": page.content_type})
