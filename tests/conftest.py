"""
Test Configuration
==================

Pytest fixtures for regtruth tests. Everything runs on the in-memory
stores with a controllable clock; no network, no database.
"""

import os

# Set test environment before settings are loaded
os.environ["ENVIRONMENT"] = "testing"
os.environ["ANTHROPIC_API_KEY"] = ""
os.environ["ALERT_CHAT_WEBHOOK_URL"] = ""
os.environ["ALERT_ADMIN_EMAIL"] = ""

from collections.abc import AsyncGenerator

import httpx
import pytest
import pytest_asyncio

from services.regulatory_truth.content import EvidenceContentProvider
from services.regulatory_truth.fetching import RateLimitConfig
from services.regulatory_truth.lifecycle import RuleLifecycleManager
from services.regulatory_truth.pipeline import RegulatoryTruthPipeline
from services.regulatory_truth.provenance import ProvenanceValidator
from services.regulatory_truth.storage import InMemoryRegulatoryStore, InMemoryRuleStore
from services.regulatory_truth.watchdog import Watchdog
from tests.factories import FakeClock, FakeExtractionProvider, RecordingSink, SiteMap


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    """Use asyncio backend for async tests."""
    return "asyncio"


@pytest.fixture
def clock() -> FakeClock:
    """Controllable wall clock starting at 2025-03-01 08:00 UTC."""
    return FakeClock()


@pytest.fixture
def regulatory_store() -> InMemoryRegulatoryStore:
    return InMemoryRegulatoryStore()


@pytest.fixture
def rule_store() -> InMemoryRuleStore:
    return InMemoryRuleStore()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def watchdog(
    rule_store: InMemoryRuleStore,
    regulatory_store: InMemoryRegulatoryStore,
    sink: RecordingSink,
    clock: FakeClock,
) -> Watchdog:
    return Watchdog(rule_store, regulatory_store, sinks=[sink], clock=clock)


@pytest.fixture
def content(regulatory_store: InMemoryRegulatoryStore) -> EvidenceContentProvider:
    return EvidenceContentProvider(regulatory_store)


@pytest.fixture
def validator(
    regulatory_store: InMemoryRegulatoryStore,
    content: EvidenceContentProvider,
) -> ProvenanceValidator:
    return ProvenanceValidator(regulatory_store, content)


@pytest.fixture
def lifecycle(
    rule_store: InMemoryRuleStore,
    validator: ProvenanceValidator,
    watchdog: Watchdog,
    clock: FakeClock,
) -> RuleLifecycleManager:
    return RuleLifecycleManager(
        rule_store,
        validator,
        watchdog=watchdog,
        min_confidence=0.7,
        block_on_open_conflicts=True,
        clock=clock,
    )


@pytest.fixture
def site() -> SiteMap:
    """Fake web served through httpx.MockTransport."""
    return SiteMap()


@pytest.fixture
def provider() -> FakeExtractionProvider:
    return FakeExtractionProvider()


@pytest_asyncio.fixture
async def pipeline(
    regulatory_store: InMemoryRegulatoryStore,
    rule_store: InMemoryRuleStore,
    provider: FakeExtractionProvider,
    sink: RecordingSink,
    site: SiteMap,
    clock: FakeClock,
) -> AsyncGenerator[RegulatoryTruthPipeline, None]:
    """Fully wired pipeline on in-memory stores and a fake web."""
    instance = RegulatoryTruthPipeline(
        regulatory_store,
        rule_store,
        provider=provider,
        sinks=[sink],
        rate_limit=RateLimitConfig(request_delay_ms=0),
        transport=httpx.MockTransport(site.handler),
        clock=clock,
    )
    yield instance
    await instance.close()
