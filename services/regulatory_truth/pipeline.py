"""
Pipeline Assembly
=================

Wires the stages of the regulatory truth pipeline around two stores:

    Sentinel -> Evidence -> Extraction -> Draft rules -> Conflicts
             -> Lifecycle gate -> Published rules

One RateLimiter is shared by every fetch. Batch stages run under the
soft-fail runner and report their failures to the watchdog.

Usage:
    pipeline = await RegulatoryTruthPipeline.from_settings()
    report = await pipeline.run_sentinel()
    await pipeline.run_extraction(report.evidence_ids)
    await pipeline.close()

Version: 0.1.0
"""

import asyncio
from collections.abc import Callable, Iterable, Sequence
from datetime import datetime
from typing import Any

import httpx

from shared.database.mongodb import MongoDBClient
from shared.logging import get_logger
from shared.models import utcnow
from services.regulatory_truth.agents import (
    ExtractionOutcome,
    ExtractionProvider,
    ExtractionStage,
    LLMExtractionProvider,
)
from services.regulatory_truth.conflicts import ConflictDetector, ConflictResolver, ResolutionOutcome
from services.regulatory_truth.content import EvidenceContentProvider
from services.regulatory_truth.data import SeedReport, seed_sources
from services.regulatory_truth.errors import ConfigurationError
from services.regulatory_truth.fetching import FetchClient, RateLimitConfig, RateLimiter
from services.regulatory_truth.lifecycle import PublishReport, RuleLifecycleManager
from services.regulatory_truth.provenance import ProvenanceValidator
from services.regulatory_truth.sentinel import AdaptiveScheduler, SentinelReport
from services.regulatory_truth.soft_fail import BatchResult, SoftFailRunner
from services.regulatory_truth.storage import (
    MongoRegulatoryStore,
    MongoRuleStore,
    RegulatoryStore,
    RuleStore,
)
from services.regulatory_truth.watchdog import AlertSink, DailyDigest, Watchdog

logger = get_logger(__name__)


class RegulatoryTruthPipeline:
    """All pipeline components, assembled once per process."""

    def __init__(
        self,
        regulatory_store: RegulatoryStore,
        rule_store: RuleStore,
        provider: ExtractionProvider | None = None,
        sinks: Sequence[AlertSink] | None = None,
        rate_limit: RateLimitConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], datetime] = utcnow,
        owns_mongo: bool = False,
    ) -> None:
        """
        Assemble the pipeline.

        Args:
            regulatory_store: Sources, items, evidence
            rule_store: Facts, pointers, rules, conflicts, alerts
            provider: Extraction/composition provider; extraction is
                unavailable without one
            sinks: Alert sinks (default: configured in settings)
            rate_limit: Per-domain limits (default from settings)
            transport: httpx transport for the fetch client (tests)
            clock: Time source for every stage
            owns_mongo: Close the shared Mongo client on ``close()``
        """
        self.regulatory_store = regulatory_store
        self.rule_store = rule_store
        self.provider = provider
        self._clock = clock
        self._owns_mongo = owns_mongo

        if sinks is None:
            self.watchdog = Watchdog.from_settings(rule_store, regulatory_store, clock=clock)
        else:
            self.watchdog = Watchdog(rule_store, regulatory_store, sinks=sinks, clock=clock)

        self.rate_limiter = RateLimiter(rate_limit)
        self.fetcher = FetchClient(
            self.rate_limiter,
            on_circuit_open=self.watchdog.on_circuit_open,
            transport=transport,
        )
        self.runner = SoftFailRunner(recorder=rule_store.record_soft_failure)
        self.content = EvidenceContentProvider(regulatory_store)
        self.validator = ProvenanceValidator(regulatory_store, self.content)

        self.lifecycle = RuleLifecycleManager(rule_store, self.validator, watchdog=self.watchdog, clock=clock)
        self.detector = ConflictDetector(rule_store)
        self.resolver = ConflictResolver(rule_store, self.lifecycle, watchdog=self.watchdog, clock=clock)
        self.scheduler = AdaptiveScheduler(
            regulatory_store,
            self.fetcher,
            self.runner,
            self.content,
            clock=clock,
        )

        self.extraction: ExtractionStage | None = None
        if provider is not None:
            self.extraction = ExtractionStage(
                regulatory_store,
                rule_store,
                provider,
                self.content,
                self.detector,
                self.lifecycle,
                self.runner,
                watchdog=self.watchdog,
                clock=clock,
            )

    @classmethod
    async def from_settings(cls, require_provider: bool = False) -> "RegulatoryTruthPipeline":
        """
        Build the pipeline on the configured MongoDB databases.

        Args:
            require_provider: Fail when the LLM provider is not configured

        Raises:
            ConfigurationError: Store unreachable, or provider required but
                not configured
        """
        health = await MongoDBClient.health_check()
        if health.get("status") != "healthy":
            await MongoDBClient.close()
            raise ConfigurationError(f"MongoDB unreachable: {health.get('error', 'ping failed')}")

        provider: ExtractionProvider | None = None
        try:
            provider = LLMExtractionProvider()
        except ValueError as e:
            if require_provider:
                await MongoDBClient.close()
                raise ConfigurationError(str(e)) from e
            logger.info("extraction_provider_unavailable", reason=str(e))

        await MongoDBClient.create_indexes()
        return cls(
            MongoRegulatoryStore(MongoDBClient.regulatory_database()),
            MongoRuleStore(MongoDBClient.core_database()),
            provider=provider,
            owns_mongo=True,
        )

    # -- Stages ----------------------------------------------------------

    async def seed(self) -> SeedReport:
        """Seed the built-in source catalogue."""
        return await seed_sources(self.regulatory_store, clock=self._clock)

    async def run_sentinel(
        self,
        source_id: str | None = None,
        limit: int | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> SentinelReport:
        """Scan due items and alert on failed scans."""
        report = await self.scheduler.run_due(source_id=source_id, limit=limit, cancel_event=cancel_event)
        await self.watchdog.check_batch("sentinel_scan", report.batch)
        return report

    async def run_extraction(
        self,
        evidence_ids: list[str] | None = None,
        limit: int | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> BatchResult[ExtractionOutcome]:
        """
        Extract the given evidence, or everything not yet extracted.

        Raises:
            ConfigurationError: If no extraction provider is configured
        """
        if self.extraction is None:
            raise ConfigurationError("No extraction provider configured (set ANTHROPIC_API_KEY)")

        batch = await self.extraction.run(evidence_ids, limit=limit, cancel_event=cancel_event)
        await self.watchdog.check_batch("extract_evidence", batch)
        return batch

    async def publish(self, rule_ids: Iterable[str], actor: str = "system") -> PublishReport:
        """Publish rules through the lifecycle gate."""
        return await self.lifecycle.publish_rules(rule_ids, actor)

    async def resolve_conflicts(self) -> list[ResolutionOutcome]:
        """Arbitrate every open conflict."""
        return await self.resolver.resolve_open()

    async def send_digest(self) -> DailyDigest:
        """Send the daily digest to every sink."""
        return await self.watchdog.send_daily_digest(self._clock())

    # -- Lifecycle -------------------------------------------------------

    async def health(self) -> dict[str, dict[str, Any]]:
        """Health of the store and the extraction provider."""
        components: dict[str, dict[str, Any]] = {}

        if self._owns_mongo:
            components["mongodb"] = await MongoDBClient.health_check()
        else:
            components["store"] = {"status": "healthy", "backend": type(self.rule_store).__name__}

        if self.provider is None:
            components["provider"] = {"status": "unconfigured"}
        else:
            components["provider"] = await self.provider.health_check()

        components["rate_limiter"] = {
            "status": "healthy",
            "open_circuits": [s.domain for s in self.rate_limiter.snapshot() if s.circuit_open],
        }
        return components

    async def close(self) -> None:
        """Release the HTTP client and, if owned, the Mongo client."""
        await self.fetcher.close()
        if self._owns_mongo:
            await MongoDBClient.close()
        logger.debug("pipeline_closed")
