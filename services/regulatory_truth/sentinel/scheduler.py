"""
Adaptive Scheduler (Sentinel)
=============================

Scans due DiscoveredItems, oldest-fetched source first:

1. Classify the URL on its first scan
2. Fetch through the rate-limited client
3. Hash and compare with the stored hash
4. Update the velocity profile and compute the next scan time
5. On change, capture an immutable Evidence snapshot
6. On HUB pages, register newly discovered links as items

Fetch failures propagate to the soft-fail runner; the item keeps its
``next_scan_due`` so the next run retries it.

Version: 0.1.0
"""

import asyncio
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

from shared.config import settings
from shared.logging import get_logger, run_context
from shared.models import DiscoveredItem, Evidence, NodeType, RegulatorySource, utcnow
from services.regulatory_truth.content import EvidenceContentProvider
from services.regulatory_truth.errors import SourceNotFoundError, StoreConsistencyError
from services.regulatory_truth.fetching import FetchClient, FetchResult, domain_of
from services.regulatory_truth.hashing import detect_change, hash_raw_content
from services.regulatory_truth.sentinel.classifier import classify_url, compute_next_scan
from services.regulatory_truth.sentinel.discovery import discover_links
from services.regulatory_truth.sentinel.velocity import describe_velocity, update_velocity
from services.regulatory_truth.soft_fail import BatchResult, SoftFailContext, SoftFailRunner
from services.regulatory_truth.storage import RegulatoryStore

logger = get_logger(__name__)


@dataclass(frozen=True)
class ScanOutcome:
    """Result of scanning one item."""

    item_id: str
    url: str
    changed: bool
    next_scan_due: datetime
    evidence_id: str | None = None
    evidence_created: bool = False
    discovered: int = 0


@dataclass
class SentinelReport:
    """Summary of one scheduler run."""

    due: int = 0
    batch: BatchResult[ScanOutcome] = field(default_factory=BatchResult)

    @property
    def outcomes(self) -> list[ScanOutcome]:
        return [r.value for r in self.batch.results if r.ok and r.value is not None]

    @property
    def evidence_ids(self) -> list[str]:
        return [o.evidence_id for o in self.outcomes if o.evidence_created and o.evidence_id]

    @property
    def changed(self) -> int:
        return sum(1 for o in self.outcomes if o.changed)

    @property
    def discovered(self) -> int:
        return sum(o.discovered for o in self.outcomes)


def new_item(source_id: str, url: str, now: datetime) -> DiscoveredItem:
    """A classified item, due immediately."""
    classification = classify_url(url)
    return DiscoveredItem(
        source_id=source_id,
        url=url,
        node_type=classification.node_type,
        node_role=classification.node_role,
        freshness_risk=classification.freshness_risk,
        classified=True,
        next_scan_due=now,
        discovered_at=now,
    )


class AdaptiveScheduler:
    """Velocity- and risk-driven scanner of monitored items."""

    def __init__(
        self,
        store: RegulatoryStore,
        fetcher: FetchClient,
        runner: SoftFailRunner,
        content: EvidenceContentProvider,
        clock: Callable[[], datetime] = utcnow,
        batch_limit: int | None = None,
        max_concurrent_domains: int | None = None,
        max_discovered_links: int | None = None,
    ) -> None:
        self._store = store
        self._fetcher = fetcher
        self._runner = runner
        self._content = content
        self._clock = clock
        self.batch_limit = batch_limit or settings.sentinel.scan_batch_limit
        self.max_concurrent_domains = max_concurrent_domains or settings.sentinel.max_concurrent_domains
        self.max_discovered_links = max_discovered_links or settings.sentinel.max_discovered_links

    async def ensure_entry_item(self, source: RegulatorySource) -> DiscoveredItem:
        """Register the source's base URL as a monitored item (idempotent)."""
        item = new_item(source.id, source.url, self._clock())
        if await self._store.add_item_if_new(item):
            logger.info("entry_item_registered", source=source.slug, url=source.url)
            return item

        existing = await self._store.get_item_by_url(source.url)
        if existing is None:
            raise StoreConsistencyError("discovered_items", source.url)
        return existing

    async def run_due(
        self,
        source_id: str | None = None,
        limit: int | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> SentinelReport:
        """
        Scan every due item, grouping by domain.

        Args:
            source_id: Restrict the run to one source
            limit: Maximum items to scan (default from settings)
            cancel_event: Cooperative cancellation between items

        Raises:
            SourceNotFoundError: If ``source_id`` does not exist
        """
        if source_id is not None:
            source = await self._store.get_source(source_id)
            if source is None:
                raise SourceNotFoundError(source_id)
            sources = [source]
        else:
            sources = await self._store.list_sources(active_only=True)

        for source in sources:
            await self.ensure_entry_item(source)

        now = self._clock()
        due = await self._store.list_due_items(now, limit or self.batch_limit, source_id=source_id)

        groups: dict[str, list[DiscoveredItem]] = defaultdict(list)
        for item in due:
            groups[domain_of(item.url)].append(item)

        logger.info("sentinel_run_started", due=len(due), domains=len(groups), source_id=source_id)

        with run_context(stage="sentinel"):
            batch = await self._runner.run_grouped(
                groups,
                lambda item, _index: self.scan_item(item),
                SoftFailContext(operation="sentinel_scan", entity_type="discovered_item"),
                key=lambda item: item.id,
                max_concurrency=self.max_concurrent_domains,
                cancel_event=cancel_event,
            )
        report = SentinelReport(due=len(due), batch=batch)

        logger.info(
            "sentinel_run_completed",
            scanned=batch.total,
            failed=batch.failed,
            changed=report.changed,
            new_evidence=len(report.evidence_ids),
            discovered=report.discovered,
        )
        return report

    def _fingerprint(self, item: DiscoveredItem, result: FetchResult) -> tuple[bool, str]:
        if result.is_binary:
            new_hash = hash_raw_content(result.raw_bytes)
            return new_hash != item.last_content_hash, new_hash

        change = detect_change(
            result.body,
            item.last_content_hash,
            result.content_type_header or result.content_type,
        )
        return change.has_changed, change.new_hash

    async def scan_item(self, item: DiscoveredItem) -> ScanOutcome:
        """
        Scan one item and persist the outcome.

        Raises:
            SourceNotFoundError: If the item's source is gone
            CircuitOpenError: If the item's domain breaker is open
            FetchError: If the fetch fails
        """
        source = await self._store.get_source(item.source_id)
        if source is None:
            raise SourceNotFoundError(item.source_id)

        if not item.classified:
            classification = classify_url(item.url)
            item.node_type = classification.node_type
            item.node_role = classification.node_role
            item.freshness_risk = classification.freshness_risk
            item.classified = True

        result = await self._fetcher.fetch(item.url)
        now = self._clock()

        changed, new_hash = self._fingerprint(item, result)
        velocity = update_velocity(item.change_frequency, item.scan_count, changed, now)

        item.change_frequency = velocity.new_frequency
        if velocity.last_changed_at is not None:
            item.last_changed_at = velocity.last_changed_at
        item.scan_count += 1
        item.last_scanned_at = now
        item.last_content_hash = new_hash
        item.next_scan_due = compute_next_scan(item.change_frequency, item.freshness_risk, now)

        evidence_id: str | None = None
        evidence_created = False
        if changed:
            evidence, evidence_created = await self._store.create_evidence(
                Evidence(
                    source_id=source.id,
                    url=item.url,
                    content_hash=new_hash,
                    raw_content=result.body,
                    content_type=result.content_type,
                    fetched_at=now,
                )
            )
            evidence = await self._content.ensure_artifact(evidence)
            evidence_id = evidence.id

        discovered = 0
        if item.node_type == NodeType.HUB and result.content_type == "html":
            discovered = await self._register_links(source, result.body, item.url, now)

        await self._store.save_item(item)
        await self._store.mark_source_fetched(source.id, now)

        logger.info(
            "item_scanned",
            item_id=item.id,
            url=item.url,
            changed=changed,
            risk=item.freshness_risk.value,
            velocity=describe_velocity(item.change_frequency),
            next_scan_due=item.next_scan_due.isoformat(),
            evidence_id=evidence_id,
            discovered=discovered,
        )

        return ScanOutcome(
            item_id=item.id,
            url=item.url,
            changed=changed,
            next_scan_due=item.next_scan_due,
            evidence_id=evidence_id,
            evidence_created=evidence_created,
            discovered=discovered,
        )

    async def _register_links(
        self,
        source: RegulatorySource,
        html: str,
        base_url: str,
        now: datetime,
    ) -> int:
        registered = 0
        for url in discover_links(html, base_url, limit=self.max_discovered_links):
            if await self._store.add_item_if_new(new_item(source.id, url, now)):
                registered += 1

        if registered:
            logger.info("items_discovered", source=source.slug, hub=base_url, count=registered)
        return registered
