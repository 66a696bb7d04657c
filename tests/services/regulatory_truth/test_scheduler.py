"""
Tests for the Adaptive Scheduler
================================

Tests for:
- Entry item registration and hub discovery
- Change detection across rescans
- Soft failure of unreachable items

Version: 0.1.0
"""

import pytest

from shared.models import AlertSeverity, AlertType, FreshnessRisk, NodeType, RegulatorySource
from services.regulatory_truth.errors import SourceNotFoundError, StoreConsistencyError
from services.regulatory_truth.pipeline import RegulatoryTruthPipeline
from services.regulatory_truth.storage import InMemoryRegulatoryStore, InMemoryRuleStore
from tests.factories import START, FakeClock, RecordingSink, SiteMap, make_source

ROOT = "https://www.porezna-uprava.hr/"

HUB_PAGE = """
<html><body>
  <nav><a href="/vijesti">Vijesti</a> <a href="/misljenja/pdv.html">Mišljenja</a></nav>
  <p>Porezna uprava</p>
</body></html>
"""

PLAIN_PAGE = "<html><body><p>Stopa PDV-a je 25%.</p><script>var build = 1;</script></body></html>"


async def seeded_source(store: InMemoryRegulatoryStore) -> RegulatorySource:
    source, _ = await store.upsert_source(make_source(url=ROOT))
    return source


class TestSentinelRun:
    """Tests for scanning due items."""

    @pytest.mark.asyncio
    async def test_first_scan_captures_evidence_and_discovers_links(
        self,
        pipeline: RegulatoryTruthPipeline,
        regulatory_store: InMemoryRegulatoryStore,
        site: SiteMap,
    ) -> None:
        """Test that the entry hub is snapshotted and its links registered."""
        source = await seeded_source(regulatory_store)
        site.add(ROOT, HUB_PAGE)

        report = await pipeline.run_sentinel(source.id)

        assert report.due == 1
        assert len(report.evidence_ids) == 1
        assert report.changed == 1
        assert report.discovered == 2
        assert site.requests == [ROOT]

        evidence = await regulatory_store.get_evidence(report.evidence_ids[0])
        assert evidence is not None
        assert evidence.url == ROOT
        assert evidence.content_type == "html"
        assert evidence.source_id == source.id

        items = {i.url: i for i in await regulatory_store.list_items(source.id)}
        assert set(items) == {
            ROOT,
            "https://www.porezna-uprava.hr/vijesti",
            "https://www.porezna-uprava.hr/misljenja/pdv.html",
        }
        root = items[ROOT]
        assert root.node_type == NodeType.HUB
        assert root.scan_count == 1
        assert root.next_scan_due == START.replace(hour=14)
        assert items["https://www.porezna-uprava.hr/vijesti"].freshness_risk == FreshnessRisk.CRITICAL

        refreshed = await regulatory_store.get_source(source.id)
        assert refreshed is not None and refreshed.last_fetched_at == START

    @pytest.mark.asyncio
    async def test_nothing_due_before_next_scan(
        self,
        pipeline: RegulatoryTruthPipeline,
        regulatory_store: InMemoryRegulatoryStore,
        site: SiteMap,
        clock: FakeClock,
    ) -> None:
        """Test that a scanned item waits for its interval."""
        source = await seeded_source(regulatory_store)
        site.add(ROOT, PLAIN_PAGE)
        await pipeline.run_sentinel(source.id)

        clock.advance(hours=1)
        report = await pipeline.run_sentinel(source.id)

        assert report.due == 0
        assert site.requests == [ROOT]

    @pytest.mark.asyncio
    async def test_unchanged_rescan(
        self,
        pipeline: RegulatoryTruthPipeline,
        regulatory_store: InMemoryRegulatoryStore,
        site: SiteMap,
        clock: FakeClock,
    ) -> None:
        """Test that identical content creates no new evidence."""
        source = await seeded_source(regulatory_store)
        site.add(ROOT, PLAIN_PAGE)
        await pipeline.run_sentinel(source.id)

        clock.advance(hours=7)
        report = await pipeline.run_sentinel(source.id)

        assert report.due == 1
        assert report.changed == 0
        assert report.evidence_ids == []
        assert len(await regulatory_store.list_evidence()) == 1

        item = await regulatory_store.get_item_by_url(ROOT)
        assert item is not None
        assert item.scan_count == 2
        assert item.last_scanned_at == clock.now

    @pytest.mark.asyncio
    async def test_changed_content_creates_evidence(
        self,
        pipeline: RegulatoryTruthPipeline,
        regulatory_store: InMemoryRegulatoryStore,
        site: SiteMap,
        clock: FakeClock,
    ) -> None:
        """Test that a content change snapshots new evidence."""
        source = await seeded_source(regulatory_store)
        site.add(ROOT, PLAIN_PAGE)
        first = await pipeline.run_sentinel(source.id)

        clock.advance(hours=7)
        site.add(ROOT, PLAIN_PAGE.replace("25%", "13%"))
        second = await pipeline.run_sentinel(source.id)

        assert len(second.evidence_ids) == 1
        assert second.evidence_ids != first.evidence_ids
        latest = await regulatory_store.latest_evidence_for_url(ROOT)
        assert latest is not None and "13%" in latest.raw_content

        item = await regulatory_store.get_item_by_url(ROOT)
        assert item is not None and item.last_changed_at == clock.now

    @pytest.mark.asyncio
    async def test_script_churn_is_not_a_change(
        self,
        pipeline: RegulatoryTruthPipeline,
        regulatory_store: InMemoryRegulatoryStore,
        site: SiteMap,
        clock: FakeClock,
    ) -> None:
        """Test that a rebuilt script block does not count as a change."""
        source = await seeded_source(regulatory_store)
        site.add(ROOT, PLAIN_PAGE)
        await pipeline.run_sentinel(source.id)

        clock.advance(hours=7)
        site.add(ROOT, PLAIN_PAGE.replace("var build = 1;", "var build = 2;"))
        report = await pipeline.run_sentinel(source.id)

        assert report.changed == 0
        assert len(await regulatory_store.list_evidence()) == 1

    @pytest.mark.asyncio
    async def test_failed_fetch_is_soft(
        self,
        pipeline: RegulatoryTruthPipeline,
        regulatory_store: InMemoryRegulatoryStore,
        rule_store: InMemoryRuleStore,
        site: SiteMap,
        sink: RecordingSink,
    ) -> None:
        """Test that a 500 is recorded, alerted and retried on the next run."""
        source = await seeded_source(regulatory_store)
        site.add(ROOT, "Internal error", status=500)

        report = await pipeline.run_sentinel(source.id)

        assert report.batch.failed == 1
        assert report.evidence_ids == []

        failures = await rule_store.list_soft_failures()
        assert len(failures) == 1
        assert failures[0].operation == "sentinel_scan"
        assert failures[0].error_type == "FetchError"

        item = await regulatory_store.get_item_by_url(ROOT)
        assert item is not None
        assert item.next_scan_due == START
        assert item.scan_count == 0

        assert [a.type for a in sink.alerts] == [AlertType.BATCH_FAILURE]
        assert sink.alerts[0].severity == AlertSeverity.CRITICAL

    @pytest.mark.asyncio
    async def test_unknown_source(self, pipeline: RegulatoryTruthPipeline) -> None:
        """Test scanning a source that does not exist."""
        with pytest.raises(SourceNotFoundError):
            await pipeline.run_sentinel("src_missing")

    @pytest.mark.asyncio
    async def test_entry_item_is_registered_once(
        self,
        pipeline: RegulatoryTruthPipeline,
        regulatory_store: InMemoryRegulatoryStore,
    ) -> None:
        """Test that registering the entry point twice keeps one item."""
        source = await seeded_source(regulatory_store)

        first = await pipeline.scheduler.ensure_entry_item(source)
        second = await pipeline.scheduler.ensure_entry_item(source)

        assert first.id == second.id
        assert len(await regulatory_store.list_items(source.id)) == 1

    @pytest.mark.asyncio
    async def test_entry_item_missing_after_write(
        self,
        pipeline: RegulatoryTruthPipeline,
        regulatory_store: InMemoryRegulatoryStore,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """Test that an existing entry item that cannot be read back is a typed error."""
        source = await seeded_source(regulatory_store)
        await pipeline.scheduler.ensure_entry_item(source)

        async def lookup_nothing(url: str) -> None:
            return None

        monkeypatch.setattr(regulatory_store, "get_item_by_url", lookup_nothing)

        with pytest.raises(StoreConsistencyError) as exc_info:
            await pipeline.scheduler.ensure_entry_item(source)

        assert exc_info.value.key == ROOT
