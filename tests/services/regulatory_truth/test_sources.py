"""
Tests for the Source Catalogue
==============================

Version: 0.1.0
"""

import pytest

from shared.models import AuthorityLevel, NodeRole
from services.regulatory_truth.data import REGULATORY_SOURCES, seed_sources
from services.regulatory_truth.storage import InMemoryRegulatoryStore
from tests.factories import FakeClock


class TestSeedSources:
    """Tests for seeding the built-in sources."""

    def test_catalogue_slugs_are_unique(self) -> None:
        """Test that every catalogue entry has its own slug and URL."""
        assert len({d.slug for d in REGULATORY_SOURCES}) == len(REGULATORY_SOURCES)
        assert len({d.url for d in REGULATORY_SOURCES}) == len(REGULATORY_SOURCES)

    def test_gazette_is_law(self) -> None:
        """Test that the official gazette carries the highest authority."""
        gazette = next(d for d in REGULATORY_SOURCES if d.slug == "narodne-novine")

        assert gazette.hierarchy == AuthorityLevel.LAW

    @pytest.mark.asyncio
    async def test_seed_creates_sources_and_entry_items(
        self,
        regulatory_store: InMemoryRegulatoryStore,
        clock: FakeClock,
    ) -> None:
        """Test the first seeding run."""
        report = await seed_sources(regulatory_store, clock=clock)

        assert len(report.created) == len(REGULATORY_SOURCES) == 7
        assert report.existing == []
        assert report.entry_items_created == 7

        items = await regulatory_store.list_items()
        assert len(items) == 7
        assert all(i.node_role == NodeRole.ENTRY_POINT for i in items)
        assert all(i.next_scan_due == clock.now for i in items)

    @pytest.mark.asyncio
    async def test_seed_is_idempotent(
        self,
        regulatory_store: InMemoryRegulatoryStore,
        clock: FakeClock,
    ) -> None:
        """Test that a second run changes nothing."""
        await seed_sources(regulatory_store, clock=clock)

        report = await seed_sources(regulatory_store, clock=clock)

        assert report.created == []
        assert len(report.existing) == 7
        assert report.entry_items_created == 0
        assert len(await regulatory_store.list_sources()) == 7
