"""
Source Catalogue
================

Built-in catalogue of Croatian regulatory sources monitored by default.

Seeding is idempotent by slug: existing sources are left untouched and
every source gets its entry DiscoveredItem.

Version: 0.1.0
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

from shared.logging import get_logger
from shared.models import AuthorityLevel, RegulatorySource, utcnow
from services.regulatory_truth.sentinel.scheduler import new_item
from services.regulatory_truth.storage import RegulatoryStore

logger = get_logger(__name__)


@dataclass(frozen=True)
class SourceDefinition:
    """Catalogue entry for one regulatory source."""

    slug: str
    name: str
    url: str
    hierarchy: AuthorityLevel
    fetch_interval_hours: int = 24

    def to_source(self, now: datetime) -> RegulatorySource:
        return RegulatorySource(
            slug=self.slug,
            name=self.name,
            url=self.url,
            hierarchy=self.hierarchy,
            fetch_interval_hours=self.fetch_interval_hours,
            created_at=now,
        )


REGULATORY_SOURCES: tuple[SourceDefinition, ...] = (
    SourceDefinition(
        slug="narodne-novine",
        name="Narodne novine",
        url="https://narodne-novine.nn.hr/",
        hierarchy=AuthorityLevel.LAW,
    ),
    SourceDefinition(
        slug="porezna-uprava",
        name="Porezna uprava",
        url="https://www.porezna-uprava.hr/",
        hierarchy=AuthorityLevel.GUIDANCE,
    ),
    SourceDefinition(
        slug="mfin",
        name="Ministarstvo financija",
        url="https://mfin.gov.hr/",
        hierarchy=AuthorityLevel.REGULATION,
    ),
    SourceDefinition(
        slug="hnb",
        name="Hrvatska narodna banka",
        url="https://www.hnb.hr/",
        hierarchy=AuthorityLevel.REGULATION,
    ),
    SourceDefinition(
        slug="fina",
        name="Financijska agencija",
        url="https://www.fina.hr/",
        hierarchy=AuthorityLevel.PROCEDURE,
        fetch_interval_hours=48,
    ),
    SourceDefinition(
        slug="hzzo",
        name="Hrvatski zavod za zdravstveno osiguranje",
        url="https://hzzo.hr/",
        hierarchy=AuthorityLevel.GUIDANCE,
        fetch_interval_hours=72,
    ),
    SourceDefinition(
        slug="hzmo",
        name="Hrvatski zavod za mirovinsko osiguranje",
        url="https://www.mirovinsko.hr/",
        hierarchy=AuthorityLevel.GUIDANCE,
        fetch_interval_hours=72,
    ),
)


@dataclass
class SeedReport:
    """What a seeding run changed."""

    created: list[str] = field(default_factory=list)
    existing: list[str] = field(default_factory=list)
    entry_items_created: int = 0


async def seed_sources(
    store: RegulatoryStore,
    definitions: tuple[SourceDefinition, ...] = REGULATORY_SOURCES,
    clock: Callable[[], datetime] = utcnow,
) -> SeedReport:
    """
    Insert catalogue sources and their entry items.

    Args:
        store: Regulatory store
        definitions: Sources to seed (default: the built-in catalogue)
        clock: Time source for created/due timestamps

    Returns:
        SeedReport listing created and already-present slugs
    """
    report = SeedReport()

    for definition in definitions:
        now = clock()
        source, created = await store.upsert_source(definition.to_source(now))
        (report.created if created else report.existing).append(source.slug)

        if await store.add_item_if_new(new_item(source.id, source.url, now)):
            report.entry_items_created += 1

    logger.info(
        "sources_seeded",
        created=len(report.created),
        existing=len(report.existing),
        entry_items=report.entry_items_created,
    )
    return report
