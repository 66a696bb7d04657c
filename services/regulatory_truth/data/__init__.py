"""
Seed data for the regulatory truth pipeline.
"""

from services.regulatory_truth.data.sources import (
    REGULATORY_SOURCES,
    SeedReport,
    SourceDefinition,
    seed_sources,
)

__all__ = [
    "REGULATORY_SOURCES",
    "SourceDefinition",
    "SeedReport",
    "seed_sources",
]
