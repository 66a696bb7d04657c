"""
Sentinel
========

Adaptive monitoring of regulatory sources: URL classification, velocity
profiling, scan scheduling and hub link discovery.
"""

from services.regulatory_truth.sentinel.classifier import (
    BASE_INTERVAL_HOURS,
    MIN_INTERVAL,
    UrlClassification,
    classify_url,
    compute_next_scan,
    scan_interval,
)
from services.regulatory_truth.sentinel.discovery import discover_links
from services.regulatory_truth.sentinel.scheduler import (
    AdaptiveScheduler,
    ScanOutcome,
    SentinelReport,
    new_item,
)
from services.regulatory_truth.sentinel.velocity import (
    VelocityUpdate,
    describe_velocity,
    update_velocity,
)

__all__ = [
    "AdaptiveScheduler",
    "ScanOutcome",
    "SentinelReport",
    "new_item",
    "UrlClassification",
    "classify_url",
    "scan_interval",
    "compute_next_scan",
    "BASE_INTERVAL_HOURS",
    "MIN_INTERVAL",
    "discover_links",
    "VelocityUpdate",
    "update_velocity",
    "describe_velocity",
]
