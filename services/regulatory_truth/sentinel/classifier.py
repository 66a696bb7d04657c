"""
URL Classification & Scan Scheduling
====================================

Path/keyword heuristics that place a monitored URL into
(node type, node role, freshness risk), and the interval policy that turns
a velocity estimate and a risk tier into the next scan time.

Classification runs once, on the first scan of an item; afterwards it is
stable.

Version: 0.1.0
"""

import re
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from urllib.parse import urlsplit

from shared.models import FreshnessRisk, NodeRole, NodeType


@dataclass(frozen=True)
class UrlClassification:
    """Classification of a monitored URL."""

    node_type: NodeType
    node_role: NodeRole | None
    freshness_risk: FreshnessRisk


# Role patterns, checked in order (Croatian and English source vocabularies)
ROLE_PATTERNS: list[tuple[NodeRole, re.Pattern[str]]] = [
    (
        NodeRole.DATA,
        re.compile(
            r"(tecaj|tečaj|exchange-?rate|kamat|interest-?rate|/api/|\.json$|\.xml$|/rss|/feed)",
            re.IGNORECASE,
        ),
    ),
    (
        NodeRole.FORM,
        re.compile(r"(obrasci|obrazac|/forms?/|\.xlsx?$|\.docx?$)", re.IGNORECASE),
    ),
    (
        NodeRole.ARCHIVE,
        re.compile(r"(arhiva|archive|/20[01]\d/)", re.IGNORECASE),
    ),
    (
        NodeRole.NEWS_FEED,
        re.compile(r"(vijesti|novosti|/news|obavijest|priopcen|priopćen|aktualno|press)", re.IGNORECASE),
    ),
    (
        NodeRole.GUIDANCE,
        re.compile(r"(misljenj|mišljenj|upute|uputa|vodic|vodič|guidance|/faq|pitanja)", re.IGNORECASE),
    ),
    (
        NodeRole.REGULATION,
        re.compile(
            r"(zakon|pravilnik|uredb|propis|narodne-?novine|/eli/|sluzbeni|službeni|regulation|/law)",
            re.IGNORECASE,
        ),
    ),
]

HUB_SEGMENTS = {
    "vijesti",
    "novosti",
    "news",
    "arhiva",
    "archive",
    "propisi",
    "zakoni",
    "obrasci",
    "index",
    "popis",
    "list",
    "category",
    "kategorija",
    "rss",
    "feed",
}

_PAGINATION_RE = re.compile(r"(^|&)(page|stranica|p|offset)=", re.IGNORECASE)
_DOCUMENT_SUFFIX_RE = re.compile(r"\.(pdf|docx?|xlsx?|html?|aspx|php)$", re.IGNORECASE)


def _is_hub(path: str, query: str) -> bool:
    if path in ("", "/"):
        return True
    if _PAGINATION_RE.search(query):
        return True

    segments = [s for s in path.lower().split("/") if s]
    last = segments[-1] if segments else ""
    if _DOCUMENT_SUFFIX_RE.search(last):
        return last.rsplit(".", 1)[0] in HUB_SEGMENTS
    if last in HUB_SEGMENTS:
        return True
    return path.endswith("/") and len(segments) <= 2


def classify_url(url: str) -> UrlClassification:
    """
    Classify a URL into node type, role and freshness risk.

    Args:
        url: Absolute URL of the monitored resource

    Returns:
        UrlClassification
    """
    parts = urlsplit(url)
    path = parts.path or "/"
    node_type = NodeType.HUB if _is_hub(path, parts.query) else NodeType.LEAF

    if path in ("", "/"):
        return UrlClassification(NodeType.HUB, NodeRole.ENTRY_POINT, FreshnessRisk.HIGH)

    target = f"{path}?{parts.query}" if parts.query else path
    role: NodeRole | None = None
    for candidate, pattern in ROLE_PATTERNS:
        if pattern.search(target):
            role = candidate
            break

    is_pdf = path.lower().endswith(".pdf")

    if role == NodeRole.DATA:
        risk = FreshnessRisk.CRITICAL
    elif role == NodeRole.NEWS_FEED:
        risk = FreshnessRisk.CRITICAL if node_type == NodeType.HUB else FreshnessRisk.MEDIUM
    elif role == NodeRole.GUIDANCE:
        risk = FreshnessRisk.HIGH
    elif role == NodeRole.FORM:
        risk = FreshnessRisk.LOW
    elif role == NodeRole.ARCHIVE:
        risk = FreshnessRisk.LOW if node_type == NodeType.HUB else FreshnessRisk.STATIC
    elif role == NodeRole.REGULATION:
        # Published gazette documents never change; consolidated pages do
        risk = FreshnessRisk.STATIC if is_pdf else FreshnessRisk.MEDIUM
    else:
        risk = FreshnessRisk.STATIC if is_pdf else FreshnessRisk.MEDIUM
        if node_type == NodeType.HUB:
            role = NodeRole.INDEX

    return UrlClassification(node_type=node_type, node_role=role, freshness_risk=risk)


# =============================================================================
# Scheduling
# =============================================================================

BASE_INTERVAL_HOURS: dict[FreshnessRisk, float] = {
    FreshnessRisk.CRITICAL: 1.0,
    FreshnessRisk.HIGH: 6.0,
    FreshnessRisk.MEDIUM: 24.0,
    FreshnessRisk.LOW: 72.0,
    FreshnessRisk.STATIC: 720.0,
}

MIN_INTERVAL = timedelta(minutes=15)


def scan_interval(change_frequency: float, freshness_risk: FreshnessRisk) -> timedelta:
    """
    Interval until the next scan.

    The tier's base interval is scaled by ``1.5 - change_frequency``, i.e.
    between roughly 0.5x (volatile) and 1.5x (static) of the base, so tiers
    never overlap: a CRITICAL item is always rescanned sooner than a STATIC
    one whatever their velocities.
    """
    frequency = max(0.0, min(1.0, change_frequency))
    hours = BASE_INTERVAL_HOURS[freshness_risk] * (1.5 - frequency)
    return max(MIN_INTERVAL, timedelta(hours=hours))


def compute_next_scan(
    change_frequency: float,
    freshness_risk: FreshnessRisk,
    now: datetime | None = None,
) -> datetime:
    """Next scan due time for an item."""
    return (now or datetime.now(UTC)) + scan_interval(change_frequency, freshness_risk)
