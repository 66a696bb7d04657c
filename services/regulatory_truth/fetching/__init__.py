"""
Rate-limited fetching of regulatory sources.
"""

from services.regulatory_truth.fetching.client import FetchClient, FetchResult, classify_content_type
from services.regulatory_truth.fetching.rate_limiter import (
    DomainStatus,
    RateLimitConfig,
    RateLimiter,
    domain_of,
)

__all__ = [
    "FetchClient",
    "FetchResult",
    "classify_content_type",
    "RateLimiter",
    "RateLimitConfig",
    "DomainStatus",
    "domain_of",
]
