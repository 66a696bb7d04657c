"""
Fetch Client
============

Outbound HTTP layer for regulatory sources. Every request is routed
through the injected RateLimiter; outcomes feed the domain's circuit
breaker (network errors, 5xx and 429 count as failures).

Version: 0.1.0
"""

import base64
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

import httpx

from shared.config import settings
from shared.logging import get_logger
from services.regulatory_truth.errors import FetchError
from services.regulatory_truth.fetching.rate_limiter import RateLimiter, domain_of


logger = get_logger(__name__)

CircuitOpenListener = Callable[[str, int], Awaitable[None]]


def classify_content_type(header: str, body: str = "") -> str:
    """
    Map a Content-Type header (and body sniffing) to an evidence content type.

    Returns:
        One of "pdf", "json", "xml", "html", "text"
    """
    header = (header or "").lower()
    if "pdf" in header:
        return "pdf"
    if "json" in header:
        return "json"
    if "xml" in header and "html" not in header:
        return "xml"
    if "html" in header:
        return "html"

    stripped = body.lstrip()[:200].lower()
    if stripped.startswith(("{", "[")):
        return "json"
    if stripped.startswith("<!doctype html") or "<html" in stripped:
        return "html"
    return "text"


@dataclass
class FetchResult:
    """Response of a successful fetch."""

    url: str
    status: int
    body: str
    content_type: str
    content_type_header: str = ""
    raw_bytes: bytes = b""
    fetched_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_binary(self) -> bool:
        """Binary payloads are stored base64-encoded."""
        return self.content_type == "pdf"


class FetchClient:
    """
    Rate-limited async HTTP client.

    Usage:
        async with FetchClient(limiter) as client:
            result = await client.fetch("https://www.porezna-uprava.hr/")
    """

    def __init__(
        self,
        rate_limiter: RateLimiter,
        timeout_seconds: float | None = None,
        user_agent: str | None = None,
        on_circuit_open: CircuitOpenListener | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize the fetch client.

        Args:
            rate_limiter: Shared per-domain limiter
            timeout_seconds: Per-request timeout (default from settings)
            user_agent: User-Agent header (default from settings)
            on_circuit_open: Awaited when a failure trips a domain's breaker
            transport: Optional httpx transport (tests use MockTransport)
        """
        self.rate_limiter = rate_limiter
        self.timeout_seconds = timeout_seconds or settings.sentinel.fetch_timeout_seconds
        self.user_agent = user_agent or settings.sentinel.user_agent
        self.on_circuit_open = on_circuit_open
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "FetchClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout_seconds),
                headers={
                    "User-Agent": self.user_agent,
                    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,"
                    "application/json,application/pdf",
                    "Accept-Language": settings.sentinel.accept_language,
                },
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _record_failure(self, domain: str) -> None:
        opened = self.rate_limiter.record_failure(domain)
        if opened and self.on_circuit_open is not None:
            status = self.rate_limiter.status(domain)
            await self.on_circuit_open(domain, status.consecutive_errors)

    async def fetch(self, url: str) -> FetchResult:
        """
        Fetch a URL through the rate limiter.

        Raises:
            CircuitOpenError: Domain breaker is open (no request made)
            FetchError: Network failure or non-success status
        """
        domain = domain_of(url)
        client = await self._get_client()

        async with self.rate_limiter.limited(domain):
            try:
                response = await client.get(url)
            except httpx.HTTPError as e:
                await self._record_failure(domain)
                logger.warning("fetch_network_error", url=url, error=str(e))
                raise FetchError(url, f"Network error: {e}") from e

            if response.status_code >= 500 or response.status_code == 429:
                await self._record_failure(domain)
                logger.warning("fetch_transient_status", url=url, status=response.status_code)
                raise FetchError(url, f"HTTP {response.status_code}", response.status_code)

            if response.status_code >= 400:
                logger.warning("fetch_client_error", url=url, status=response.status_code)
                raise FetchError(url, f"HTTP {response.status_code}", response.status_code)

            self.rate_limiter.record_success(domain)

        header = response.headers.get("content-type", "")
        content_type = classify_content_type(header, "" if "pdf" in header.lower() else response.text)

        if content_type == "pdf":
            body = base64.b64encode(response.content).decode("ascii")
        else:
            body = response.text

        logger.debug(
            "fetch_completed",
            url=url,
            status=response.status_code,
            content_type=content_type,
            bytes=len(response.content),
        )

        return FetchResult(
            url=url,
            status=response.status_code,
            body=body,
            content_type=content_type,
            content_type_header=header,
            raw_bytes=response.content,
        )
