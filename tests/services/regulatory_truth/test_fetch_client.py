"""
Tests for the Fetch Client
==========================

Version: 0.1.0
"""

import base64

import httpx
import pytest

from services.regulatory_truth.errors import CircuitOpenError, FetchError
from services.regulatory_truth.fetching import FetchClient, RateLimitConfig, RateLimiter
from tests.factories import FakeMonotonic, SiteMap

HNB = "https://www.hnb.hr/tecajna-lista"


class ListenerSpy:
    """Records circuit-open notifications."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, int]] = []

    async def __call__(self, domain: str, consecutive_errors: int) -> None:
        self.calls.append((domain, consecutive_errors))


def make_client(site: SiteMap, listener: ListenerSpy | None = None) -> FetchClient:
    clock = FakeMonotonic()
    limiter = RateLimiter(
        RateLimitConfig(request_delay_ms=0, circuit_breaker_threshold=5),
        clock=clock,
        sleep=clock.sleep,
    )
    return FetchClient(
        limiter,
        timeout_seconds=5,
        user_agent="regtruth-test",
        on_circuit_open=listener,
        transport=httpx.MockTransport(site.handler),
    )


class TestFetch:
    """Tests for successful fetches."""

    @pytest.mark.asyncio
    async def test_html(self, site: SiteMap) -> None:
        """Test that HTML is returned as text."""
        site.add(HNB, "<html><body>Tečajna lista</body></html>")

        async with make_client(site) as client:
            result = await client.fetch(HNB)

        assert result.status == 200
        assert result.content_type == "html"
        assert result.is_binary is False
        assert "Tečajna lista" in result.body

    @pytest.mark.asyncio
    async def test_pdf_is_base64(self, site: SiteMap) -> None:
        """Test that binary PDF bodies are stored base64-encoded."""
        payload = b"%PDF-1.4\n\x00\x01binary"
        url = "https://narodne-novine.nn.hr/files/zakon.pdf"
        site.add(url, payload, content_type="application/pdf")

        async with make_client(site) as client:
            result = await client.fetch(url)

        assert result.content_type == "pdf"
        assert result.is_binary is True
        assert result.raw_bytes == payload
        assert base64.b64decode(result.body) == payload

    @pytest.mark.asyncio
    async def test_json(self, site: SiteMap) -> None:
        """Test JSON classification from the header."""
        url = "https://api.hnb.hr/tecajn/v2"
        site.add(url, '[{"valuta": "USD"}]', content_type="application/json")

        async with make_client(site) as client:
            result = await client.fetch(url)

        assert result.content_type == "json"


class TestFetchFailures:
    """Tests for failures and the circuit breaker."""

    @pytest.mark.asyncio
    async def test_client_error_does_not_trip_breaker(self, site: SiteMap) -> None:
        """Test that a 404 raises without counting against the domain."""
        client = make_client(site)

        with pytest.raises(FetchError) as exc_info:
            await client.fetch("https://www.hnb.hr/missing")
        await client.close()

        assert exc_info.value.status_code == 404
        assert exc_info.value.is_transient is False
        assert client.rate_limiter.status("www.hnb.hr").consecutive_errors == 0

    @pytest.mark.asyncio
    async def test_network_error_is_transient(self) -> None:
        """Test that connection failures count against the breaker."""

        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        limiter = RateLimiter(RateLimitConfig(request_delay_ms=0))
        client = FetchClient(limiter, transport=httpx.MockTransport(refuse))

        with pytest.raises(FetchError) as exc_info:
            await client.fetch(HNB)
        await client.close()

        assert exc_info.value.is_transient is True
        assert limiter.status("www.hnb.hr").consecutive_errors == 1

    @pytest.mark.asyncio
    async def test_breaker_opens_after_five_server_errors(self, site: SiteMap) -> None:
        """Test that five 503s open the breaker and the sixth call fails fast."""
        listener = ListenerSpy()
        site.add(HNB, "Service unavailable", status=503)
        client = make_client(site, listener)

        for _ in range(5):
            with pytest.raises(FetchError):
                await client.fetch(HNB)

        assert listener.calls == [("www.hnb.hr", 5)]

        with pytest.raises(CircuitOpenError) as exc_info:
            await client.fetch(HNB)
        await client.close()

        assert len(site.requests) == 5
        assert exc_info.value.domain == "www.hnb.hr"

    @pytest.mark.asyncio
    async def test_success_resets_error_count(self, site: SiteMap) -> None:
        """Test that a successful response clears consecutive errors."""
        broken = "https://www.hnb.hr/broken"
        site.add(broken, "Bad gateway", status=502)
        site.add(HNB, "<html>ok</html>")
        client = make_client(site)

        for _ in range(3):
            with pytest.raises(FetchError):
                await client.fetch(broken)
        await client.fetch(HNB)
        await client.close()

        assert client.rate_limiter.status("www.hnb.hr").consecutive_errors == 0
