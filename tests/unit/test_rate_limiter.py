"""
Unit tests for the domain rate limiter and circuit breaker.
"""

import asyncio

import pytest

from services.regulatory_truth.errors import CircuitOpenError
from services.regulatory_truth.fetching import RateLimitConfig, RateLimiter, domain_of
from tests.factories import FakeMonotonic


def make_limiter(clock: FakeMonotonic, delay_ms: int = 2000) -> RateLimiter:
    return RateLimiter(
        RateLimitConfig(request_delay_ms=delay_ms, circuit_breaker_threshold=5, circuit_breaker_reset_seconds=3600),
        clock=clock,
        sleep=clock.sleep,
    )


class TestDomainOf:
    """Tests for rate-limit keys."""

    def test_hostname_is_key(self) -> None:
        """Test that the lowercase hostname is used."""
        assert domain_of("https://WWW.Porezna-Uprava.hr/vijesti?page=2") == "www.porezna-uprava.hr"


class TestRequestSpacing:
    """Tests for the per-domain delay."""

    @pytest.mark.asyncio
    async def test_first_request_does_not_wait(self) -> None:
        """Test that a fresh domain is not delayed."""
        clock = FakeMonotonic()
        limiter = make_limiter(clock)

        await limiter.acquire_slot("hnb.hr")

        assert clock.sleeps == []
        assert limiter.status("hnb.hr").request_count == 1

    @pytest.mark.asyncio
    async def test_second_request_waits_for_delay(self) -> None:
        """Test that back-to-back requests are spaced by the delay."""
        clock = FakeMonotonic()
        limiter = make_limiter(clock)

        await limiter.acquire_slot("hnb.hr")
        await limiter.acquire_slot("hnb.hr")

        assert clock.sleeps == [pytest.approx(2.0)]

    @pytest.mark.asyncio
    async def test_elapsed_time_counts_toward_delay(self) -> None:
        """Test that only the remaining delay is slept."""
        clock = FakeMonotonic()
        limiter = make_limiter(clock)

        await limiter.acquire_slot("hnb.hr")
        clock.now += 1.5
        await limiter.acquire_slot("hnb.hr")

        assert clock.sleeps == [pytest.approx(0.5)]

    @pytest.mark.asyncio
    async def test_domains_are_independent(self) -> None:
        """Test that another domain is not delayed."""
        clock = FakeMonotonic()
        limiter = make_limiter(clock)

        await limiter.acquire_slot("hnb.hr")
        await limiter.acquire_slot("fina.hr")

        assert clock.sleeps == []


class TestCircuitBreaker:
    """Tests for the consecutive-error breaker."""

    def test_opens_at_threshold(self) -> None:
        """Test that the fifth consecutive failure opens the breaker."""
        limiter = make_limiter(FakeMonotonic())

        opened = [limiter.record_failure("hnb.hr") for _ in range(5)]

        assert opened == [False, False, False, False, True]
        assert limiter.status("hnb.hr").circuit_open is True

    def test_success_resets_counter(self) -> None:
        """Test that a success clears consecutive errors."""
        limiter = make_limiter(FakeMonotonic())
        for _ in range(4):
            limiter.record_failure("hnb.hr")

        limiter.record_success("hnb.hr")
        opened = limiter.record_failure("hnb.hr")

        assert opened is False
        assert limiter.status("hnb.hr").consecutive_errors == 1

    @pytest.mark.asyncio
    async def test_open_breaker_fails_fast(self) -> None:
        """Test that acquisitions raise while the breaker is open."""
        clock = FakeMonotonic()
        limiter = make_limiter(clock)
        for _ in range(5):
            limiter.record_failure("hnb.hr")

        with pytest.raises(CircuitOpenError) as exc_info:
            await limiter.acquire_slot("hnb.hr")

        assert exc_info.value.domain == "hnb.hr"
        assert exc_info.value.retry_after_seconds == pytest.approx(3600)
        assert "Resets in 60 minutes" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_still_open_just_before_reset(self) -> None:
        """Test that the breaker holds for the whole reset window."""
        clock = FakeMonotonic()
        limiter = make_limiter(clock)
        for _ in range(5):
            limiter.record_failure("hnb.hr")

        clock.now += 3599
        with pytest.raises(CircuitOpenError):
            await limiter.acquire_slot("hnb.hr")

    @pytest.mark.asyncio
    async def test_auto_reset_after_window(self) -> None:
        """Test that after 3600 s the next acquire succeeds with a zero counter."""
        clock = FakeMonotonic()
        limiter = make_limiter(clock)
        for _ in range(5):
            limiter.record_failure("hnb.hr")

        clock.now += 3600
        await limiter.acquire_slot("hnb.hr")

        status = limiter.status("hnb.hr")
        assert status.circuit_open is False
        assert status.consecutive_errors == 0

    @pytest.mark.asyncio
    async def test_breaker_is_per_domain(self) -> None:
        """Test that one open breaker does not block other domains."""
        limiter = make_limiter(FakeMonotonic())
        for _ in range(5):
            limiter.record_failure("hnb.hr")

        await limiter.acquire_slot("fina.hr")

        assert limiter.status("fina.hr").circuit_open is False

    def test_manual_reset(self) -> None:
        """Test closing the breaker by hand."""
        limiter = make_limiter(FakeMonotonic())
        for _ in range(5):
            limiter.record_failure("hnb.hr")

        limiter.reset("hnb.hr")

        assert limiter.status("hnb.hr").circuit_open is False
        assert limiter.status("hnb.hr").consecutive_errors == 0

    def test_snapshot_lists_known_domains(self) -> None:
        """Test the status snapshot."""
        limiter = make_limiter(FakeMonotonic())
        limiter.record_failure("hnb.hr")
        limiter.record_success("fina.hr")

        assert [s.domain for s in limiter.snapshot()] == ["fina.hr", "hnb.hr"]


class TestConcurrentRequests:
    """Tests for concurrent callers sharing one limiter."""

    @pytest.mark.asyncio
    async def test_one_request_in_flight_per_domain(self) -> None:
        """Test that concurrent requests to one domain run one at a time, spaced by the delay."""
        clock = FakeMonotonic()
        limiter = make_limiter(clock)
        in_flight = 0
        peak = 0

        async def request() -> None:
            nonlocal in_flight, peak
            async with limiter.limited("a.hr"):
                in_flight += 1
                peak = max(peak, in_flight)
                for _ in range(3):
                    await asyncio.sleep(0)
                in_flight -= 1

        await asyncio.gather(*(request() for _ in range(5)))

        assert peak == 1
        assert limiter.status("a.hr").request_count == 5
        assert clock.sleeps == [pytest.approx(2.0)] * 4

    @pytest.mark.asyncio
    async def test_different_domains_overlap(self) -> None:
        """Test that a held slot on one domain does not block another domain."""
        limiter = make_limiter(FakeMonotonic())
        in_flight: dict[str, int] = {"a.hr": 0, "b.hr": 0}
        peak_per_domain: dict[str, int] = {"a.hr": 0, "b.hr": 0}
        peak_total = 0

        async def request(domain: str) -> None:
            nonlocal peak_total
            async with limiter.limited(domain):
                in_flight[domain] += 1
                peak_per_domain[domain] = max(peak_per_domain[domain], in_flight[domain])
                peak_total = max(peak_total, sum(in_flight.values()))
                for _ in range(3):
                    await asyncio.sleep(0)
                in_flight[domain] -= 1

        await asyncio.gather(*(request(domain) for domain in ["a.hr", "b.hr"] * 3))

        assert peak_per_domain == {"a.hr": 1, "b.hr": 1}
        assert peak_total == 2
