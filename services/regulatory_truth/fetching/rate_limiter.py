"""
Domain Rate Limiter
===================

Per-domain request throttling with a consecutive-error circuit breaker.

Each network domain (hostname) owns its own state and lock, so one
misbehaving source cannot starve the others:
- at most one request in flight per domain
- at least ``request_delay_ms`` between two requests to the same domain
- after ``circuit_breaker_threshold`` consecutive failures the breaker opens
  and acquisitions fail fast until the reset window has elapsed

The limiter is constructed once and injected into the fetch client and
the scheduler.

Version: 0.1.0
"""

import asyncio
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from urllib.parse import urlsplit

from shared.config import settings
from shared.logging import get_logger
from services.regulatory_truth.errors import CircuitOpenError


logger = get_logger(__name__)


def domain_of(url: str) -> str:
    """Hostname used as the rate-limiting key."""
    return (urlsplit(url).hostname or "").lower()


@dataclass
class RateLimitConfig:
    """Rate limiting and circuit breaker parameters."""

    request_delay_ms: int = 2000
    circuit_breaker_threshold: int = 5
    circuit_breaker_reset_seconds: float = 3600.0

    @classmethod
    def from_settings(cls) -> "RateLimitConfig":
        """Build config from application settings."""
        return cls(
            request_delay_ms=settings.sentinel.request_delay_ms,
            circuit_breaker_threshold=settings.sentinel.circuit_breaker_threshold,
            circuit_breaker_reset_seconds=float(settings.sentinel.circuit_breaker_reset_seconds),
        )


@dataclass
class DomainState:
    """Mutable per-domain limiter state."""

    last_request_at: float | None = None
    request_count: int = 0
    consecutive_errors: int = 0
    circuit_open: bool = False
    circuit_broken_at: float | None = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)


@dataclass
class DomainStatus:
    """Read-only snapshot of a domain's limiter state."""

    domain: str
    consecutive_errors: int
    circuit_open: bool
    request_count: int
    retry_after_seconds: float = 0.0


class RateLimiter:
    """
    Concurrency-safe per-domain rate limiter and circuit breaker.

    Different domains proceed concurrently; requests to the same domain are
    serialized by that domain's lock and spaced by the configured delay.
    """

    def __init__(
        self,
        config: RateLimitConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """
        Initialize the limiter.

        Args:
            config: Limits (default from settings)
            clock: Monotonic clock in seconds (injectable for tests)
            sleep: Async sleep function (injectable for tests)
        """
        self.config = config or RateLimitConfig.from_settings()
        self._clock = clock
        self._sleep = sleep
        self._domains: dict[str, DomainState] = {}

    def _state(self, domain: str) -> DomainState:
        # No await between lookup and insert, so coroutines cannot race here
        state = self._domains.get(domain)
        if state is None:
            state = DomainState()
            self._domains[domain] = state
        return state

    async def _take_turn(self, domain: str, state: DomainState) -> None:
        """Check the breaker, wait out the delay and stamp the request."""
        if state.circuit_open:
            elapsed = self._clock() - (state.circuit_broken_at or 0.0)
            reset_after = self.config.circuit_breaker_reset_seconds
            if elapsed < reset_after:
                raise CircuitOpenError(domain, reset_after - elapsed)

            state.circuit_open = False
            state.circuit_broken_at = None
            state.consecutive_errors = 0
            logger.info("circuit_breaker_auto_reset", domain=domain)

        delay = self.config.request_delay_ms / 1000.0
        if state.last_request_at is not None:
            since_last = self._clock() - state.last_request_at
            if since_last < delay:
                await self._sleep(delay - since_last)

        state.last_request_at = self._clock()
        state.request_count += 1

    async def acquire_slot(self, domain: str) -> None:
        """
        Wait until a request to ``domain`` may be made.

        Raises:
            CircuitOpenError: If the domain's breaker is open
        """
        state = self._state(domain)
        async with state.lock:
            await self._take_turn(domain, state)

    @asynccontextmanager
    async def limited(self, domain: str) -> AsyncIterator[None]:
        """
        Hold the domain slot for the duration of a request.

        Usage:
            async with limiter.limited("porezna-uprava.gov.hr"):
                response = await client.get(url)
        """
        state = self._state(domain)
        async with state.lock:
            await self._take_turn(domain, state)
            yield

    def record_success(self, domain: str) -> None:
        """Reset the consecutive error counter."""
        self._state(domain).consecutive_errors = 0

    def record_failure(self, domain: str) -> bool:
        """
        Count a failed request.

        Returns:
            True if this failure opened the circuit breaker
        """
        state = self._state(domain)
        state.consecutive_errors += 1

        if (
            not state.circuit_open
            and state.consecutive_errors >= self.config.circuit_breaker_threshold
        ):
            state.circuit_open = True
            state.circuit_broken_at = self._clock()
            logger.warning(
                "circuit_breaker_opened",
                domain=domain,
                consecutive_errors=state.consecutive_errors,
            )
            return True

        return False

    def reset(self, domain: str) -> None:
        """Manually close the breaker for a domain."""
        state = self._state(domain)
        state.circuit_open = False
        state.circuit_broken_at = None
        state.consecutive_errors = 0
        logger.info("circuit_breaker_reset", domain=domain)

    def status(self, domain: str) -> DomainStatus:
        """Snapshot of a domain's state."""
        state = self._state(domain)
        retry_after = 0.0
        if state.circuit_open and state.circuit_broken_at is not None:
            retry_after = max(
                0.0,
                self.config.circuit_breaker_reset_seconds - (self._clock() - state.circuit_broken_at),
            )
        return DomainStatus(
            domain=domain,
            consecutive_errors=state.consecutive_errors,
            circuit_open=state.circuit_open,
            request_count=state.request_count,
            retry_after_seconds=retry_after,
        )

    def snapshot(self) -> list[DomainStatus]:
        """Status of every domain seen so far."""
        return [self.status(domain) for domain in sorted(self._domains)]
