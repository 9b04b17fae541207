"""Rate limiters for outbound HealthLake calls."""

import asyncio
import math
import time
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional

from fhir_documents.config import Settings
from fhir_documents.utils.logging import get_logger

logger = get_logger(__name__)


class RateLimiter(ABC):
    """Strategy gating the rate of outbound requests."""

    @abstractmethod
    async def acquire(self) -> None:
        """Wait until a request may be issued."""


class NoopRateLimiter(RateLimiter):
    """Never waits."""

    async def acquire(self) -> None:
        return None


class TokenBucketRateLimiter(RateLimiter):
    """Token bucket limiter shared by all concurrent callers."""

    def __init__(
        self,
        calls_per_second: float,
        burst_size: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        """Initialize rate limiter.

        Args:
            calls_per_second: Sustained request rate
            burst_size: Bucket capacity, defaults to two seconds of traffic
            clock: Monotonic clock, mainly for tests
            sleep: Awaitable sleep function, mainly for tests
        """
        if calls_per_second <= 0:
            raise ValueError("calls_per_second must be positive")
        self.calls_per_second = calls_per_second
        self.burst_size = burst_size or max(1, math.ceil(calls_per_second * 2))
        self._clock = clock
        self._sleep = sleep or asyncio.sleep

        self.tokens = float(self.burst_size)
        self.last_refill = clock()

        # Lock for fairness between concurrent units
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenBucketRateLimiter":
        """Build the limiter from application settings."""
        return cls(
            calls_per_second=settings.rate_limit_calls_per_second,
            burst_size=settings.effective_rate_limit_burst,
        )

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self.last_refill
        self.tokens = min(
            float(self.burst_size), self.tokens + elapsed * self.calls_per_second
        )
        self.last_refill = now

    async def acquire(self) -> None:
        async with self._lock:
            self._refill()
            while self.tokens < 1:
                wait = (1 - self.tokens) / self.calls_per_second
                logger.debug("rate_limit_wait", wait_seconds=round(wait, 3))
                await self._sleep(wait)
                self._refill()
            self.tokens -= 1
