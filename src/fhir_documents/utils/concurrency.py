"""Concurrency gate bounding the number of in-flight archive units."""

import asyncio
from types import TracebackType
from typing import Optional, Type


class ConcurrencyGate:
    """Counting permit shared by every unit of an archive run.

    Use as an async context manager; the slot is released on success, failure
    and cancellation alike. ``in_flight`` and ``peak`` are exposed so the bound
    can be observed.
    """

    def __init__(self, max_concurrency: int = 10):
        """Initialize the gate.

        Args:
            max_concurrency: Maximum number of simultaneous holders
        """
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.max_concurrency = max_concurrency
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self.in_flight = 0
        self.peak = 0

    async def acquire(self) -> None:
        """Wait for a free slot."""
        await self._semaphore.acquire()
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)

    def release(self) -> None:
        """Return a slot to the gate."""
        self.in_flight -= 1
        self._semaphore.release()

    async def __aenter__(self) -> "ConcurrencyGate":
        await self.acquire()
        return self

    async def __aexit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        self.release()
