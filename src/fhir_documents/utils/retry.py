"""
Retry Utilities.

Provides retry policies with exponential backoff for HealthLake calls. Only
errors flagged as retryable (throttling, server errors, network failures) are
retried; everything else propagates on the first attempt.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_exponential_jitter,
)

from fhir_documents.config import Settings
from fhir_documents.core.exceptions import is_retryable
from fhir_documents.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class RetryPolicy(ABC):
    """Strategy deciding how often and how long to retry an operation."""

    @abstractmethod
    async def execute(
        self, operation: Callable[[], Awaitable[T]], operation_name: str = "operation"
    ) -> T:
        """Run the operation, retrying retryable failures."""


class NoRetryPolicy(RetryPolicy):
    """Runs the operation exactly once."""

    async def execute(
        self, operation: Callable[[], Awaitable[T]], operation_name: str = "operation"
    ) -> T:
        return await operation()


class ExponentialBackoffRetryPolicy(RetryPolicy):
    """Exponential backoff built on tenacity."""

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        jitter: bool = True,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ):
        """
        Initialize the retry policy.

        Args:
            max_retries: Maximum number of retry attempts after the first call
            base_delay: Delay before the first retry in seconds
            max_delay: Upper bound for any single delay in seconds
            jitter: Whether to add random jitter to delays
            sleep: Awaitable sleep function, mainly for tests
        """
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter = jitter
        self._sleep = sleep or asyncio.sleep

    @classmethod
    def from_settings(cls, settings: Settings) -> "ExponentialBackoffRetryPolicy":
        """Build the policy from application settings."""
        return cls(
            max_retries=settings.retry_max_retries,
            base_delay=settings.retry_base_delay_ms / 1000.0,
            max_delay=settings.retry_max_delay_ms / 1000.0,
            jitter=settings.retry_use_jitter,
        )

    def _wait(self) -> Any:
        if self.jitter:
            return wait_exponential_jitter(
                initial=self.base_delay, max=self.max_delay, jitter=self.base_delay
            )
        return wait_exponential(multiplier=self.base_delay, max=self.max_delay)

    async def execute(
        self, operation: Callable[[], Awaitable[T]], operation_name: str = "operation"
    ) -> T:
        def log_retry(retry_state: RetryCallState) -> None:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            delay = retry_state.next_action.sleep if retry_state.next_action else 0
            logger.warning(
                "retrying_operation",
                operation=operation_name,
                attempt=retry_state.attempt_number,
                max_retries=self.max_retries,
                delay_seconds=round(delay, 3),
                error=str(exc),
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=self._wait(),
            retry=retry_if_exception(is_retryable),
            before_sleep=log_retry,
            sleep=self._sleep,
            reraise=True,
        )
        return await retrying(operation)
