"""Tests for retry policies."""

import pytest

from fhir_documents.core.exceptions import (
    InfrastructureError,
    NotFoundError,
    TransientError,
)
from fhir_documents.utils.retry import ExponentialBackoffRetryPolicy, NoRetryPolicy


class FakeSleep:
    """Records requested delays instead of sleeping."""

    def __init__(self) -> None:
        self.delays = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def flaky(failures, result="ok"):
    """Operation raising the given errors in turn, then returning result."""
    calls = []

    async def operation():
        calls.append(1)
        if len(calls) <= len(failures):
            raise failures[len(calls) - 1]
        return result

    return operation, calls


@pytest.mark.asyncio
async def test_succeeds_after_transient_failures():
    sleep = FakeSleep()
    policy = ExponentialBackoffRetryPolicy(
        max_retries=3, base_delay=1.0, max_delay=30.0, jitter=False, sleep=sleep
    )
    operation, calls = flaky([TransientError("429"), TransientError("503")])

    assert await policy.execute(operation) == "ok"
    assert len(calls) == 3
    assert sleep.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_gives_up_after_max_retries():
    sleep = FakeSleep()
    policy = ExponentialBackoffRetryPolicy(max_retries=2, jitter=False, sleep=sleep)
    operation, calls = flaky([TransientError(f"fail {i}") for i in range(5)])

    with pytest.raises(TransientError, match="fail 2"):
        await policy.execute(operation)
    assert len(calls) == 3
    assert len(sleep.delays) == 2


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error", [NotFoundError("missing"), InfrastructureError("403"), ValueError("x")]
)
async def test_non_retryable_errors_propagate_immediately(error):
    sleep = FakeSleep()
    policy = ExponentialBackoffRetryPolicy(sleep=sleep)
    operation, calls = flaky([error])

    with pytest.raises(type(error)):
        await policy.execute(operation)
    assert len(calls) == 1
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_delays_are_capped():
    sleep = FakeSleep()
    policy = ExponentialBackoffRetryPolicy(
        max_retries=5, base_delay=1.0, max_delay=4.0, jitter=False, sleep=sleep
    )
    operation, _ = flaky([TransientError("x")] * 5)

    await policy.execute(operation)

    assert sleep.delays == [1.0, 2.0, 4.0, 4.0, 4.0]


@pytest.mark.asyncio
async def test_jittered_delays_stay_within_bounds():
    sleep = FakeSleep()
    policy = ExponentialBackoffRetryPolicy(
        max_retries=4, base_delay=0.5, max_delay=2.0, jitter=True, sleep=sleep
    )
    operation, _ = flaky([TransientError("x")] * 4)

    await policy.execute(operation)

    assert len(sleep.delays) == 4
    assert all(0 <= delay <= 2.0 for delay in sleep.delays)


@pytest.mark.asyncio
async def test_zero_retries_runs_once():
    policy = ExponentialBackoffRetryPolicy(max_retries=0, sleep=FakeSleep())
    operation, calls = flaky([TransientError("x")])

    with pytest.raises(TransientError):
        await policy.execute(operation)
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_no_retry_policy():
    operation, calls = flaky([TransientError("x")])

    with pytest.raises(TransientError):
        await NoRetryPolicy().execute(operation)
    assert len(calls) == 1
