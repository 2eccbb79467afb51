from unittest.mock import AsyncMock

import pytest

from modelproxy.workers.base import (
    ErrorCode,
    PermanentProviderError,
    ProviderTimeoutError,
    RetryExhaustedError,
    RetryPolicy,
    TransientProviderError,
    is_retryable,
)


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


@pytest.mark.anyio
async def test_transient_failures_then_success_sleeps_exponentially():
    sleep = RecordingSleep()
    policy = RetryPolicy(max_retries=3, base_delay=0.5, max_delay=30.0, sleep=sleep)
    func = AsyncMock(side_effect=[TransientProviderError("reset")] * 3 + ["task-1"])

    result = await policy.call(func, "payload")

    assert result == "task-1"
    assert func.await_count == 4
    assert sleep.delays == [0.5, 1.0, 2.0]
    assert sum(sleep.delays) == sum(0.5 * 2 ** i for i in range(3))


@pytest.mark.anyio
async def test_more_failures_than_retries_exhausts_after_max_retries_plus_one():
    sleep = RecordingSleep()
    policy = RetryPolicy(max_retries=2, base_delay=1.0, sleep=sleep)
    func = AsyncMock(side_effect=TransientProviderError("503"))

    with pytest.raises(RetryExhaustedError) as exc_info:
        await policy.call(func, operation="provider.submit")

    error = exc_info.value
    assert func.await_count == 3
    assert error.attempts == 3
    assert error.details == {"attempts": 3}
    assert isinstance(error, TransientProviderError)
    assert error.code == ErrorCode.PROVIDER_UNAVAILABLE
    assert len(sleep.delays) == 2


@pytest.mark.anyio
async def test_exhausted_timeout_keeps_timeout_code():
    policy = RetryPolicy(max_retries=1, base_delay=0.0, sleep=RecordingSleep())
    func = AsyncMock(side_effect=ProviderTimeoutError("slow"))

    with pytest.raises(RetryExhaustedError) as exc_info:
        await policy.call(func)

    assert exc_info.value.code == ErrorCode.PROVIDER_TIMEOUT
    assert isinstance(exc_info.value.last_error, ProviderTimeoutError)


@pytest.mark.anyio
async def test_permanent_error_is_not_retried():
    sleep = RecordingSleep()
    policy = RetryPolicy(max_retries=5, sleep=sleep)
    func = AsyncMock(side_effect=PermanentProviderError("bad request"))

    with pytest.raises(PermanentProviderError):
        await policy.call(func)

    assert func.await_count == 1
    assert sleep.delays == []


@pytest.mark.anyio
async def test_on_retry_hook_sees_each_backoff():
    seen = []
    policy = RetryPolicy(max_retries=2, base_delay=1.0, sleep=RecordingSleep())
    error = TransientProviderError("reset")
    func = AsyncMock(side_effect=[error, error, "ok"])

    await policy.call(func, on_retry=lambda attempt, delay, e: seen.append((attempt, delay, e)))

    assert seen == [(0, 1.0, error), (1, 2.0, error)]


def test_delay_is_capped_at_max_delay():
    policy = RetryPolicy(base_delay=1.0, max_delay=30.0)
    assert policy.delay_for(3) == 8.0
    assert policy.delay_for(10) == 30.0


def test_jitter_stays_within_bounds():
    policy = RetryPolicy(base_delay=2.0, jitter=0.1)
    for _ in range(50):
        assert 1.8 - 1e-9 <= policy.delay_for(0) <= 2.2 + 1e-9


def test_retryable_classification():
    assert is_retryable(TransientProviderError("x"))
    assert is_retryable(ProviderTimeoutError("x"))
    assert not is_retryable(PermanentProviderError("x"))
    assert not is_retryable(ValueError("x"))
