import asyncio

import httpx
import pytest

from story_localizer.errors import MaxRetriesExceededError, ProviderPermanentError, ProviderTransientError
from story_localizer.retry import RetryPolicy, call_with_retry, is_retryable

FAST = RetryPolicy(max_attempts=3, base_delay=0, max_delay=0, timeout=1)


class Flaky:
    def __init__(self, failures, error):
        self.failures = failures
        self.error = error
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "ok"


def test_transient_failures_are_retried():
    fn = Flaky(2, ProviderTransientError("replicate", "busy"))
    assert asyncio.run(call_with_retry(fn, FAST, "image")) == "ok"
    assert fn.calls == 3


def test_permanent_failure_is_not_retried():
    fn = Flaky(5, ProviderPermanentError("replicate", "bad prompt"))
    with pytest.raises(ProviderPermanentError):
        asyncio.run(call_with_retry(fn, FAST, "image"))
    assert fn.calls == 1


def test_exhaustion_raises_max_retries():
    fn = Flaky(5, ProviderTransientError("elevenlabs", "rate limited"))
    with pytest.raises(MaxRetriesExceededError) as exc:
        asyncio.run(call_with_retry(fn, FAST, "audio"))
    assert fn.calls == 3
    assert exc.value.attempts == 3
    assert isinstance(exc.value.last_error, ProviderTransientError)


def test_timeout_counts_as_attempt():
    calls = []

    async def slow():
        calls.append(1)
        await asyncio.sleep(1)

    policy = RetryPolicy(max_attempts=2, base_delay=0, max_delay=0, timeout=0.01)
    with pytest.raises(MaxRetriesExceededError):
        asyncio.run(call_with_retry(slow, policy, "slow call"))
    assert len(calls) == 2


def test_on_retry_callback():
    seen = []

    async def on_retry(attempt, error):
        seen.append(attempt)

    fn = Flaky(2, ProviderTransientError("openai", "timeout"))
    asyncio.run(call_with_retry(fn, FAST, "chunk", on_retry=on_retry))
    assert seen == [1, 2]


def test_delay_is_capped():
    policy = RetryPolicy(base_delay=1, max_delay=5, jitter=0)
    assert policy.delay_for(1) == 1
    assert policy.delay_for(2) == 2
    assert policy.delay_for(10) == 5


def _status_error(code):
    request = httpx.Request("GET", "https://example.com")
    return httpx.HTTPStatusError("boom", request=request, response=httpx.Response(code, request=request))


def test_is_retryable():
    assert is_retryable(_status_error(503))
    assert is_retryable(_status_error(429))
    assert not is_retryable(_status_error(400))
    assert is_retryable(httpx.ConnectError("refused"))
    assert is_retryable(asyncio.TimeoutError())
    assert not is_retryable(ValueError("bad"))
    assert is_retryable(RuntimeError("unknown"))
