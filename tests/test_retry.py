"""Tests for error classification and retry with backoff."""

import random

import httpx
import pytest

from flipcore.services.errors import ErrorCode, ServiceError, classify_exception, classify_status
from flipcore.services.retry import RetryPolicy, policy_for_service, with_retry

FAST = RetryPolicy(max_retries=3, initial_delay_ms=1000, max_delay_ms=30000, jitter_fraction=0)


class Sleeper:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


class Flaky:
    """Operation that fails with the given errors, then returns a value."""

    def __init__(self, errors, value="ok"):
        self.errors = list(errors)
        self.value = value
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.value


def status_error(status, headers=None):
    request = httpx.Request("GET", "https://api.example.com/search")
    response = httpx.Response(status, headers=headers, request=request)
    return httpx.HTTPStatusError(f"HTTP {status}", request=request, response=response)


def test_rate_limit_classified_per_service():
    error = classify_exception(status_error(429, {"Retry-After": "7"}), "ebay")

    assert error.code == ErrorCode.EBAY_RATE_LIMIT
    assert error.retryable
    assert error.retry_after == 7.0
    assert error.status_code == 429


def test_status_classification():
    assert classify_status(401, "psa").code == ErrorCode.AUTH_FAILED
    assert not classify_status(403, "psa").retryable
    assert classify_status(404, "ebay").code == ErrorCode.NOT_FOUND
    assert classify_status(503, "serpapi").code == ErrorCode.SERPAPI_ERROR
    assert classify_status(503, "psa").code == ErrorCode.NETWORK_ERROR
    assert classify_status(504, "openai").code == ErrorCode.OPENAI_TIMEOUT
    assert classify_status(400, "ebay").code == ErrorCode.VALIDATION_ERROR


def test_exception_classification():
    assert classify_exception(httpx.ConnectError("refused"), "ebay").code == ErrorCode.NETWORK_ERROR
    assert classify_exception(httpx.ReadTimeout("slow"), "ebay").code == ErrorCode.EBAY_TIMEOUT
    assert classify_exception(TimeoutError(), "psa").code == ErrorCode.TIMEOUT
    assert classify_exception(ValueError("bad json"), "psa").code == ErrorCode.VALIDATION_ERROR
    assert classify_exception(RuntimeError("?"), "psa").code == ErrorCode.UNKNOWN

    original = ServiceError(ErrorCode.QUOTA_EXCEEDED, "psa")
    assert classify_exception(original, "psa") is original


def test_user_message():
    error = ServiceError(ErrorCode.EBAY_RATE_LIMIT, "ebay")
    assert "busy" in error.user_message
    assert str(error) == "ebay: EBAY_RATE_LIMIT"


def test_delay_is_exponential_and_capped():
    assert FAST.calculate_delay(0) == 1000
    assert FAST.calculate_delay(1) == 2000
    assert FAST.calculate_delay(3) == 8000
    assert FAST.calculate_delay(10) == 30000


def test_delay_jitter_within_bounds():
    policy = RetryPolicy(initial_delay_ms=1000, jitter_fraction=0.1)
    rng = random.Random(11)
    for _ in range(200):
        assert 900 <= policy.calculate_delay(0, rng) <= 1100


def test_service_policies():
    assert policy_for_service("EBAY").max_retries == 5
    assert policy_for_service("ebay").initial_delay_ms == 2000
    assert policy_for_service("unknown-service").max_retries == 3
    with pytest.raises(ValueError):
        RetryPolicy(max_retries=-1)


@pytest.mark.asyncio
async def test_retries_until_success():
    sleep = Sleeper()
    operation = Flaky([httpx.ConnectError("refused"), status_error(503)])

    result = await with_retry(operation, "ebay", FAST, sleep=sleep)

    assert result == "ok"
    assert operation.calls == 3
    assert sleep.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_non_retryable_raises_immediately():
    sleep = Sleeper()
    operation = Flaky([status_error(401)])

    with pytest.raises(ServiceError) as exc_info:
        await with_retry(operation, "psa", FAST, sleep=sleep)

    assert exc_info.value.code == ErrorCode.AUTH_FAILED
    assert isinstance(exc_info.value.__cause__, httpx.HTTPStatusError)
    assert operation.calls == 1
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_gives_up_after_max_retries():
    sleep = Sleeper()
    operation = Flaky([httpx.ConnectError("refused")] * 10)

    with pytest.raises(ServiceError) as exc_info:
        await with_retry(operation, "ebay", FAST, sleep=sleep)

    assert exc_info.value.code == ErrorCode.NETWORK_ERROR
    assert operation.calls == 4
    assert len(sleep.delays) == 3


@pytest.mark.asyncio
async def test_retry_after_extends_delay():
    sleep = Sleeper()
    operation = Flaky([status_error(429, {"Retry-After": "5"})])

    await with_retry(operation, "ebay", FAST, sleep=sleep)

    assert sleep.delays == [5.0]
