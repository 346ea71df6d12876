"""Test the retry executor and backoff schedule."""

import asyncio

import pytest

from choicebook.common import (
    ErrorCode,
    GenerationError,
    OperationContext,
    RetryConfig,
    backoff_delay,
    with_retry,
)

CONTEXT = OperationContext(operation="story_generation", kid_id="kid-1")


class FlakyOperation:
    """Fails with the queued errors, then returns ``value``."""

    def __init__(self, *errors: Exception, value: str = "ok") -> None:
        self.errors = list(errors)
        self.value = value
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.value


def test_backoff_schedule_doubles_and_caps():
    """Test delays of 1, 2, 4, ... seconds capped at max_delay."""
    config = RetryConfig()
    assert [backoff_delay(attempt, config) for attempt in range(1, 8)] == [
        1.0,
        2.0,
        4.0,
        8.0,
        16.0,
        30.0,
        30.0,
    ]


def test_backoff_rejects_attempt_zero():
    """Test that attempts are 1-based."""
    with pytest.raises(ValueError):
        backoff_delay(0, RetryConfig())


def test_backoff_survives_overflow():
    """Test that huge attempt numbers fall back to the cap."""
    assert backoff_delay(10_000, RetryConfig()) == 30.0


@pytest.mark.parametrize(
    "kwargs",
    [{"max_retries": -1}, {"base_delay": -1.0}, {"max_delay": -0.5}, {"backoff_factor": 0.5}],
)
def test_retry_config_validation(kwargs):
    """Test that nonsensical configs are rejected."""
    with pytest.raises(ValueError):
        RetryConfig(**kwargs)


def test_retry_config_from_env(monkeypatch):
    """Test environment overrides with defaults for unset values."""
    monkeypatch.setenv("CHOICEBOOK_RETRY_MAX_RETRIES", "5")
    monkeypatch.setenv("CHOICEBOOK_RETRY_BASE_DELAY", "0.5")
    monkeypatch.delenv("CHOICEBOOK_RETRY_MAX_DELAY", raising=False)
    monkeypatch.delenv("CHOICEBOOK_RETRY_BACKOFF_FACTOR", raising=False)

    config = RetryConfig.from_env()

    assert config == RetryConfig(max_retries=5, base_delay=0.5, max_delay=30.0, backoff_factor=2.0)


@pytest.mark.anyio
async def test_success_on_first_attempt_does_not_sleep(no_sleep):
    """Test that a healthy operation runs exactly once."""
    operation = FlakyOperation()

    assert await with_retry(operation, CONTEXT, sleep=no_sleep) == "ok"
    assert operation.calls == 1
    assert no_sleep.delays == []


@pytest.mark.anyio
async def test_retryable_failures_then_success(no_sleep):
    """Test recovery after transient failures."""
    operation = FlakyOperation(RuntimeError("timeout"), RuntimeError("503"))

    assert await with_retry(operation, CONTEXT, sleep=no_sleep) == "ok"
    assert operation.calls == 3
    assert no_sleep.delays == [1.0, 2.0]


@pytest.mark.anyio
async def test_retry_budget_is_max_retries_plus_one(no_sleep):
    """Test that a persistently retryable failure stops after four attempts."""
    operation = FlakyOperation(*(RuntimeError("rate limit") for _ in range(10)))

    with pytest.raises(GenerationError) as excinfo:
        await with_retry(operation, CONTEXT, RetryConfig(max_retries=3), sleep=no_sleep)

    assert operation.calls == 4
    assert no_sleep.delays == [1.0, 2.0, 4.0]
    assert excinfo.value.code == ErrorCode.RATE_LIMIT_EXCEEDED
    assert excinfo.value.record.context == CONTEXT
    assert isinstance(excinfo.value.__cause__, RuntimeError)


@pytest.mark.anyio
async def test_non_retryable_failure_raises_immediately(no_sleep):
    """Test that authentication failures are never retried."""
    operation = FlakyOperation(RuntimeError("Invalid API key"))

    with pytest.raises(GenerationError) as excinfo:
        await with_retry(operation, CONTEXT, sleep=no_sleep)

    assert operation.calls == 1
    assert no_sleep.delays == []
    assert excinfo.value.code == ErrorCode.AUTHENTICATION_ERROR
    assert excinfo.value.recoverable is False


@pytest.mark.anyio
async def test_last_failure_decides_the_record(no_sleep):
    """Test that the reported error is the final attempt's."""
    operation = FlakyOperation(RuntimeError("timeout"), RuntimeError("content policy"))

    with pytest.raises(GenerationError) as excinfo:
        await with_retry(operation, CONTEXT, sleep=no_sleep)

    assert operation.calls == 2
    assert excinfo.value.code == ErrorCode.CONTENT_POLICY_VIOLATION


@pytest.mark.anyio
async def test_zero_retries_means_single_attempt(no_sleep):
    """Test max_retries=0."""
    operation = FlakyOperation(RuntimeError("timeout"))

    with pytest.raises(GenerationError):
        await with_retry(operation, CONTEXT, RetryConfig(max_retries=0), sleep=no_sleep)

    assert operation.calls == 1


@pytest.mark.anyio
async def test_cancellation_is_not_retried(no_sleep):
    """Test that cancellation propagates untouched."""
    operation = FlakyOperation(asyncio.CancelledError())

    with pytest.raises(asyncio.CancelledError):
        await with_retry(operation, CONTEXT, sleep=no_sleep)

    assert operation.calls == 1
