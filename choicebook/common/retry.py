"""
Exponential-backoff retry executor for generative AI calls.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from .errors import ErrorRecord, GenerationError, OperationContext, classify_error

T = TypeVar("T")

SleepCallable = Callable[[float], Awaitable[None]]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryConfig:
    """
    Retry policy knobs.

    Attributes
    ----------
    max_retries:
        Retries after the first attempt; total attempts are ``max_retries + 1``.
    base_delay:
        Delay in seconds before the second attempt.
    max_delay:
        Upper bound in seconds for any single delay.
    backoff_factor:
        Multiplier applied to the delay after each failed attempt.
    """

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    backoff_factor: float = 2.0

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be zero or positive.")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("Retry delays must be zero or positive.")
        if self.backoff_factor < 1:
            raise ValueError("backoff_factor must be at least 1.")

    @classmethod
    def from_env(cls) -> "RetryConfig":
        """
        Build a config from ``CHOICEBOOK_RETRY_*`` environment variables, keeping
        defaults for anything unset.
        """
        defaults = cls()
        return cls(
            max_retries=int(os.getenv("CHOICEBOOK_RETRY_MAX_RETRIES", defaults.max_retries)),
            base_delay=float(os.getenv("CHOICEBOOK_RETRY_BASE_DELAY", defaults.base_delay)),
            max_delay=float(os.getenv("CHOICEBOOK_RETRY_MAX_DELAY", defaults.max_delay)),
            backoff_factor=float(
                os.getenv("CHOICEBOOK_RETRY_BACKOFF_FACTOR", defaults.backoff_factor)
            ),
        )


def backoff_delay(attempt: int, config: RetryConfig) -> float:
    """Delay in seconds to wait after the given (1-based) failed attempt."""
    if attempt < 1:
        raise ValueError("attempt numbers start at 1.")
    try:
        raw = config.base_delay * config.backoff_factor ** (attempt - 1)
    except OverflowError:
        return config.max_delay
    return min(raw, config.max_delay)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    context: OperationContext,
    config: RetryConfig | None = None,
    *,
    sleep: SleepCallable = asyncio.sleep,
) -> T:
    """
    Run ``operation`` until it succeeds, retrying retryable failures with backoff.

    Raises
    ------
    GenerationError
        When the failure is not retryable or the retry budget is exhausted. The error
        carries the classified record of the last failure and chains the original
        exception.
    """
    resolved = config or RetryConfig()
    attempt = 0

    while True:
        attempt += 1
        try:
            result = await operation()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            record: ErrorRecord = classify_error(exc, context)
            if not record.retryable or attempt > resolved.max_retries:
                logger.error(
                    "%s failed after %d attempt(s) with %s: %s",
                    context.operation,
                    attempt,
                    record.code.value,
                    record.message,
                )
                raise GenerationError(record) from exc

            delay = backoff_delay(attempt, resolved)
            logger.warning(
                "%s attempt %d/%d failed with %s; retrying in %.2fs",
                context.operation,
                attempt,
                resolved.max_retries + 1,
                record.code.value,
                delay,
            )
            await sleep(delay)
            continue

        if attempt > 1:
            logger.info("%s succeeded on attempt %d", context.operation, attempt)
        return result
