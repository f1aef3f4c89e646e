"""Retry logic using tenacity library.

Provides exponential backoff with jitter for network operations.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, TypeVar

import httpx
from tenacity import (
    RetryCallState,
    before_sleep_log,
    retry_if_exception,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)
from tenacity import (
    retry as _retry,
)

T = TypeVar("T")

logger = logging.getLogger(__name__)


class wait_retry_after:  # noqa: N801 - tenacity naming convention
    """Wait strategy that honors an exception's ``retry_after`` attribute.

    Falls back to ``fallback`` when the failed attempt carries no hint.
    Hints are capped at ``max_delay`` seconds.
    """

    def __init__(self, fallback: Callable[[RetryCallState], float], max_delay: float) -> None:
        self.fallback = fallback
        self.max_delay = max_delay

    def __call__(self, retry_state: RetryCallState) -> float:
        outcome = retry_state.outcome
        exc = outcome.exception() if outcome is not None else None
        retry_after = getattr(exc, "retry_after", None)
        if isinstance(retry_after, (int, float)) and retry_after >= 0:
            return min(float(retry_after), self.max_delay)
        return self.fallback(retry_state)


def backoff_wait(base_delay: float, max_delay: float, jitter: float) -> Any:
    """Exponential wait (base_delay * 2**n, capped at max_delay) plus up to ``jitter`` seconds."""
    return wait_exponential(multiplier=base_delay, max=max_delay) + wait_random(0, jitter)


def retry_with_backoff(
    *,
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    jitter: float = 1.0,
    retry_exceptions: tuple[type[BaseException], ...] | None = None,
    retry_if: Callable[[BaseException], bool] | None = None,
    honor_retry_after: bool = False,
    logger_instance: logging.Logger | None = None,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Retry decorator with exponential backoff and jitter.

    Works on plain functions and coroutines (tenacity picks the async
    retrier for coroutine functions).

    Args:
        max_attempts: Total attempts including the first try
        base_delay: Initial delay in seconds
        max_delay: Maximum delay in seconds
        jitter: Random jitter added to each delay
        retry_exceptions: Exception types to retry on
        retry_if: Predicate deciding whether an exception is retryable.
            Takes precedence over retry_exceptions.
        honor_retry_after: Use the exception's ``retry_after`` as the delay
        logger_instance: Logger for retry warnings (uses module logger if None)

    Returns:
        Decorator function

    Example:
        @retry_with_backoff(max_attempts=3, retry_exceptions=NETWORK_EXCEPTIONS)
        async def fetch():
            return await client.get(url)
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    if retry_if is not None:
        retry_condition: Any = retry_if_exception(retry_if)
    else:
        retry_condition = retry_if_exception_type(retry_exceptions or (Exception,))

    wait: Any = backoff_wait(base_delay, max_delay, jitter)
    if honor_retry_after:
        wait = wait_retry_after(wait, max_delay)

    log = logger_instance or logger

    return _retry(
        reraise=True,
        stop=stop_after_attempt(max_attempts),
        wait=wait,
        retry=retry_condition,
        before_sleep=before_sleep_log(log, logging.WARNING),
    )


# Common exception groups for network operations
NETWORK_EXCEPTIONS: tuple[type[Exception], ...] = (
    ConnectionError,
    TimeoutError,
    httpx.TimeoutException,
    httpx.ConnectError,
    httpx.ReadError,
)
