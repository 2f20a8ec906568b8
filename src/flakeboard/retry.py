"""Exponential backoff for calls to remote collaborators."""

from __future__ import annotations

import asyncio
import secrets
from functools import wraps
from typing import TYPE_CHECKING, TypeVar

from flakeboard.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

T = TypeVar("T")

logger = get_logger(__name__)


def backoff_delay(attempt: int, base_delay: float, max_delay: float, jitter: bool) -> float:
    """Delay before retry number ``attempt + 1``, scaled by 0.5-1.5 when jittered."""
    delay = min(base_delay * (2**attempt), max_delay)
    if jitter:
        # secrets.randbelow returns [0, n)
        delay = delay * (0.5 + secrets.randbelow(1000) / 1000)
    return delay


def retry_with_backoff(
    *,
    retryable_exceptions: tuple[type[Exception], ...],
    retry_on_result: Callable[[T], bool] | None = None,
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    jitter: bool = True,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """
    Decorator for retrying async calls with exponential backoff.

    Args:
        retryable_exceptions: Exception types that mark a transient failure.
            Callers name their transport's errors; there is no default.
        retry_on_result: Optional predicate marking a returned value as
            transient, e.g. an HTTP 503 response. When retries run out the
            last such value is returned for the caller to handle.
        max_retries: Maximum number of retry attempts.
        base_delay: Initial delay between retries in seconds.
        max_delay: Maximum delay between retries in seconds.
        jitter: Whether to add randomness to delay.

    Returns:
        Decorated async function with retry logic.
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            for attempt in range(max_retries + 1):
                try:
                    result = await func(*args, **kwargs)
                except retryable_exceptions as e:
                    if attempt == max_retries:
                        logger.error(
                            "retry_exhausted",
                            function=func.__name__,
                            attempt=attempt + 1,
                            max_retries=max_retries,
                            error=str(e),
                        )
                        raise
                    reason = str(e)
                else:
                    if retry_on_result is None or not retry_on_result(result):
                        return result
                    if attempt == max_retries:
                        logger.error(
                            "retry_exhausted",
                            function=func.__name__,
                            attempt=attempt + 1,
                            max_retries=max_retries,
                            result=repr(result),
                        )
                        return result
                    reason = repr(result)

                delay = backoff_delay(attempt, base_delay, max_delay, jitter)
                logger.warning(
                    "retry_attempt",
                    function=func.__name__,
                    attempt=attempt + 1,
                    max_retries=max_retries,
                    delay_seconds=round(delay, 2),
                    error=reason,
                )
                await asyncio.sleep(delay)

            raise RuntimeError("Unexpected retry loop exit")

        return wrapper

    return decorator
