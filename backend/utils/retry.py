"""
Bounded retry with exponential backoff for async operations
"""
import asyncio
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

import httpx
from loguru import logger

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY = 1.0

_RETRYABLE_PATTERNS = (
    "timeout",
    "timed out",
    "connection refused",
    "connection reset",
    "network",
    "rate limit",
    "too many requests",
    "service unavailable",
    "internal server error",
    "bad gateway",
)


def calculate_delay(attempt: int, base_delay: float, backoff: bool = True) -> float:
    """Delay before the retry that follows `attempt` (1-indexed)"""
    if not backoff:
        return base_delay
    return base_delay * (2 ** (attempt - 1))


def is_retryable_error(error: BaseException) -> bool:
    """Check if an error looks transient (timeouts, connection drops, 429/5xx)"""
    if isinstance(error, (asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return True
    if isinstance(error, (httpx.TimeoutException, httpx.TransportError)):
        return True
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        return status == 429 or status >= 500

    message = str(error).lower()
    return any(pattern in message for pattern in _RETRYABLE_PATTERNS)


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    base_delay: float = DEFAULT_BASE_DELAY,
    backoff: bool = True,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    on_retry: Optional[Callable[[int, BaseException], None]] = None,
    operation: str = "operation",
) -> T:
    """
    Await `fn()` with bounded retries.

    Args:
        fn: Zero-argument coroutine factory, called once per attempt
        max_attempts: Total attempts including the first one
        base_delay: Delay in seconds before the first retry
        backoff: Double the delay after every failed attempt
        retry_on: Exception types worth retrying; anything else propagates at once
        on_retry: Optional callback invoked before each retry sleep
        operation: Label used in log messages

    Returns:
        Result of the first successful attempt

    Raises:
        The last exception once all attempts are used up
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    for attempt in range(1, max_attempts + 1):
        try:
            return await fn()
        except retry_on as e:
            if attempt >= max_attempts:
                logger.error(f"{operation} failed after {attempt} attempts: {e}")
                raise

            delay = calculate_delay(attempt, base_delay, backoff)
            logger.warning(
                f"{operation} failed (attempt {attempt}/{max_attempts}), retrying in {delay:.1f}s: {e}"
            )
            if on_retry:
                on_retry(attempt, e)
            await asyncio.sleep(delay)

    # Unreachable: the loop either returns or raises
    raise RuntimeError(f"{operation}: retry loop exited without result")
