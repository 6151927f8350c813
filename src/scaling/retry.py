"""Bounded retry with exponential backoff for external calls."""

import asyncio
import functools
import logging
from typing import Any, Awaitable, Callable, Optional

from src.scaling.config import RetryPolicy

logger = logging.getLogger(__name__)

Classifier = Callable[[BaseException], bool]


def never_transient(error: BaseException) -> bool:
    return False


def backoff_delay(base_interval: float, attempt: int) -> float:
    """Delay in seconds before retry number ``attempt`` (1-based)."""
    return float(base_interval) ** attempt


async def call_with_retry(
    func: Callable[..., Awaitable[Any]],
    policy: RetryPolicy,
    is_transient: Classifier = never_transient,
    *args,
    sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    **kwargs,
) -> Any:
    """Await ``func(*args, **kwargs)``, retrying transient failures.

    Args:
        func: Coroutine function to call
        policy: Retry count and base interval
        is_transient: Returns True for errors worth retrying
        sleep: Awaitable sleep, defaults to ``asyncio.sleep``

    Returns:
        Whatever ``func`` returns

    Raises:
        The last error once retries are exhausted, or any non-transient
        error immediately
    """
    sleep = sleep or asyncio.sleep
    name = getattr(func, "__qualname__", repr(func))

    for attempt in range(policy.count + 1):
        try:
            return await func(*args, **kwargs)
        except Exception as e:
            if not is_transient(e):
                raise

            if attempt >= policy.count:
                logger.error(f"Max retries ({policy.count}) reached for {name}")
                raise

            delay = backoff_delay(policy.interval, attempt + 1)
            logger.warning(
                f"Retry {attempt + 1}/{policy.count} for {name} "
                f"after {delay:.2f}s delay. Error: {e}"
            )
            await sleep(delay)


def retry_with_exponential_backoff(
    policy: RetryPolicy,
    is_transient: Classifier = never_transient,
) -> Callable:
    """Decorator form of ``call_with_retry`` for coroutine functions.

    Args:
        policy: Retry count and base interval
        is_transient: Returns True for errors worth retrying

    Returns:
        Decorated coroutine function with retry logic
    """
    def decorator(func: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            return await call_with_retry(func, policy, is_transient, *args, **kwargs)

        return wrapper
    return decorator
