"""
Retry executor with exponential backoff and jitter.
"""

import asyncio
import functools
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from typing import Any, TypeVar

from chatmirror.errors import SyncError, classify

logger = logging.getLogger(__name__)

T = TypeVar("T")

RetryCallback = Callable[[int, float, SyncError], None]


def _default_is_retryable(error: SyncError) -> bool:
    # Network and 5xx-equivalent failures only
    return error.transient


@dataclass(frozen=True)
class RetryPolicy:
    """
    Retry configuration.

    Attributes:
        max_attempts: Total number of invocations, including the first one
        initial_delay: Delay before the first retry (seconds)
        max_delay: Upper bound for any single delay (seconds)
        backoff_multiplier: Growth factor between consecutive delays
        jitter: Scale each delay by a random factor in [0.75, 1.25]
    """

    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 10.0
    backoff_multiplier: float = 2.0
    jitter: bool = True

    def with_overrides(self, **changes: Any) -> "RetryPolicy":
        return replace(self, **changes)


class RetryPresets:
    """Preset policies for common call sites."""

    # Minor network hiccups
    QUICK = RetryPolicy(max_attempts=3, initial_delay=0.5, max_delay=2.0)
    # Regular API reads
    STANDARD = RetryPolicy(max_attempts=3, initial_delay=1.0, max_delay=10.0)
    # Critical operations
    AGGRESSIVE = RetryPolicy(max_attempts=5, initial_delay=2.0, max_delay=30.0)
    # Background work that can afford to wait
    GENTLE = RetryPolicy(max_attempts=3, initial_delay=3.0, max_delay=15.0)


def compute_delay(
    attempt: int,
    initial_delay: float,
    max_delay: float,
    backoff_multiplier: float = 2.0,
    jitter: bool = False,
    rng: Callable[[float, float], float] = random.uniform,
) -> float:
    """
    Delay to wait after the given (1-based) failed attempt.

    `min(max_delay, initial_delay * backoff_multiplier ** (attempt - 1))`,
    optionally scaled by a ±25% jitter factor.
    """
    delay = min(max_delay, initial_delay * backoff_multiplier ** (attempt - 1))
    if jitter:
        delay *= rng(0.75, 1.25)
    return delay


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy = RetryPresets.STANDARD,
    *,
    on_retry: RetryCallback | None = None,
    is_retryable: Callable[[SyncError], bool] = _default_is_retryable,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """
    Execute an async operation, retrying transient failures.

    Args:
        operation: Zero-argument coroutine factory
        policy: Attempts and backoff parameters
        on_retry: Called with (attempt, delay, error) before each retry
        is_retryable: Decides whether a classified error is worth retrying
        sleep: Awaitable sleep, replaceable in tests

    Returns:
        The operation's result.

    Raises:
        The last exception raised by the operation, unchanged.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = classify(e, {"attempt": attempt})
            last_attempt = attempt >= policy.max_attempts

            if last_attempt or not is_retryable(error):
                logger.debug(
                    f"Attempt {attempt}/{policy.max_attempts} failed "
                    f"(not retrying): {error.message}"
                )
                raise

            delay = compute_delay(
                attempt,
                policy.initial_delay,
                policy.max_delay,
                policy.backoff_multiplier,
                policy.jitter,
            )
            logger.debug(
                f"Attempt {attempt}/{policy.max_attempts} failed, "
                f"retrying in {delay:.2f}s: {error.message}"
            )
            if on_retry is not None:
                on_retry(attempt, delay, error)

            await sleep(delay)


def retryable(policy: RetryPolicy = RetryPresets.STANDARD, **kwargs: Any):
    """
    Decorator form of `with_retry`.

    Example:
        @retryable(RetryPresets.QUICK)
        async def fetch(): ...
    """

    def decorator(fn: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(fn)
        async def wrapper(*args: Any, **call_kwargs: Any) -> T:
            return await with_retry(lambda: fn(*args, **call_kwargs), policy, **kwargs)

        return wrapper

    return decorator
