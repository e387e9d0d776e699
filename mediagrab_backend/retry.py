from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Error text that marks a provider failure as transient.
RETRYABLE_PATTERNS = (
    "anti-bot protection",
    "error page",
    "something went wrong",
    "try again",
    "blocking automated access",
    "rate limit",
    "too many requests",
)


def is_retryable(error: BaseException) -> bool:
    text = str(error).lower()
    return any(pattern in text for pattern in RETRYABLE_PATTERNS)


def backoff_delay(
    attempt: int,
    initial_delay: float,
    jitter: float = 0.2,
    rng: Callable[[float, float], float] = random.uniform,
) -> float:
    """``initial_delay * 2**attempt`` shifted by up to +/- ``jitter`` of itself."""
    delay = initial_delay * (2 ** attempt)
    return max(0.0, delay + delay * jitter * rng(-1.0, 1.0))


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    initial_delay: float = 2.0,
    jitter: float = 0.2,
    sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    label: Optional[str] = None,
) -> T:
    """Call ``fn`` and retry transient failures with exponential backoff.

    Non-transient errors propagate immediately. After ``max_retries`` extra
    attempts the last error propagates.
    """
    attempt = 0
    while True:
        try:
            return await fn()
        except Exception as e:
            if not is_retryable(e) or attempt >= max_retries:
                raise
            delay = backoff_delay(attempt, initial_delay, jitter)
            logger.info(
                "[Fetch] %sRetry attempt %d/%d after %.2fs delay: %s",
                f"{label}: " if label else "",
                attempt + 1,
                max_retries,
                delay,
                e,
            )
            await sleep(delay)
            attempt += 1
