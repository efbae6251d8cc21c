"""Bounded exponential backoff for read paths."""

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

from loguru import logger

T = TypeVar("T")

# Seconds slept before each retry; the length is the number of retries.
DEFAULT_RETRY_DELAYS: tuple[float, ...] = (1.0, 2.0, 4.0)


def _always(_exc: Exception) -> bool:
    return True


async def call_with_retry(
    loader: Callable[[], Awaitable[T]],
    *,
    delays: Sequence[float] = DEFAULT_RETRY_DELAYS,
    should_retry: Callable[[Exception], bool] = _always,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    label: str = "request",
) -> T:
    """Call ``loader`` with exponential backoff between failed attempts.

    The initial attempt is followed by at most ``len(delays)`` retries,
    sleeping ``delays[n]`` seconds before retry ``n``. The last failure,
    or the first one ``should_retry`` rejects, is re-raised.

    Args:
        loader: Zero-argument coroutine function performing one round trip.
        delays: Backoff table in seconds.
        should_retry: Predicate deciding whether a failure is transient.
        sleep: Awaitable sleep, injectable for tests.
        label: Name used in log messages.

    Returns:
        The loader's result from the first successful attempt.
    """
    attempts = len(delays) + 1
    for attempt in range(attempts):
        try:
            return await loader()
        except Exception as e:
            if attempt == attempts - 1 or not should_retry(e):
                raise
            delay = delays[attempt]
            logger.warning(f"{label} failed (attempt {attempt + 1}/{attempts}), retrying in {delay}s: {e}")
            await sleep(delay)

    msg = "unreachable: retry loop exited without result"
    raise AssertionError(msg)
