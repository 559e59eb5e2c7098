"""Opt-in exponential-backoff retry for bridge operations."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

BASE_DELAY = 0.1
MAX_DELAY = 2.0


def backoff_delay(attempt: int, base_delay: float = BASE_DELAY, max_delay: float = MAX_DELAY) -> float:
    """0.1, 0.2, 0.4, ... seconds, capped at ``max_delay``."""
    return min(base_delay * (2 ** attempt), max_delay)


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    retries: int,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    base_delay: float = BASE_DELAY,
    max_delay: float = MAX_DELAY,
    give_up: Optional[Callable[[BaseException], bool]] = None,
) -> T:
    """
    Await ``fn()`` up to ``retries + 1`` times.

    The bridge never retries tool calls on its own: some remote tools are
    billed per call, so each caller decides whether retrying is safe.
    Errors for which ``give_up`` returns True are raised immediately; the
    last error is re-raised once attempts run out.
    """
    attempt = 0
    while True:
        try:
            return await fn()
        except retry_on as exc:
            if attempt >= retries or (give_up is not None and give_up(exc)):
                raise
            delay = backoff_delay(attempt, base_delay, max_delay)
            logger.debug("Attempt %d failed (%s); retrying in %.1fs", attempt + 1, exc, delay)
            attempt += 1
        await asyncio.sleep(delay)
