"""Bounded retry helpers for readiness probing."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import TypeVar
from collections.abc import Awaitable, Callable

from loguru import logger

T = TypeVar("T")


@dataclass(slots=True)
class RetryPolicy:
    """Simple exponential-backoff retry policy."""

    max_attempts: int = 20
    base_delay_seconds: float = 0.25
    max_delay_seconds: float = 2.0

    def delay_for(self, attempt: int) -> float:
        return min(self.max_delay_seconds, self.base_delay_seconds * (2**attempt))


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    label: str = "operation",
) -> T:
    """Run async callable with retries and bounded exponential backoff.

    Only exceptions listed in ``retry_on`` trigger another attempt; anything else
    propagates immediately. The last retryable exception is re-raised once the
    attempts are exhausted.
    """
    if policy.max_attempts <= 1:
        return await fn()
    last_exc: BaseException | None = None
    for attempt in range(policy.max_attempts):
        try:
            return await fn()
        except retry_on as exc:
            last_exc = exc
            if attempt >= policy.max_attempts - 1:
                break
            delay = policy.delay_for(attempt)
            logger.debug("{} attempt {}/{} failed ({}); retrying in {:.2f}s", label, attempt + 1, policy.max_attempts, exc, delay)
            await asyncio.sleep(delay)
    assert last_exc is not None
    raise last_exc
