"""Readiness probing: poll a cheap RPC until the node answers."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from loguru import logger

from wnodeprobe.utils.exceptions import DecodeError, LifecycleError, ProtocolError, TransportError
from wnodeprobe.utils.retry import RetryPolicy, with_retry

Probe = Callable[[], Awaitable[Any]]


async def wait_until_ready(probe: Probe, policy: RetryPolicy, *, name: str) -> None:
    """Retry ``probe`` with bounded backoff until the node answers.

    Any JSON-RPC reply counts as ready, including an error reply. Transport
    and decode failures are retried; once the attempts are exhausted a
    LifecycleError with code NOT_READY is raised.
    """

    async def _attempt() -> None:
        try:
            await probe()
        except ProtocolError as exc:
            logger.debug("[{}] probe answered with rpc error {}; treating node as up", name, exc.rpc_code)

    try:
        await with_retry(_attempt, policy, retry_on=(TransportError, DecodeError), label=f"[{name}] readiness probe")
    except (TransportError, DecodeError) as exc:
        raise LifecycleError(
            name,
            f"not ready after {policy.max_attempts} attempts: {exc.message}",
            code="NOT_READY",
        ) from exc
    logger.info("[{}] ready", name)
