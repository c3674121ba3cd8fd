"""Timeout and bounded-retry helpers for calls to remote backends."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from storyteller.errors import TransientIOError
from storyteller.telemetry import record_retry

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def with_timeout(
    operation: Callable[[], Awaitable[T]],
    timeout_seconds: float,
    label: str,
) -> T:
    """Run ``operation`` under a hard deadline, reporting expiry as transient."""

    try:
        async with asyncio.timeout(timeout_seconds):
            return await operation()
    except TimeoutError as exc:
        raise TransientIOError(f"{label} timed out after {timeout_seconds:g}s") from exc


def is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, TransientIOError)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: int,
    backoff_seconds: float,
    label: str,
    retryable: Callable[[BaseException], bool] = is_retryable,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Call ``operation`` up to ``attempts`` times with linear backoff.

    Only failures accepted by ``retryable`` are retried; anything else, and the
    failure of the final attempt, propagates unchanged.
    """

    attempt = 1
    while True:
        try:
            return await operation()
        except Exception as exc:
            if attempt >= attempts or not retryable(exc):
                raise
            delay = backoff_seconds * attempt
            logger.warning(
                "%s failed (attempt %d/%d): %s; retrying in %.2fs",
                label,
                attempt,
                attempts,
                exc,
                delay,
            )
            record_retry(label)
            await sleep(delay)
            attempt += 1


__all__ = ["with_timeout", "with_retry", "is_retryable"]
