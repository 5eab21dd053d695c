"""Bounded retry shared by the buy and sell paths."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

from loguru import logger

from src.trading.errors import ExecutionError, RetriesExhausted

T = TypeVar("T")


async def retry_async(
    operation: Callable[[int], Awaitable[T]],
    *,
    max_retries: int,
    delay: float,
    backoff: float = 1.0,
    label: str = "operation",
) -> T:
    """Run ``operation(attempt)`` up to ``max_retries + 1`` times.

    Only ExecutionError with ``retryable=True`` is retried; anything else
    propagates on the spot. Attempts are strictly sequential with ``delay``
    seconds between them (multiplied by ``backoff`` after each failure).
    Raises RetriesExhausted carrying the last error once the bound is hit.
    """
    last_error: ExecutionError | None = None
    wait = delay
    total = max(max_retries, 0) + 1

    for attempt in range(1, total + 1):
        try:
            return await operation(attempt)
        except ExecutionError as e:
            if not e.retryable:
                raise
            last_error = e
            if attempt == total:
                break
            logger.warning(
                f"[RETRY] {label} attempt {attempt}/{total} failed: {e}. "
                f"Retrying in {wait:.2f}s"
            )
            if wait > 0:
                await asyncio.sleep(wait)
            wait *= backoff

    raise RetriesExhausted(label, total, last_error)
