"""Retry helpers for calls to external APIs."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

T = TypeVar("T")

RATE_LIMIT_STATUSES = (403, 429)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 2,
    *,
    delay: float = 1.0,
    on_retry: Callable[[int, BaseException], None] | None = None,
    should_retry: Callable[[BaseException], bool] | None = None,
) -> T:
    """Await ``operation`` up to ``max_attempts`` times with a fixed delay.

    ``on_retry(attempt, error)`` runs before each retry. When ``should_retry``
    rejects an error it is raised immediately. Exhausting the attempts re-raises
    the last error.
    """
    attempts = max(1, max_attempts)
    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except Exception as exc:
            if attempt == attempts:
                raise
            if should_retry is not None and not should_retry(exc):
                raise
            if on_retry is not None:
                on_retry(attempt, exc)
            await asyncio.sleep(delay)
    raise AssertionError("unreachable")  # pragma: no cover


def error_status(error: BaseException) -> int | None:
    status = getattr(error, "status", None)
    if isinstance(status, int):
        return status
    response = getattr(error, "response", None)
    status_code = getattr(response, "status_code", None)
    if isinstance(status_code, int):
        return status_code
    return None


def is_rate_limited(error: BaseException) -> bool:
    return error_status(error) in RATE_LIMIT_STATUSES
