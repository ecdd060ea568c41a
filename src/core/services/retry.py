"""Bounded exponential backoff for transient (`NetworkError`) failures."""

from __future__ import annotations

import asyncio
import random
from typing import Awaitable, Callable, TypeVar

from core.config import AppSettings
from core.errors import NetworkError
from core.log import logger

T = TypeVar("T")


def backoff_delay(attempt: int, *, settings: AppSettings) -> float:
    base = settings.retry_backoff_seconds * (2**attempt)
    return min(settings.retry_backoff_cap_seconds, base)


async def with_retries(
    operation: Callable[[], Awaitable[T]],
    *,
    settings: AppSettings,
    what: str,
) -> T:
    """Run `operation`, retrying `NetworkError` up to `settings.max_retries` times."""

    attempt = 0
    while True:
        try:
            return await operation()
        except NetworkError as exc:
            if attempt >= settings.max_retries:
                raise NetworkError(
                    f"{what} failed after {attempt + 1} attempts: {exc.message}",
                    path=exc.path,
                ) from exc
            delay = backoff_delay(attempt, settings=settings)
            logger.warning("{} failed ({}); retrying in {:.2f}s", what, exc.message, delay)
            await asyncio.sleep(delay + random.uniform(0.0, delay * 0.1))
            attempt += 1
