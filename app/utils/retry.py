"""Retry helpers for transport failures."""

from __future__ import annotations

import asyncio
import functools
import random
from collections.abc import Awaitable, Callable

import httpx

RETRY_EXCEPTIONS = (httpx.TransportError, OSError, asyncio.TimeoutError)
MAX_ATTEMPTS = 3


def retry_async(func: Callable[..., Awaitable], *, attempts: int = MAX_ATTEMPTS, base_delay: float = 1.0):
    """Retry ``func`` on connection-level errors only; HTTP statuses pass through."""

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        delay = base_delay
        for attempt in range(attempts):
            try:
                return await func(*args, **kwargs)
            except RETRY_EXCEPTIONS:
                if attempt == attempts - 1:
                    raise
                await asyncio.sleep(delay + random.random() * base_delay)
                delay *= 2
    return wrapper
