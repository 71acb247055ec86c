"""HTTP helpers with retry/backoff for provider calls (LLMs, OAuth, Zoom)."""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable

import httpx

logger = logging.getLogger(__name__)

DEFAULT_RETRY_STATUSES = frozenset({429, 500, 502, 503, 504})


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Exponential delay for a zero-based attempt, capped, with up to 50% jitter."""
    delay = min(max_delay, base_delay * (2**attempt))
    if delay:
        delay += random.uniform(0, delay / 2)
    return delay


async def request_with_retries(
    request_fn: Callable[[], Awaitable[httpx.Response]],
    *,
    max_attempts: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 4.0,
    retry_statuses: frozenset[int] | set[int] | None = None,
) -> httpx.Response:
    """
    Execute an HTTP request, retrying transport errors and retryable statuses.

    The last response is returned as-is once attempts are exhausted;
    callers decide whether to raise_for_status().
    """
    statuses = retry_statuses or DEFAULT_RETRY_STATUSES
    last_attempt = max_attempts - 1

    for attempt in range(max_attempts):
        try:
            response = await request_fn()
        except httpx.RequestError as exc:
            if attempt >= last_attempt:
                raise
            logger.warning(
                "HTTP request failed (%s), retrying attempt %s/%s",
                type(exc).__name__,
                attempt + 2,
                max_attempts,
            )
        else:
            if response.status_code not in statuses or attempt >= last_attempt:
                return response
            logger.warning(
                "HTTP request returned %s, retrying attempt %s/%s",
                response.status_code,
                attempt + 2,
                max_attempts,
            )

        delay = backoff_delay(attempt, base_delay, max_delay)
        if delay:
            await asyncio.sleep(delay)

    raise RuntimeError("request_with_retries exhausted without a response")
