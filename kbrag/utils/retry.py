"""Exponential-backoff retry for rate-limited provider calls.

Only rate-limit failures are retried.  Everything else (bad credentials,
malformed requests, network errors) propagates on the first attempt so
callers fail fast and surface a real error.

Backoff schedule with the defaults: 3s, 6s, 12s, 24s, 48s, 96s, 192s, 384s.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

import structlog

_T = TypeVar("_T")

logger = structlog.get_logger(logger_name=__name__)

DEFAULT_MAX_RETRIES = 8
DEFAULT_INITIAL_DELAY_MS = 3000

_RATE_LIMIT_MARKERS = (
    "429",
    "too many requests",
    "quota",
    "rate limit",
    "resource has been exhausted",
    "requests per minute",
    "resource_exhausted",
)


def _status_of(error: BaseException) -> int | None:
    """Pull an HTTP status off SDK errors (``status_code``/``status``/``response``)."""
    for attr in ("status_code", "status"):
        status = getattr(error, attr, None)
        if isinstance(status, int):
            return status
    response = getattr(error, "response", None)
    if response is not None:
        for attr in ("status_code", "status"):
            status = getattr(response, attr, None)
            if isinstance(status, int):
                return status
    return None


def is_rate_limit_error(error: BaseException) -> bool:
    """Return ``True`` if *error* is an HTTP 429 or carries quota/rate-limit text."""
    if _status_of(error) == 429:
        return True
    message = str(error).lower()
    return any(marker in message for marker in _RATE_LIMIT_MARKERS)


def backoff_delay_ms(attempt: int, initial_delay_ms: int = DEFAULT_INITIAL_DELAY_MS) -> int:
    """Delay before retry number *attempt* (1-based): ``initial * 2^(attempt-1)``."""
    return initial_delay_ms * 2 ** (attempt - 1)


async def with_retry(
    operation: Callable[[], Awaitable[_T]],
    max_retries: int = DEFAULT_MAX_RETRIES,
    initial_delay_ms: int = DEFAULT_INITIAL_DELAY_MS,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> _T:
    """Await ``operation()``, retrying rate-limit failures with exponential backoff.

    Parameters
    ----------
    operation:
        Zero-argument callable returning a fresh awaitable on every call.
    max_retries:
        Maximum number of retries after the first attempt.
    initial_delay_ms:
        Delay before the first retry; doubles on each subsequent retry.
    sleep:
        Awaitable sleep taking seconds.  Injected by tests.

    Raises
    ------
    Exception
        The last error once retries are exhausted, or any non-rate-limit
        error immediately.
    """
    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as exc:
            attempt += 1
            if not is_rate_limit_error(exc) or attempt > max_retries:
                raise
            delay_ms = backoff_delay_ms(attempt, initial_delay_ms)
            logger.warning(
                "rate_limit_retry",
                attempt=attempt,
                max_retries=max_retries,
                delay_ms=delay_ms,
                error=str(exc),
            )
            await sleep(delay_ms / 1000)
