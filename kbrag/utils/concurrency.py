"""Shared concurrency primitives.

Two helpers are exposed:

1. **throttled_gather** -- ``asyncio.gather`` with each awaitable wrapped in
   a semaphore acquire/release, so at most N run at once.  The ingestion
   pipeline uses it to embed chunks with a small fixed worker pool instead
   of an unbounded fan-out that would trip provider rate limits.

2. **KeyedLocks** -- lazily created ``asyncio.Lock`` per string key.  Used for
   per-artifact single-flight around ingestion runs.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Awaitable, TypeVar

import structlog

from kbrag.utils.logging import get_logger

_T = TypeVar("_T")

_logger: structlog.BoundLogger = get_logger(__name__)


async def throttled_gather(
    coros: list[Awaitable[_T]],
    semaphore: asyncio.Semaphore | None = None,
    limit: int = 4,
    return_exceptions: bool = False,
) -> list[_T | BaseException]:
    """Run awaitables concurrently with at most *limit* in flight.

    Parameters
    ----------
    coros:
        Awaitable objects to execute concurrently.
    semaphore:
        Optional pre-built semaphore; when ``None`` a fresh one sized
        *limit* is created for this call.
    limit:
        Worker count used when no semaphore is supplied.
    return_exceptions:
        Mirrors ``asyncio.gather``.  Defaults to ``False`` so the first
        failure propagates to the caller.

    Returns
    -------
    list
        Results in the same order as the input coroutines.
    """
    if semaphore is None:
        semaphore = asyncio.Semaphore(max(1, limit))

    async def _wrapped(coro: Awaitable[_T]) -> _T:
        async with semaphore:
            return await coro

    tasks = [asyncio.ensure_future(_wrapped(c)) for c in coros]
    try:
        return await asyncio.gather(*tasks, return_exceptions=return_exceptions)
    except BaseException:
        # gather() does not cancel siblings when one raises.
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


class KeyedLocks:
    """A registry of ``asyncio.Lock`` objects keyed by string.

    Locks are created on first use and dropped once nobody holds or waits
    on them, so the registry does not grow with every artifact ever seen.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    def is_locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        if lock.locked():
            _logger.info("keyed_lock_wait", key=key)
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                self._locks.pop(key, None)
