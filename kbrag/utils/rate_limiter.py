"""In-memory fixed-window request limiter keyed by organization.

Backed by ``cachetools.TTLCache``: each key's counter expires one window
after it was created, which resets the window.  Single-process only; a
multi-instance deployment needs a shared store instead.
"""

from __future__ import annotations

import time
from dataclasses import dataclass

import structlog
from cachetools import TTLCache

logger = structlog.get_logger(logger_name=__name__)


@dataclass
class _Window:
    count: int
    reset_at: float


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int


class RateLimiter:
    """Allow at most ``max_requests`` per ``window_seconds`` for each key.

    Parameters
    ----------
    max_requests:
        Requests admitted per window.
    window_seconds:
        Window length; also the TTL of each counter.
    max_keys:
        Upper bound on tracked keys before LRU eviction.
    """

    def __init__(self, max_requests: int, window_seconds: float = 60.0, max_keys: int = 10_000) -> None:
        self._max_requests = max_requests
        self._window = window_seconds
        self._windows: TTLCache[str, _Window] = TTLCache(maxsize=max_keys, ttl=window_seconds)

    def check(self, key: str) -> RateLimitDecision:
        now = time.monotonic()
        window = self._windows.get(key)
        if window is None or window.reset_at <= now:
            self._windows[key] = _Window(count=1, reset_at=now + self._window)
            return RateLimitDecision(allowed=True, remaining=self._max_requests - 1)

        if window.count >= self._max_requests:
            logger.warning("rate_limit_rejected", key=key, limit=self._max_requests)
            return RateLimitDecision(allowed=False, remaining=0)

        window.count += 1
        return RateLimitDecision(allowed=True, remaining=self._max_requests - window.count)
