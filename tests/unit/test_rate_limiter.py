"""Unit tests for the per-organization fixed-window RateLimiter."""

from __future__ import annotations

import pytest

from kbrag.utils import rate_limiter as rate_limiter_module
from kbrag.utils.rate_limiter import RateLimiter


class _Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock(monkeypatch: pytest.MonkeyPatch) -> _Clock:
    fake = _Clock()
    monkeypatch.setattr(rate_limiter_module.time, "monotonic", fake)
    return fake


def test_allows_up_to_limit(clock: _Clock) -> None:
    limiter = RateLimiter(max_requests=3)

    decisions = [limiter.check("org-1") for _ in range(4)]

    assert [d.allowed for d in decisions] == [True, True, True, False]
    assert [d.remaining for d in decisions] == [2, 1, 0, 0]


def test_keys_are_independent(clock: _Clock) -> None:
    limiter = RateLimiter(max_requests=1)

    assert limiter.check("org-1").allowed
    assert not limiter.check("org-1").allowed
    assert limiter.check("org-2").allowed


def test_window_resets(clock: _Clock) -> None:
    limiter = RateLimiter(max_requests=1, window_seconds=60)

    assert limiter.check("org-1").allowed
    assert not limiter.check("org-1").allowed

    clock.now += 61
    decision = limiter.check("org-1")
    assert decision.allowed
    assert decision.remaining == 0
