"""Helpers shared by every model provider adapter."""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from kbrag.interfaces.model_provider import ChunkCallback
from kbrag.utils.retry import DEFAULT_INITIAL_DELAY_MS, DEFAULT_MAX_RETRIES, with_retry

_T = TypeVar("_T")


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff parameters applied to every provider network call."""

    max_retries: int = DEFAULT_MAX_RETRIES
    initial_delay_ms: int = DEFAULT_INITIAL_DELAY_MS

    async def run(self, operation: Callable[[], Awaitable[_T]]) -> _T:
        return await with_retry(
            operation,
            max_retries=self.max_retries,
            initial_delay_ms=self.initial_delay_ms,
        )


async def emit_chunk(on_chunk: ChunkCallback, text: str) -> None:
    """Call *on_chunk*, awaiting the result when the callback is async."""
    result = on_chunk(text)
    if inspect.isawaitable(result):
        await result
