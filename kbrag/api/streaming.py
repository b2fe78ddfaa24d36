"""Server-Sent Events plumbing shared by the streaming endpoints.

Frame format::

    event: {name}
    data: {json}

A stream is ``chunk`` frames (one per token delta), then any final frames
the caller supplies (``citations`` for RAG queries), then ``done``.  A
failure ends the stream with a single ``error`` frame instead, unless the
client has already gone away.

Generation runs in a producer task that pushes frames onto a queue; the
response generator only drains the queue.  A watcher task polls the
request for a disconnect and sets the cancel event the providers check
between tokens.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

import structlog
from fastapi import Request
from fastapi.responses import StreamingResponse

from kbrag.interfaces.model_provider import ChunkCallback
from kbrag.utils.logging import get_logger

_logger: structlog.BoundLogger = get_logger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

# (event name, payload) frames sent after the last chunk and before "done".
FinalFrames = list[tuple[str, dict[str, Any]]]
StreamRunner = Callable[[ChunkCallback, asyncio.Event], Awaitable[FinalFrames]]


def sse_frame(event: str, data: dict[str, Any]) -> str:
    return f"event: {event}\ndata: {json.dumps(data, ensure_ascii=False)}\n\n"


async def event_stream(
    request: Request,
    run: StreamRunner,
    error_message: Callable[[BaseException], str] = str,
    poll_interval: float = 0.5,
) -> AsyncIterator[str]:
    """Yield SSE frames for one streamed answer.

    Parameters
    ----------
    request:
        The incoming request, polled for client disconnects.
    run:
        Coroutine function receiving ``(emit, cancel_event)``.  It streams
        tokens through ``emit`` and returns the final frames.
    error_message:
        Maps a failure to the text of the ``error`` frame.
    poll_interval:
        Seconds between disconnect checks.
    """
    queue: asyncio.Queue[str | None] = asyncio.Queue()
    cancel_event = asyncio.Event()
    disconnected = asyncio.Event()
    path = str(request.url.path)

    async def emit(text: str) -> None:
        if text and not disconnected.is_set():
            queue.put_nowait(sse_frame("chunk", {"text": text}))

    async def produce() -> None:
        try:
            final_frames = await run(emit, cancel_event)
            if not disconnected.is_set():
                for event, data in final_frames:
                    queue.put_nowait(sse_frame(event, data))
                queue.put_nowait(sse_frame("done", {"done": True}))
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            _logger.error(
                "stream_failed",
                path=path,
                error_type=type(exc).__name__,
                error=str(exc),
                disconnected=disconnected.is_set(),
            )
            if not disconnected.is_set():
                queue.put_nowait(sse_frame("error", {"message": error_message(exc)}))
        finally:
            queue.put_nowait(None)

    async def watch() -> None:
        while not cancel_event.is_set():
            if await request.is_disconnected():
                disconnected.set()
                cancel_event.set()
                _logger.info("stream_client_disconnected", path=path)
                return
            await asyncio.sleep(poll_interval)

    producer = asyncio.create_task(produce())
    watcher = asyncio.create_task(watch())
    try:
        while True:
            frame = await queue.get()
            if frame is None:
                break
            yield frame
    finally:
        cancel_event.set()
        for task in (watcher, producer):
            task.cancel()
        await asyncio.gather(watcher, producer, return_exceptions=True)


def sse_response(frames: AsyncIterator[str]) -> StreamingResponse:
    return StreamingResponse(frames, media_type="text/event-stream", headers=SSE_HEADERS)
