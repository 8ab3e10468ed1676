"""Fragment source -> StreamEvent sequence with exactly one terminal event.

The upstream source is drained by one auxiliary reader task into a bounded
``asyncio.Queue``; the consumer side owns the deadline.  Whatever happens
(normal end, upstream error, deadline, consumer cancellation) the reader task
is cancelled and awaited before :func:`bridge_stream` returns.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator
from typing import Any

from chatrelay.core.exceptions import ChatbotError
from chatrelay.streaming.events import StreamEvent

_log = logging.getLogger(__name__)

DEFAULT_CAPACITY = 16


class _Failure:
    __slots__ = ("exc",)

    def __init__(self, exc: BaseException) -> None:
        self.exc = exc


_END = object()


def _error_text(exc: BaseException) -> str:
    if isinstance(exc, ChatbotError):
        return exc.message
    return str(exc) or type(exc).__name__


async def _pump(source: AsyncIterator[str], queue: asyncio.Queue[Any]) -> None:
    item: Any = _END
    try:
        async for fragment in source:
            if fragment:
                await queue.put(fragment)
    except Exception as exc:
        item = _Failure(exc)
    finally:
        aclose = getattr(source, "aclose", None)
        if aclose is not None:
            await aclose()
    await queue.put(item)


async def bridge_stream(
    source: AsyncIterator[str],
    *,
    stream_id: str | None = None,
    deadline: float | None = None,
    capacity: int = DEFAULT_CAPACITY,
) -> AsyncIterator[StreamEvent]:
    """Yield content events for *source* followed by one ``done`` or ``error`` event.

    *deadline* is an absolute ``loop.time()``; on expiry an error event
    ``"Request timeout"`` is emitted and the reader is cancelled.
    """
    sid = stream_id or uuid.uuid4().hex
    queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=max(1, capacity))
    reader = asyncio.create_task(_pump(source, queue), name=f"stream-reader-{sid}")
    try:
        while True:
            try:
                async with asyncio.timeout_at(deadline):
                    item = await queue.get()
            except TimeoutError:
                _log.info("stream %s exceeded its deadline", sid)
                yield StreamEvent(id=sid, error="Request timeout", done=True)
                return
            if item is _END:
                yield StreamEvent(id=sid, done=True)
                return
            if isinstance(item, _Failure):
                _log.warning("stream %s failed upstream: %s", sid, item.exc)
                yield StreamEvent(id=sid, error=_error_text(item.exc), done=True)
                return
            yield StreamEvent(id=sid, content=item)
    finally:
        if not reader.done():
            reader.cancel()
        # Waits for the reader without re-raising its CancelledError into us.
        await asyncio.wait({reader})


__all__ = ["bridge_stream", "DEFAULT_CAPACITY"]
