"""SSE writer bound to a flushable sink.

A *flushable sink* is anything with ``async write(data: bytes)`` and
``async flush()``.  :class:`AiohttpSink` adapts an ``aiohttp.web``
``StreamResponse`` and prepares it with the SSE headers on first write.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol, runtime_checkable

from aiohttp import web

from chatrelay.core import telemetry
from chatrelay.core.exceptions import NotStreamableError
from chatrelay.streaming.events import StreamEvent, encode_sse

_log = logging.getLogger(__name__)

SSE_HEADERS = {
    "Content-Type": "text/event-stream",
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "Content-Type, Cache-Control",
}

# Extra time a terminal record gets once the deadline has already passed.
TERMINAL_GRACE = 1.0


@runtime_checkable
class FlushableSink(Protocol):
    async def write(self, data: bytes) -> None: ...

    async def flush(self) -> None: ...


class AiohttpSink:
    """Flushable sink over an ``aiohttp.web.StreamResponse``."""

    def __init__(self, request: web.Request, *, headers: dict[str, str] | None = None) -> None:
        self._request = request
        self.response = web.StreamResponse(status=200, headers={**SSE_HEADERS, **(headers or {})})

    @property
    def prepared(self) -> bool:
        return self.response.prepared

    async def _ensure_prepared(self) -> None:
        if not self.response.prepared:
            await self.response.prepare(self._request)

    async def write(self, data: bytes) -> None:
        await self._ensure_prepared()
        await self.response.write(data)

    async def flush(self) -> None:
        # StreamResponse.write drains the transport; preparing is the only pending step.
        await self._ensure_prepared()

    async def finish(self) -> web.StreamResponse:
        await self._ensure_prepared()
        await self.response.write_eof()
        return self.response


class SSEStreamWriter:
    """Writes :class:`StreamEvent` records and refuses anything after the terminal one.

    With a *deadline* (absolute ``loop.time()``) every write is bounded by it;
    a terminal record gets ``TERMINAL_GRACE`` seconds past an expired deadline.
    A write that does not finish in time closes the writer.
    """

    def __init__(self, sink: object, *, deadline: float | None = None) -> None:
        if not isinstance(sink, FlushableSink):
            raise NotStreamableError()
        self._sink: FlushableSink = sink
        self._closed = False
        self._stalled = False
        self.deadline = deadline

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def stalled(self) -> bool:
        """True once a write was abandoned at the deadline."""
        return self._stalled

    def _write_deadline(self, event: StreamEvent) -> float | None:
        if self.deadline is None or not event.is_terminal:
            return self.deadline
        return max(self.deadline, asyncio.get_running_loop().time()) + TERMINAL_GRACE

    async def write_event(self, event: StreamEvent) -> None:
        if self._closed:
            _log.debug("dropping %s event for %s after terminal event", event.kind, event.id)
            return
        if event.is_terminal:
            self._closed = True
        try:
            async with asyncio.timeout_at(self._write_deadline(event)):
                await self._sink.write(encode_sse(event))
                await self._sink.flush()
        except TimeoutError:
            self._closed = self._stalled = True
            _log.warning("sink for stream %s stalled past the deadline; closing", event.id)
            return
        telemetry.record_stream_event(event.kind)

    async def write_chunk(self, stream_id: str, content: str) -> None:
        await self.write_event(StreamEvent(id=stream_id, content=content))

    async def write_error(self, stream_id: str, message: str) -> None:
        await self.write_event(StreamEvent(id=stream_id, error=message, done=True))

    async def write_done(self, stream_id: str) -> None:
        await self.write_event(StreamEvent(id=stream_id, done=True))


__all__ = ["FlushableSink", "AiohttpSink", "SSEStreamWriter", "SSE_HEADERS", "TERMINAL_GRACE"]
