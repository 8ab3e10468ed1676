from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator

import pytest

from chatrelay.core.exceptions import MalformedResponseError
from chatrelay.streaming.bridge import bridge_stream
from chatrelay.streaming.events import StreamEvent


async def _fragments(*parts: str, fail: BaseException | None = None, delay: float = 0.0) -> AsyncIterator[str]:
    for part in parts:
        if delay:
            await asyncio.sleep(delay)
        yield part
    if fail is not None:
        raise fail


class _Tracked:
    """Fragment source that records whether it was closed."""

    def __init__(self, *parts: str, hang: bool = False) -> None:
        self.parts = list(parts)
        self.hang = hang
        self.closed = False

    def __aiter__(self) -> _Tracked:
        return self

    async def __anext__(self) -> str:
        if self.parts:
            return self.parts.pop(0)
        if self.hang:
            await asyncio.Event().wait()
        raise StopAsyncIteration

    async def aclose(self) -> None:
        self.closed = True


async def _drain(events: AsyncIterator[StreamEvent]) -> list[StreamEvent]:
    return [event async for event in events]


def _deadline(seconds: float) -> float:
    return asyncio.get_running_loop().time() + seconds


async def test_content_then_single_done() -> None:
    events = await _drain(bridge_stream(_fragments("Hel", "", "lo"), stream_id="s1"))

    assert [e.content for e in events[:-1]] == ["Hel", "lo"]
    assert events[-1] == StreamEvent(id="s1", done=True)
    assert sum(e.is_terminal for e in events) == 1
    assert {e.id for e in events} == {"s1"}


async def test_generated_stream_id_is_shared() -> None:
    events = await _drain(bridge_stream(_fragments("a")))
    assert len({e.id for e in events}) == 1
    assert len(events[0].id) == 32


async def test_upstream_error_becomes_terminal_error_event() -> None:
    source = _fragments("partial", fail=MalformedResponseError("openai stream payload is not valid JSON"))
    events = await _drain(bridge_stream(source, stream_id="s2"))

    assert events[0].content == "partial"
    assert events[-1].error == "openai stream payload is not valid JSON"
    assert events[-1].done is True
    assert sum(e.is_terminal for e in events) == 1


async def test_plain_exception_text_is_used() -> None:
    events = await _drain(bridge_stream(_fragments(fail=RuntimeError("socket reset"))))
    assert [e.error for e in events] == ["socket reset"]


async def test_deadline_emits_timeout_and_cancels_reader() -> None:
    source = _Tracked("first", hang=True)

    events = await _drain(bridge_stream(source, stream_id="s3", deadline=_deadline(0.05)))

    assert [e.content for e in events[:-1]] == ["first"]
    assert events[-1].error == "Request timeout"
    assert events[-1].done is True
    assert source.closed is True
    readers = [t for t in asyncio.all_tasks() if t.get_name() == "stream-reader-s3"]
    assert readers == []


async def test_expired_deadline_yields_only_timeout() -> None:
    events = await _drain(
        bridge_stream(_fragments("late", delay=0.05), stream_id="s4", deadline=_deadline(0))
    )
    assert [(e.error, e.done) for e in events] == [("Request timeout", True)]


async def test_small_capacity_still_delivers_in_order() -> None:
    parts = [str(i) for i in range(50)]
    events = await _drain(bridge_stream(_fragments(*parts), capacity=1))
    assert [e.content for e in events if not e.is_terminal] == parts


async def test_consumer_stopping_early_cancels_reader() -> None:
    source = _Tracked("a", "b", hang=True)
    stream = bridge_stream(source, stream_id="s5")

    first = await stream.__anext__()
    await stream.aclose()

    assert first.content == "a"
    assert source.closed is True
    assert not [t for t in asyncio.all_tasks() if t.get_name() == "stream-reader-s5"]


async def test_consumer_cancellation_propagates() -> None:
    source = _Tracked(hang=True)

    async def consume() -> list[StreamEvent]:
        return await _drain(bridge_stream(source, stream_id="s6"))

    task = asyncio.create_task(consume())
    await asyncio.sleep(0.01)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert source.closed is True
