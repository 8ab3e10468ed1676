"""Streaming: provider dialect framing, the stream bridge and the SSE writer."""

from chatrelay.streaming.bridge import bridge_stream
from chatrelay.streaming.events import StreamEvent, encode_sse, parse_sse
from chatrelay.streaming.sink import AiohttpSink, FlushableSink, SSEStreamWriter

__all__ = [
    "bridge_stream",
    "StreamEvent",
    "encode_sse",
    "parse_sse",
    "AiohttpSink",
    "FlushableSink",
    "SSEStreamWriter",
]
