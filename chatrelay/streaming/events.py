"""Uniform stream event and its SSE wire codec."""

from __future__ import annotations

from pydantic import BaseModel

SINGLE_CHUNK_ID = "single-chunk"


class StreamEvent(BaseModel):
    """One record of a response stream.

    ``done=True`` marks the terminal record; an error record is terminal too.
    """

    id: str
    content: str = ""
    done: bool = False
    error: str | None = None

    model_config = {"frozen": True}

    @property
    def is_terminal(self) -> bool:
        return self.done or self.error is not None

    @property
    def kind(self) -> str:
        if self.error is not None:
            return "error"
        return "done" if self.done else "content"


def encode_sse(event: StreamEvent) -> bytes:
    """Frame *event* as one ``data: {json}`` SSE record."""
    return b"data: " + event.model_dump_json(exclude_none=True).encode("utf-8") + b"\n\n"


def parse_sse(text: str) -> list[StreamEvent]:
    """Decode every ``data:`` record in *text* back into events."""
    events: list[StreamEvent] = []
    for block in text.split("\n\n"):
        data_lines = [
            line[5:].lstrip(" ") for line in block.splitlines() if line.startswith("data:")
        ]
        if data_lines:
            events.append(StreamEvent.model_validate_json("\n".join(data_lines)))
    return events


__all__ = ["StreamEvent", "encode_sse", "parse_sse", "SINGLE_CHUNK_ID"]
