"""Provider stream dialects -> plain text fragments.

A dialect is the pair (record classifier, content extractor):

* the classifier looks at one line of the upstream body and says whether it is
  ignorable, a data payload, or the end sentinel;
* the extractor turns one decoded JSON payload into zero or more fragments, or
  raises a classified error when the payload is an upstream error object.

:func:`iter_fragments` drives both over an ``aiohttp.StreamReader``.  End of
body without a sentinel is treated as a normal end of stream.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator, Callable
from enum import Enum, auto
from typing import Any

import aiohttp

from chatrelay.core.exceptions import (
    ChatbotError,
    InvalidRequestError,
    MalformedResponseError,
    UpstreamUnavailableError,
)

_log = logging.getLogger(__name__)


class RecordKind(Enum):
    IGNORABLE = auto()
    DATA = auto()
    END = auto()


Record = tuple[RecordKind, str]
Classifier = Callable[[str], Record]
Extractor = Callable[[Any], list[str]]

_IGNORE: Record = (RecordKind.IGNORABLE, "")
_DONE_SENTINEL = "[DONE]"


# ---------------------------------------------------------------------------+
#  Record classifiers                                                        +
# ---------------------------------------------------------------------------+


def classify_sse(line: str) -> Record:
    """Server-Sent Events: only ``data:`` lines carry payloads."""
    if not line or line.startswith(":"):
        return _IGNORE
    if not line.startswith("data:"):
        # event:, id:, retry: fields carry nothing we need
        return _IGNORE
    payload = line[5:]
    if payload.startswith(" "):
        payload = payload[1:]
    if payload.strip() == _DONE_SENTINEL:
        return (RecordKind.END, "")
    if not payload.strip():
        return _IGNORE
    return (RecordKind.DATA, payload)


def classify_ndjson(line: str) -> Record:
    """Newline-delimited JSON: every non-empty line is a payload."""
    if not line.strip():
        return _IGNORE
    return (RecordKind.DATA, line)


# ---------------------------------------------------------------------------+
#  Content extractors                                                        +
# ---------------------------------------------------------------------------+


def _upstream_error(err: Any, provider: str) -> ChatbotError:
    if isinstance(err, dict):
        message = err.get("message") or err.get("type") or json.dumps(err)
        code = err.get("code")
        if isinstance(code, int) and 400 <= code < 500:
            return InvalidRequestError(f"{provider} stream error: {message}", provider=provider)
    else:
        message = str(err)
    return UpstreamUnavailableError(f"{provider} stream error: {message}", provider=provider)


def _first_entry(payload: dict[str, Any], key: str, provider: str) -> dict[str, Any] | None:
    """First object of the ``payload[key]`` list; ``None`` when the list is empty."""
    entries = payload.get(key) or []
    if not isinstance(entries, list):
        raise MalformedResponseError(f"{provider} {key} is not a list", provider=provider)
    if not entries:
        return None
    if not isinstance(entries[0], dict):
        raise MalformedResponseError(f"{provider} {key} entry is not an object", provider=provider)
    return entries[0]


def _field(container: Any, key: str, provider: str) -> dict[str, Any]:
    value = container.get(key) or {}
    if not isinstance(value, dict):
        raise MalformedResponseError(f"{provider} {key} is not an object", provider=provider)
    return value


def _text(value: Any, provider: str) -> list[str]:
    if not value:
        return []
    if not isinstance(value, str):
        raise MalformedResponseError(f"{provider} content is not text", provider=provider)
    return [value]


def openai_delta(payload: Any) -> list[str]:
    """OpenAI-compatible ``chat.completion.chunk``: ``choices[0].delta.content``."""
    if not isinstance(payload, dict):
        return []
    if "error" in payload:
        raise _upstream_error(payload["error"], "openai")
    choice = _first_entry(payload, "choices", "openai")
    if choice is None:
        return []
    return _text(_field(choice, "delta", "openai").get("content"), "openai")


def anthropic_event(payload: Any) -> list[str]:
    """Anthropic typed events: block starts and text deltas."""
    if not isinstance(payload, dict):
        return []
    kind = payload.get("type")
    if kind == "error":
        raise _upstream_error(payload.get("error"), "anthropic")
    if kind == "content_block_start":
        return _text(_field(payload, "content_block", "anthropic").get("text"), "anthropic")
    if kind == "content_block_delta":
        return _text(_field(payload, "delta", "anthropic").get("text"), "anthropic")
    return []


def gemini_candidates(payload: Any) -> list[str]:
    """Gemini ``GenerateContentResponse``: every text part of the first candidate."""
    if isinstance(payload, list):
        out: list[str] = []
        for item in payload:
            out.extend(gemini_candidates(item))
        return out
    if not isinstance(payload, dict):
        return []
    if "error" in payload:
        raise _upstream_error(payload["error"], "gemini")
    candidate = _first_entry(payload, "candidates", "gemini")
    if candidate is None:
        return []
    parts = _field(candidate, "content", "gemini").get("parts") or []
    if not isinstance(parts, list):
        raise MalformedResponseError("gemini parts is not a list", provider="gemini")
    return [p["text"] for p in parts if isinstance(p, dict) and isinstance(p.get("text"), str) and p["text"]]


def ollama_chunk(payload: Any) -> list[str]:
    """Ollama NDJSON: ``message.content`` (chat) or ``response`` (generate)."""
    if not isinstance(payload, dict):
        return []
    if payload.get("error"):
        raise _upstream_error(payload["error"], "ollama")
    message = payload.get("message")
    if isinstance(message, dict) and message.get("content"):
        return _text(message["content"], "ollama")
    return _text(payload.get("response"), "ollama")


# ---------------------------------------------------------------------------+
#  Driver                                                                    +
# ---------------------------------------------------------------------------+


async def iter_lines(reader: aiohttp.StreamReader) -> AsyncIterator[str]:
    """Yield decoded lines (without terminators) until EOF."""
    while True:
        raw = await reader.readline()
        if not raw:
            return
        yield raw.decode("utf-8", errors="replace").rstrip("\r\n")


async def iter_fragments(
    reader: aiohttp.StreamReader,
    classify: Classifier,
    extract: Extractor,
    *,
    provider: str = "upstream",
) -> AsyncIterator[str]:
    """Parse an upstream body into text fragments.

    Raises :class:`MalformedResponseError` on the first payload that is not JSON
    and whatever classified error *extract* raises for upstream error payloads.
    """
    async for line in iter_lines(reader):
        kind, payload = classify(line)
        if kind is RecordKind.IGNORABLE:
            continue
        if kind is RecordKind.END:
            return
        try:
            decoded = json.loads(payload)
        except (json.JSONDecodeError, ValueError) as exc:
            _log.warning("%s stream payload is not JSON: %.120s", provider, payload)
            raise MalformedResponseError(
                f"{provider} stream payload is not valid JSON", provider=provider
            ) from exc
        for fragment in extract(decoded):
            yield fragment


__all__ = [
    "RecordKind",
    "classify_sse",
    "classify_ndjson",
    "openai_delta",
    "anthropic_event",
    "gemini_candidates",
    "ollama_chunk",
    "iter_lines",
    "iter_fragments",
]
