from __future__ import annotations

from collections.abc import AsyncGenerator

import pytest

from chatrelay.ai.contracts import NeutralRequest, build_request
from chatrelay.ai.providers.anthropic import ANTHROPIC_VERSION, AnthropicProvider
from chatrelay.core.exceptions import NoContentError, UnauthorizedError, UpstreamUnavailableError
from tests.fakes.fake_upstream import FakeUpstream, sse

PATH = "/v1/messages"


@pytest.fixture
async def claude(upstream: FakeUpstream) -> AsyncGenerator[AnthropicProvider, None]:
    prov = AnthropicProvider(model="claude-3-sonnet-20240229", endpoint="", api_key="ak-test")
    yield prov
    await prov.close()


async def _start(upstream: FakeUpstream, prov: AnthropicProvider) -> None:
    await upstream.start()
    prov.endpoint = upstream.url(PATH)


def _request() -> NeutralRequest:
    return build_request(
        model="claude-3-sonnet-20240229",
        system_prompt="Be kind.",
        messages=[
            {"role": "system", "content": "No links."},
            {"role": "user", "content": "Hi"},
            {"role": "assistant", "content": "Hello"},
            {"role": "user", "content": "How are you?"},
        ],
        generation={"temperature": 1.6, "max_tokens": 64, "top_k": 5, "stop": ["END"]},
    )


async def test_ask_payload_and_headers(upstream: FakeUpstream, claude: AnthropicProvider) -> None:
    upstream.json(
        PATH,
        {"content": [{"type": "text", "text": "Fine, "}, {"type": "tool_use"}, {"type": "text", "text": "thanks"}]},
    )
    await _start(upstream, claude)

    assert await claude.ask(_request()) == "Fine, thanks"

    sent = upstream.requests[0]
    assert sent["headers"]["x-api-key"] == "ak-test"
    assert sent["headers"]["anthropic-version"] == ANTHROPIC_VERSION
    body = sent["json"]
    assert body["system"] == "Be kind.\n\nNo links."
    assert [m["role"] for m in body["messages"]] == ["user", "assistant", "user"]
    assert body["temperature"] == 1.0
    assert body["top_k"] == 5
    assert body["stop_sequences"] == ["END"]
    assert body["max_tokens"] == 64


async def test_ask_without_text_blocks(upstream: FakeUpstream, claude: AnthropicProvider) -> None:
    upstream.json(PATH, {"content": []})
    await _start(upstream, claude)
    with pytest.raises(NoContentError):
        await claude.ask(_request())


async def test_ask_bad_key(upstream: FakeUpstream, claude: AnthropicProvider) -> None:
    upstream.json(
        PATH,
        {"type": "error", "error": {"type": "authentication_error", "message": "invalid x-api-key"}},
        status=401,
    )
    await _start(upstream, claude)
    with pytest.raises(UnauthorizedError, match="invalid x-api-key"):
        await claude.ask(_request())


async def test_stream_typed_events(upstream: FakeUpstream, claude: AnthropicProvider) -> None:
    upstream.stream(
        PATH,
        ["event: message_start"]
        + sse(
            {"type": "message_start", "message": {"id": "msg_1"}},
            {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}},
            {"type": "ping"},
            {"type": "content_block_delta", "delta": {"type": "text_delta", "text": "Hel"}},
            {"type": "content_block_delta", "delta": {"type": "text_delta", "text": "lo"}},
            {"type": "message_stop"},
            done=False,
        ),
    )
    await _start(upstream, claude)

    fragments = [f async for f in claude.ask_stream(_request())]

    assert fragments == ["Hel", "lo"]
    assert upstream.requests[0]["json"]["stream"] is True


async def test_stream_error_event(upstream: FakeUpstream, claude: AnthropicProvider) -> None:
    upstream.stream(
        PATH,
        sse(
            {"type": "content_block_delta", "delta": {"text": "partial"}},
            {"type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}},
            done=False,
        ),
    )
    await _start(upstream, claude)

    seen: list[str] = []
    with pytest.raises(UpstreamUnavailableError, match="Overloaded"):
        async for fragment in claude.ask_stream(_request()):
            seen.append(fragment)
    assert seen == ["partial"]
