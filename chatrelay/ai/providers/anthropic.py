"""Anthropic Messages API driver."""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

from chatrelay.ai.contracts import NeutralRequest
from chatrelay.ai.providers._http import HTTPProvider
from chatrelay.core.exceptions import MalformedResponseError, NoContentError
from chatrelay.core.settings import Settings
from chatrelay.streaming.framer import anthropic_event, classify_sse, iter_fragments

KEYS = ("anthropic",)

ANTHROPIC_VERSION = "2023-06-01"


class AnthropicProvider(HTTPProvider):
    provider = "anthropic"

    def _headers(self) -> dict[str, str]:
        headers = super()._headers()
        headers["anthropic-version"] = ANTHROPIC_VERSION
        if self.api_key:
            headers["x-api-key"] = self.api_key
        return headers

    def _payload(self, request: NeutralRequest, *, stream: bool) -> dict[str, Any]:
        gen = request.generation
        # System turns travel in the top-level "system" field, never in messages.
        payload: dict[str, Any] = {
            "model": request.model,
            "messages": [
                {"role": m.role, "content": m.content}
                for m in request.messages
                if m.role != "system"
            ],
            "max_tokens": gen.max_tokens,
            "temperature": min(gen.temperature, 1.0),
            "stream": stream,
        }
        system = request.system_text()
        if system:
            payload["system"] = system
        if gen.top_p is not None:
            payload["top_p"] = gen.top_p
        if gen.top_k is not None:
            payload["top_k"] = gen.top_k
        if gen.stop:
            payload["stop_sequences"] = gen.stop
        return payload

    async def ask(self, request: NeutralRequest) -> str:
        data = await self._post_json(self.endpoint, self._payload(request, stream=False))
        if not isinstance(data, dict):
            raise MalformedResponseError("anthropic response is not an object", provider=self.provider)
        blocks = data.get("content") or []
        text = "".join(
            b["text"]
            for b in blocks
            if isinstance(b, dict) and b.get("type") == "text" and isinstance(b.get("text"), str)
        )
        if not text:
            raise NoContentError("no response from Anthropic", provider=self.provider)
        return text

    async def ask_stream(self, request: NeutralRequest) -> AsyncIterator[str]:
        async with self._open_stream(self.endpoint, self._payload(request, stream=True)) as body:
            async for fragment in iter_fragments(
                body, classify_sse, anthropic_event, provider=self.provider
            ):
                yield fragment

    async def health(self, deadline: float | None = None) -> None:
        payload = {
            "model": self.model,
            "messages": [{"role": "user", "content": "ping"}],
            "max_tokens": 1,
        }
        await self._post_json(self.endpoint, payload)


def build(settings: Settings) -> AnthropicProvider:
    cfg = settings.provider_config("anthropic")
    return AnthropicProvider(
        model=cfg.model,
        endpoint=cfg.endpoint,
        api_key=cfg.api_key,
        request_timeout=settings.provider_request_timeout,
    )
