"""OpenAI chat-completions driver.

Also the base for every OpenAI-compatible upstream (xAI, Meta): they share the
request shape, the ``choices[0].message.content`` response and the SSE
``choices[0].delta.content`` stream terminated by ``data: [DONE]``.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

from chatrelay.ai.contracts import NeutralRequest
from chatrelay.ai.providers._http import HTTPProvider
from chatrelay.core.exceptions import MalformedResponseError, NoContentError
from chatrelay.core.settings import Settings
from chatrelay.streaming.framer import classify_sse, iter_fragments, openai_delta

KEYS = ("openai",)


class OpenAICompatibleProvider(HTTPProvider):
    """Driver for any ``/v1/chat/completions`` style endpoint."""

    provider = "openai"

    def _headers(self) -> dict[str, str]:
        headers = super()._headers()
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _payload(self, request: NeutralRequest, *, stream: bool) -> dict[str, Any]:
        gen = request.generation
        payload: dict[str, Any] = {
            "model": request.model,
            "messages": [m.model_dump() for m in request.chat_messages()],
            "temperature": gen.temperature,
            "max_tokens": gen.max_tokens,
            "stream": stream,
        }
        if gen.top_p is not None:
            payload["top_p"] = gen.top_p
        if gen.stop:
            payload["stop"] = gen.stop
        if gen.seed is not None:
            payload["seed"] = gen.seed
        return payload

    def _extract(self, data: Any) -> str:
        if not isinstance(data, dict):
            raise MalformedResponseError(
                f"{self.provider} response is not an object", provider=self.provider
            )
        choices = data.get("choices") or []
        if not isinstance(choices, list):
            raise MalformedResponseError(
                f"{self.provider} choices is not a list", provider=self.provider
            )
        if not choices:
            raise NoContentError(f"no response from {self.provider}", provider=self.provider)
        choice = choices[0]
        message = (choice.get("message") or {}) if isinstance(choice, dict) else None
        if not isinstance(message, dict):
            raise MalformedResponseError(
                f"{self.provider} choice is not an object", provider=self.provider
            )
        content = message.get("content")
        if not content:
            raise NoContentError(f"empty response from {self.provider}", provider=self.provider)
        if not isinstance(content, str):
            raise MalformedResponseError(
                f"{self.provider} content is not text", provider=self.provider
            )
        return content

    # ------------------------------------------------------------------
    # LLMProvider API
    # ------------------------------------------------------------------

    async def ask(self, request: NeutralRequest) -> str:
        data = await self._post_json(self.endpoint, self._payload(request, stream=False))
        return self._extract(data)

    async def ask_stream(self, request: NeutralRequest) -> AsyncIterator[str]:
        async with self._open_stream(self.endpoint, self._payload(request, stream=True)) as body:
            async for fragment in iter_fragments(
                body, classify_sse, openai_delta, provider=self.provider
            ):
                yield fragment

    async def health(self, deadline: float | None = None) -> None:
        payload = {
            "model": self.model,
            "messages": [{"role": "user", "content": "ping"}],
            "max_tokens": 1,
        }
        await self._post_json(self.endpoint, payload)


class OpenAIProvider(OpenAICompatibleProvider):
    provider = "openai"


def build(settings: Settings) -> OpenAIProvider:
    cfg = settings.provider_config("openai")
    return OpenAIProvider(
        model=cfg.model,
        endpoint=cfg.endpoint,
        api_key=cfg.api_key,
        request_timeout=settings.provider_request_timeout,
    )
