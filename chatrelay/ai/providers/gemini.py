"""Google Gemini driver (``generateContent`` REST API).

Gemini only knows the ``user`` and ``model`` roles, so assistant turns are
renamed and the system prompt is folded into the first user turn behind a
``System:`` marker.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

from chatrelay.ai.contracts import NeutralRequest
from chatrelay.ai.providers._http import HTTPProvider
from chatrelay.core.exceptions import MalformedResponseError, NoContentError
from chatrelay.core.settings import Settings
from chatrelay.streaming.framer import classify_sse, gemini_candidates, iter_fragments

KEYS = ("gemini",)

SAFETY_SETTINGS = [
    {"category": category, "threshold": "BLOCK_MEDIUM_AND_ABOVE"}
    for category in (
        "HARM_CATEGORY_HARASSMENT",
        "HARM_CATEGORY_HATE_SPEECH",
        "HARM_CATEGORY_SEXUALLY_EXPLICIT",
        "HARM_CATEGORY_DANGEROUS_CONTENT",
    )
]


class GeminiProvider(HTTPProvider):
    provider = "gemini"

    def _headers(self) -> dict[str, str]:
        headers = super()._headers()
        if self.api_key:
            headers["x-goog-api-key"] = self.api_key
        return headers

    def _url(self, method: str) -> str:
        return f"{self.endpoint.rstrip('/')}/{self.model}:{method}"

    def _contents(self, request: NeutralRequest) -> list[dict[str, Any]]:
        contents: list[dict[str, Any]] = []
        system = request.system_text()
        for m in request.messages:
            if m.role == "system":
                continue
            text = m.content
            if system and m.role == "user":
                text = f"System: {system}\n\nUser: {text}"
                system = None
            role = "model" if m.role == "assistant" else "user"
            contents.append({"role": role, "parts": [{"text": text}]})
        return contents

    def _payload(self, request: NeutralRequest) -> dict[str, Any]:
        gen = request.generation
        config: dict[str, Any] = {
            "temperature": gen.temperature,
            "topK": gen.top_k if gen.top_k is not None else 40,
            "topP": gen.top_p if gen.top_p is not None else 0.8,
            "maxOutputTokens": gen.max_tokens,
        }
        if gen.stop:
            config["stopSequences"] = gen.stop
        if gen.seed is not None:
            config["seed"] = gen.seed
        return {
            "contents": self._contents(request),
            "generationConfig": config,
            "safetySettings": SAFETY_SETTINGS,
        }

    async def ask(self, request: NeutralRequest) -> str:
        data = await self._post_json(self._url("generateContent"), self._payload(request))
        if not isinstance(data, dict):
            raise MalformedResponseError("gemini response is not an object", provider=self.provider)
        text = "".join(gemini_candidates(data))
        if not text:
            raise NoContentError("no response from Gemini", provider=self.provider)
        return text

    async def ask_stream(self, request: NeutralRequest) -> AsyncIterator[str]:
        url = self._url("streamGenerateContent") + "?alt=sse"
        async with self._open_stream(url, self._payload(request)) as body:
            async for fragment in iter_fragments(
                body, classify_sse, gemini_candidates, provider=self.provider
            ):
                yield fragment

    async def health(self, deadline: float | None = None) -> None:
        payload = {
            "contents": [{"role": "user", "parts": [{"text": "ping"}]}],
            "generationConfig": {"maxOutputTokens": 1},
        }
        await self._post_json(self._url("generateContent"), payload)


def build(settings: Settings) -> GeminiProvider:
    cfg = settings.provider_config("gemini")
    return GeminiProvider(
        model=cfg.model,
        endpoint=cfg.endpoint,
        api_key=cfg.api_key,
        request_timeout=settings.provider_request_timeout,
    )
