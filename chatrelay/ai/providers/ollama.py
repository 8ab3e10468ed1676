"""Ollama driver (local models over ``/api/chat`` or raw ``/api/generate``).

Sampling knobs travel in ``options``.  Ollama-specific knobs
(``repeat_penalty``, ``num_ctx``, ``num_predict``) and generate-mode fields
(``raw``, ``context``) are read from the request attributes.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

from chatrelay.ai.contracts import NeutralRequest
from chatrelay.ai.providers._http import HTTPProvider
from chatrelay.core.exceptions import MalformedResponseError, NoContentError, UpstreamUnavailableError
from chatrelay.core.settings import Settings
from chatrelay.streaming.framer import classify_ndjson, iter_fragments, ollama_chunk

KEYS = ("ollama",)

_API_SUFFIXES = ("/api/chat", "/api/generate", "/api/tags")


def base_url(endpoint: str) -> str:
    """Strip a trailing API path so ``http://host:11434/api/chat`` and ``http://host:11434`` agree."""
    url = endpoint.rstrip("/")
    for suffix in _API_SUFFIXES:
        if url.endswith(suffix):
            return url[: -len(suffix)]
    return url


class OllamaProvider(HTTPProvider):
    provider = "ollama"

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.base_url = base_url(self.endpoint)

    def _options(self, request: NeutralRequest) -> dict[str, Any]:
        gen = request.generation
        attrs = request.attributes
        options: dict[str, Any] = {
            "temperature": gen.temperature,
            "num_predict": attrs.get("num_predict", gen.max_tokens),
        }
        if gen.top_p is not None:
            options["top_p"] = gen.top_p
        if gen.top_k is not None:
            options["top_k"] = gen.top_k
        if gen.seed is not None:
            options["seed"] = gen.seed
        if gen.stop:
            options["stop"] = gen.stop
        for key in ("repeat_penalty", "num_ctx"):
            if key in attrs:
                options[key] = attrs[key]
        return options

    def _is_raw(self, request: NeutralRequest) -> bool:
        return bool(request.attributes.get("raw"))

    def _payload(self, request: NeutralRequest, *, stream: bool) -> tuple[str, dict[str, Any]]:
        if self._is_raw(request):
            payload: dict[str, Any] = {
                "model": request.model,
                "prompt": request.prompt,
                "raw": True,
                "options": self._options(request),
                "stream": stream,
            }
            system = request.system_text()
            if system:
                payload["system"] = system
            if request.attributes.get("context"):
                payload["context"] = request.attributes["context"]
            return f"{self.base_url}/api/generate", payload
        return f"{self.base_url}/api/chat", {
            "model": request.model,
            "messages": [m.model_dump() for m in request.chat_messages()],
            "options": self._options(request),
            "stream": stream,
        }

    async def ask(self, request: NeutralRequest) -> str:
        url, payload = self._payload(request, stream=False)
        data = await self._post_json(url, payload)
        if not isinstance(data, dict):
            raise MalformedResponseError("ollama response is not an object", provider=self.provider)
        if data.get("error"):
            raise UpstreamUnavailableError(f"ollama error: {data['error']}", provider=self.provider)
        text = "".join(ollama_chunk(data))
        if not text:
            raise NoContentError("no response from Ollama", provider=self.provider)
        return text

    async def ask_stream(self, request: NeutralRequest) -> AsyncIterator[str]:
        url, payload = self._payload(request, stream=True)
        async with self._open_stream(url, payload) as body:
            async for fragment in iter_fragments(
                body, classify_ndjson, ollama_chunk, provider=self.provider
            ):
                yield fragment

    async def list_models(self) -> list[str]:
        data = await self._request_json("GET", f"{self.base_url}/api/tags")
        models = data.get("models", []) if isinstance(data, dict) else []
        return [m.get("name", "") for m in models if isinstance(m, dict)]

    async def health(self, deadline: float | None = None) -> None:
        names = await self.list_models()
        if self.model in names or f"{self.model}:latest" in names:
            return
        raise UpstreamUnavailableError(
            f"model {self.model} not found in Ollama", provider=self.provider
        )


def build(settings: Settings) -> OllamaProvider:
    cfg = settings.provider_config("ollama")
    return OllamaProvider(
        model=cfg.model,
        endpoint=cfg.endpoint,
        request_timeout=settings.ollama_request_timeout,
    )
