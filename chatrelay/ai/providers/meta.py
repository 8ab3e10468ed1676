"""Meta (Llama API) driver; the API is OpenAI-compatible."""

from __future__ import annotations

from chatrelay.ai.providers.openai import OpenAICompatibleProvider
from chatrelay.core.settings import Settings

KEYS = ("meta",)


class MetaProvider(OpenAICompatibleProvider):
    provider = "meta"


def build(settings: Settings) -> MetaProvider:
    cfg = settings.provider_config("meta")
    return MetaProvider(
        model=cfg.model,
        endpoint=cfg.endpoint,
        api_key=cfg.api_key,
        request_timeout=settings.provider_request_timeout,
    )
