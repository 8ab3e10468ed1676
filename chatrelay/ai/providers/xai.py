"""xAI (Grok) driver; the API is OpenAI-compatible."""

from __future__ import annotations

from chatrelay.ai.providers.openai import OpenAICompatibleProvider
from chatrelay.core.settings import Settings

KEYS = ("xai",)


class XAIProvider(OpenAICompatibleProvider):
    provider = "xai"


def build(settings: Settings) -> XAIProvider:
    cfg = settings.provider_config("xai")
    return XAIProvider(
        model=cfg.model,
        endpoint=cfg.endpoint,
        api_key=cfg.api_key,
        request_timeout=settings.provider_request_timeout,
    )
