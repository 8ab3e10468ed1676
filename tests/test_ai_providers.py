"""Tests for the dynamic LLM driver registry.

These guarantee that every driver module is discovered and that the
telemetry wrapper keeps the ``LLMProvider`` contract intact.
"""

from __future__ import annotations

from collections.abc import Iterator
from typing import Any

import pytest

from chatrelay.ai import providers as registry
from chatrelay.ai.contracts import LLMProvider, StreamingProvider, build_request
from chatrelay.ai.providers.free import FreeProvider
from chatrelay.core.exceptions import UnsupportedModelError
from chatrelay.core.settings import Settings
from chatrelay.core.telemetry import LLM_REQUEST_TOTAL


@pytest.fixture(autouse=True)
def _isolate_registry() -> Iterator[None]:
    """Snapshot & restore the global registry so tests remain hermetic."""

    snapshot = dict(registry._REGISTRY)
    yield
    registry._REGISTRY.clear()
    registry._REGISTRY.update(snapshot)


def _calls(provider: str, status: str) -> float:
    return LLM_REQUEST_TOTAL.labels(provider=provider, status=status)._value.get()


def test_every_supported_model_is_registered() -> None:
    assert set(registry.available()) >= {
        "openai",
        "anthropic",
        "gemini",
        "xai",
        "meta",
        "ollama",
        "free",
    }


@pytest.mark.parametrize(
    ("key", "overrides", "provider"),
    [
        ("openai", {"openai_api_key": "k"}, "openai"),
        ("anthropic", {"anthropic_api_key": "k"}, "anthropic"),
        ("gemini", {"gemini_api_key": "k"}, "gemini"),
        ("xai", {"xai_api_key": "k"}, "xai"),
        ("meta", {"meta_api_key": "k"}, "meta"),
        ("ollama", {}, "ollama"),
        ("free", {}, "local"),
    ],
)
async def test_create_builds_driver(
    make_settings: Any, key: str, overrides: dict[str, Any], provider: str
) -> None:
    prov = registry.create(make_settings(chatbot_model=key, **overrides))
    try:
        assert isinstance(prov, LLMProvider)
        assert prov.provider == provider
        # Only the free responder lacks incremental streaming.
        assert isinstance(prov, StreamingProvider) is (key != "free")
    finally:
        await prov.close()


def test_create_unknown_key_raises(settings: Settings) -> None:
    with pytest.raises(UnsupportedModelError) as exc_info:
        registry.create(settings, key="mistral")
    assert exc_info.value.model == "mistral"


async def test_register_custom_driver(settings: Settings) -> None:
    registry.register("Dummy", lambda s: FreeProvider(latency=0))

    assert "dummy" in registry.available()
    prov = registry.create(settings, key="dummy")
    reply = await prov.ask(build_request(model="x", messages=[{"role": "user", "content": "hi"}]))
    assert reply.startswith("Hello!")


async def test_instrument_records_outcome() -> None:
    class Boom(FreeProvider):
        provider = "boom"

        async def ask(self, request: Any) -> str:
            raise RuntimeError("nope")

    ok = registry.instrument(FreeProvider(latency=0))
    bad = registry.instrument(Boom(latency=0))
    req = build_request(model="x", messages=[{"role": "user", "content": "thanks"}])

    before_ok = _calls("local", "ok")
    before_err = _calls("boom", "error")

    assert await ok.ask(req) == "You're welcome! I'm happy to help."
    with pytest.raises(RuntimeError):
        await bad.ask(req)

    assert _calls("local", "ok") == before_ok + 1
    assert _calls("boom", "error") == before_err + 1


def test_instrument_is_idempotent() -> None:
    prov = registry.instrument(FreeProvider(latency=0))
    wrapped = prov.ask
    assert registry.instrument(prov).ask is wrapped
