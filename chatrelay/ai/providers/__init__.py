"""Dynamic LLM driver registry.

Concrete driver modules (e.g. ``openai.py``) expose a ``KEYS`` tuple of
selection keys and a ``build(settings)`` constructor.  At import-time this
package walks its own sub-modules and registers every such constructor, so
``CHATBOT_MODEL=anthropic`` resolves to ``anthropic.build`` without any
``if provider == ...`` chains elsewhere.

Tests (or embedding applications) can add their own drivers::

    from chatrelay.ai import providers

    providers.register("dummy", lambda settings: DummyProvider())
"""

from __future__ import annotations

import functools
import importlib
import logging
import time
from collections.abc import Awaitable, Callable
from pathlib import Path
from types import ModuleType
from typing import Any

from chatrelay.ai.contracts import LLMProvider
from chatrelay.core.exceptions import UnsupportedModelError
from chatrelay.core.settings import Settings
from chatrelay.core.telemetry import record_llm_call

_log = logging.getLogger(__name__)

Constructor = Callable[[Settings], LLMProvider]

_REGISTRY: dict[str, Constructor] = {}

_pkg_path = Path(__file__).resolve().parent

for _file in sorted(_pkg_path.iterdir()):
    if _file.name.startswith("_") or _file.suffix != ".py":
        continue
    _mod: ModuleType = importlib.import_module(f"{__name__}.{_file.stem}")
    if hasattr(_mod, "build") and hasattr(_mod, "KEYS"):
        for _key in _mod.KEYS:
            _REGISTRY[_key] = _mod.build


# ------------------------------------------------------------+
#  Middleware – wrap .ask for metrics + trace logs            |
# ------------------------------------------------------------+


def instrument(prov: LLMProvider) -> LLMProvider:
    """Wrap ``prov.ask`` so every call records latency and outcome."""
    if hasattr(prov.ask, "__wrapped__"):
        return prov

    _orig_ask: Callable[..., Awaitable[str]] = prov.ask
    label = getattr(prov, "provider", prov.name)

    @functools.wraps(_orig_ask)
    async def _timed_ask(*args: Any, **kw: Any) -> str:
        start = time.perf_counter()
        status = "ok"
        try:
            return await _orig_ask(*args, **kw)
        except BaseException:
            status = "error"
            raise
        finally:
            record_llm_call(label, status, time.perf_counter() - start)

    prov.ask = _timed_ask  # type: ignore[method-assign]
    _log.debug("LLM provider '%s' wrapped with telemetry", label)
    return prov


def register(key: str, constructor: Constructor) -> None:
    """Register *constructor* under selection *key* (overrides an existing entry)."""
    _REGISTRY[key.lower()] = constructor


def available() -> list[str]:
    """Return the registered selection keys."""
    return sorted(_REGISTRY)


def create(settings: Settings, key: str | None = None) -> LLMProvider:
    """Build the driver selected by *key* (default ``settings.chatbot_model``)."""
    key = (key or settings.chatbot_model).lower()
    try:
        constructor = _REGISTRY[key]
    except KeyError:
        raise UnsupportedModelError(key) from None
    prov = constructor(settings)
    _log.info("Using %s driver (model=%s)", getattr(prov, "provider", key), prov.name)
    return instrument(prov)


__all__ = ["register", "available", "create", "instrument"]
