"""
tests/conftest.py – test harness bootstrap.
Quiet logging, hermetic settings and an asyncio task-leak guard.
"""

import asyncio
from collections.abc import AsyncGenerator, Iterator
from typing import Any

import pytest

from chatrelay.ai.providers.free import FreeProvider
from chatrelay.core.chatbot import Chatbot
from chatrelay.core.logger_setup import setup_logging
from chatrelay.core.settings import Settings
from tests.fakes.fake_upstream import FakeUpstream
from tests.fakes.recording_sink import RecordingSink

# ------------------------------------------------------------------+
# Global logging setup                                              +
# ------------------------------------------------------------------+
setup_logging({"root": {"level": "WARNING"}})

_ENV_PREFIXES = (
    "CHATBOT_",
    "RATE_LIMIT_",
    "FILTER_",
    "OPENAI_",
    "ANTHROPIC_",
    "GEMINI_",
    "XAI_",
    "META_",
    "OLLAMA_",
    "REDIS__",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Keep developer environment variables out of Settings()."""
    import os

    for name in list(os.environ):
        if name.upper().startswith(_ENV_PREFIXES):
            monkeypatch.delenv(name, raising=False)
    yield


@pytest.fixture
def settings() -> Settings:
    """Defaults only; ``.env`` files are ignored."""
    return Settings(_env_file=None)


@pytest.fixture
def make_settings() -> Any:
    def _make(**overrides: Any) -> Settings:
        return Settings(_env_file=None, **overrides)

    return _make


@pytest.fixture
def free_provider() -> FreeProvider:
    return FreeProvider(latency=0)


@pytest.fixture
def chatbot(settings: Settings, free_provider: FreeProvider) -> Chatbot:
    return Chatbot(settings, provider=free_provider)


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
async def upstream() -> AsyncGenerator[FakeUpstream, None]:
    fake = FakeUpstream()
    yield fake
    await fake.close()


# Type annotated autouse fixture (required by --strict mypy)
@pytest.fixture(autouse=True)
async def _cleanup_asyncio_tasks() -> AsyncGenerator[None, None]:
    """Ensure no pending tasks survive beyond each test function.

    pytest-asyncio closes the event loop *after* test teardown.  Leftover tasks
    would log "Task was destroyed but it is pending", so cancel and await them.
    """
    yield

    loop = asyncio.get_running_loop()
    pending: list[asyncio.Task[Any]] = [
        t
        for t in asyncio.all_tasks(loop)
        if t is not asyncio.current_task(loop=loop) and not t.done()
    ]
    for task in pending:
        task.cancel()
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)
