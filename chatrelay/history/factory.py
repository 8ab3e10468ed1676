from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from chatrelay.history.backends import ConversationStore
from chatrelay.history.in_memory import MemoryStore
from chatrelay.history.redis_backend import RedisStore

if TYPE_CHECKING:
    from chatrelay.core.settings import Settings

_log = logging.getLogger(__name__)


def choose(settings: Settings) -> ConversationStore:
    """
    Select and instantiate the appropriate ConversationStore.
    Prioritizes Redis if enabled and configured, else falls back to in-memory.
    """
    url = settings.redis.url
    if settings.redis.enabled and url:
        _log.info("Using RedisStore for conversation history")
        return RedisStore(url, max_messages=settings.history_max_messages)
    _log.info("Using in-memory conversation history (non-persistent)")
    return MemoryStore(max_messages=settings.history_max_messages)
