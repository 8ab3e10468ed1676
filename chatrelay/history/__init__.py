"""Conversation history collaborators (in-memory and Redis)."""

from chatrelay.history.backends import ConversationStore, StoredMessage
from chatrelay.history.factory import choose
from chatrelay.history.in_memory import MemoryStore
from chatrelay.history.redis_backend import RedisStore

__all__ = ["ConversationStore", "StoredMessage", "MemoryStore", "RedisStore", "choose"]
