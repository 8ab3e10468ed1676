"""Abstract interface for conversation-history storage backends.

The chat core never persists anything itself; the HTTP layer uses a backend
to replay prior turns as ``history`` and to record the new turn afterwards.
All operations are asynchronous so IO-bound backends (Redis) don't block the
event-loop even when an in-memory implementation is used.
"""

from __future__ import annotations

# ruff: noqa: D205,D400

from abc import ABC, abstractmethod

# {"role": "user" | "assistant", "content": "..."}
StoredMessage = dict[str, str]


class ConversationStore(ABC):
    """Abstract storage for conversation messages."""

    @abstractmethod
    async def append(self, conversation_id: str, *messages: StoredMessage) -> None:  # noqa: D401 – imperative
        """Append *messages* to the tail of *conversation_id*."""

    @abstractmethod
    async def recent(self, conversation_id: str) -> list[StoredMessage]:
        """Return retained messages for *conversation_id* (oldest first).

        The concrete backend decides how many messages to retain based on the
        *max_messages* value provided to its constructor."""

    @abstractmethod
    async def clear(self, conversation_id: str) -> None:
        """Purge history for *conversation_id*."""

    @abstractmethod
    async def conversations(self) -> list[str]:
        """Return the ids of every stored conversation."""

    async def close(self) -> None:
        return None
