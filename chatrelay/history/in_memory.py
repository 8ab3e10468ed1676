from __future__ import annotations

from collections import deque

from .backends import ConversationStore, StoredMessage


class MemoryStore(ConversationStore):
    """Simple in-process ring-buffer implementation of :class:`ConversationStore`."""

    def __init__(self, max_messages: int) -> None:
        self._max_messages = max_messages
        self._store: dict[str, deque[StoredMessage]] = {}

    # ------------------------------------------------------------------
    # Backend API
    # ------------------------------------------------------------------
    async def append(self, conversation_id: str, *messages: StoredMessage) -> None:  # noqa: D401
        buf = self._store.setdefault(conversation_id, deque(maxlen=self._max_messages))
        buf.extend(dict(m) for m in messages)

    async def recent(self, conversation_id: str) -> list[StoredMessage]:
        return [dict(m) for m in self._store.get(conversation_id, ())]

    async def clear(self, conversation_id: str) -> None:  # noqa: D401
        self._store.pop(conversation_id, None)

    async def conversations(self) -> list[str]:
        return list(self._store)
