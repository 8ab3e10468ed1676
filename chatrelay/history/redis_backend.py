from __future__ import annotations

import json
from typing import Any, cast

import redis.asyncio as redis_async

from .backends import ConversationStore, StoredMessage

# Using `Any` for the Redis client type avoids mismatches with stubs that
# declare sync return types even for the async API.
RedisT = Any

_PREFIX = "chatrelay:conversation:"


class RedisStore(ConversationStore):
    """Redis list-per-conversation implementation of :class:`ConversationStore`."""

    def __init__(self, url: str | None, max_messages: int, *, client: RedisT | None = None) -> None:
        self._max_messages = max_messages
        if client is None:
            if not url:
                raise ValueError("Redis URL must be configured")
            # Decode responses so we get str, not bytes.
            client = redis_async.from_url(url, encoding="utf-8", decode_responses=True)
        self._r: RedisT = cast(RedisT, client)

    # Internal helper -----------------------------------------------------
    def _key(self, conversation_id: str) -> str:
        return f"{_PREFIX}{conversation_id}"

    # Backend API ---------------------------------------------------------
    async def append(self, conversation_id: str, *messages: StoredMessage) -> None:  # noqa: D401
        if not messages:
            return
        key = self._key(conversation_id)
        await self._r.rpush(key, *(json.dumps(m) for m in messages))
        # Trim to last N items (-N to -1 keeps last N)
        await self._r.ltrim(key, -self._max_messages, -1)

    async def recent(self, conversation_id: str) -> list[StoredMessage]:
        raw: list[Any] = await self._r.lrange(self._key(conversation_id), -self._max_messages, -1)
        return [json.loads(item) for item in raw]

    async def clear(self, conversation_id: str) -> None:  # noqa: D401
        await self._r.delete(self._key(conversation_id))

    async def conversations(self) -> list[str]:
        ids: list[str] = []
        async for key in self._r.scan_iter(match=f"{_PREFIX}*"):
            if isinstance(key, bytes):
                key = key.decode()
            ids.append(key[len(_PREFIX):])
        return ids

    async def close(self) -> None:
        await self._r.aclose()
