"""Both conversation backends honour the same contract."""

from __future__ import annotations

from typing import Any

import pytest

from chatrelay.history import ConversationStore, MemoryStore, RedisStore, choose
from tests.fakes.fake_redis import FakeRedisClient


@pytest.fixture(params=["memory", "redis"])
def store(request: pytest.FixtureRequest) -> ConversationStore:
    if request.param == "memory":
        return MemoryStore(max_messages=4)
    return RedisStore(None, max_messages=4, client=FakeRedisClient())


async def test_append_and_recent(store: ConversationStore) -> None:
    await store.append("c1", {"role": "user", "content": "hi"}, {"role": "assistant", "content": "hello"})
    assert await store.recent("c1") == [
        {"role": "user", "content": "hi"},
        {"role": "assistant", "content": "hello"},
    ]
    assert await store.recent("unknown") == []


async def test_keeps_only_latest_messages(store: ConversationStore) -> None:
    for i in range(6):
        await store.append("c1", {"role": "user", "content": str(i)})
    assert [m["content"] for m in await store.recent("c1")] == ["2", "3", "4", "5"]


async def test_clear_and_list(store: ConversationStore) -> None:
    await store.append("a", {"role": "user", "content": "x"})
    await store.append("b", {"role": "user", "content": "y"})
    assert sorted(await store.conversations()) == ["a", "b"]

    await store.clear("a")

    assert await store.conversations() == ["b"]
    assert await store.recent("a") == []


async def test_recent_returns_copies() -> None:
    store = MemoryStore(max_messages=2)
    await store.append("c", {"role": "user", "content": "x"})
    (msg,) = await store.recent("c")
    msg["content"] = "mutated"
    assert (await store.recent("c"))[0]["content"] == "x"


async def test_redis_keys_and_close() -> None:
    client = FakeRedisClient()
    store = RedisStore(None, max_messages=3, client=client)

    await store.append("c9", {"role": "user", "content": "x"})
    await store.append("c9")
    await store.close()

    calls = [name for name, _, _ in client.call_history]
    assert calls == ["rpush", "ltrim", "aclose"]
    assert client.call_history[0][1][0] == "chatrelay:conversation:c9"
    assert client.closed


async def test_redis_failure_propagates() -> None:
    store = RedisStore(None, max_messages=3, client=FakeRedisClient(should_fail=True))
    with pytest.raises(ConnectionError):
        await store.recent("c")


def test_redis_requires_url() -> None:
    with pytest.raises(ValueError):
        RedisStore(None, max_messages=3)


def test_choose_backend(make_settings: Any) -> None:
    assert isinstance(choose(make_settings()), MemoryStore)
    assert isinstance(choose(make_settings(redis={"enabled": True})), MemoryStore)
    chosen = choose(make_settings(redis={"enabled": True, "url": "redis://localhost:6379/0"}))
    assert isinstance(chosen, RedisStore)
