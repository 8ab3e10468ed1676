from __future__ import annotations

import asyncio

import pytest

from chatrelay.core.exceptions import RateLimitedError
from chatrelay.core.settings import RateLimitConfig
from chatrelay.core.telemetry import RATE_LIMITED_TOTAL
from chatrelay.guard.rate_limiter import RateLimiter


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


def _limiter(clock: FakeClock, limit: int = 3, window: float = 60.0) -> RateLimiter:
    return RateLimiter(RateLimitConfig(requests_per_minute=limit, window=window), clock=clock)


async def test_admits_up_to_limit_then_rejects(clock: FakeClock) -> None:
    limiter = _limiter(clock)
    for _ in range(3):
        await limiter.allow("1.2.3.4")
        clock.advance(1)

    with pytest.raises(RateLimitedError) as exc_info:
        await limiter.allow("1.2.3.4")

    assert (exc_info.value.limit, exc_info.value.count) == (3, 3)
    assert await limiter.count("1.2.3.4") == 3


async def test_rejection_is_not_recorded(clock: FakeClock) -> None:
    limiter = _limiter(clock, limit=1)
    await limiter.allow("c")
    for _ in range(5):
        with pytest.raises(RateLimitedError):
            await limiter.allow("c")
    assert await limiter.count("c") == 1


async def test_clients_are_independent(clock: FakeClock) -> None:
    limiter = _limiter(clock, limit=1)
    await limiter.allow("a")
    await limiter.allow("b")
    with pytest.raises(RateLimitedError):
        await limiter.allow("a")


async def test_window_slides(clock: FakeClock) -> None:
    limiter = _limiter(clock, limit=2, window=10.0)
    await limiter.allow("c")  # t=1000
    clock.advance(5)
    await limiter.allow("c")  # t=1005
    clock.advance(4.9)
    with pytest.raises(RateLimitedError):
        await limiter.allow("c")

    clock.advance(0.1)  # t=1010: the first admission leaves the window
    await limiter.allow("c")
    assert await limiter.count("c") == 2


async def test_concurrent_admissions_respect_limit() -> None:
    limiter = RateLimiter(RateLimitConfig(requests_per_minute=5))
    results = await asyncio.gather(
        *(limiter.allow("shared") for _ in range(20)), return_exceptions=True
    )
    assert sum(r is None for r in results) == 5
    assert all(isinstance(r, RateLimitedError) for r in results if r is not None)


async def test_rejections_are_counted(clock: FakeClock) -> None:
    limiter = _limiter(clock, limit=1)
    before = RATE_LIMITED_TOTAL._value.get()
    await limiter.allow("c")
    with pytest.raises(RateLimitedError):
        await limiter.allow("c")
    assert RATE_LIMITED_TOTAL._value.get() == before + 1


async def test_cleanup_drops_idle_clients(clock: FakeClock) -> None:
    limiter = _limiter(clock, window=10.0)
    await limiter.allow("old")
    clock.advance(8)
    await limiter.allow("recent")
    clock.advance(3)

    assert await limiter.cleanup() == 1
    assert limiter.tracked_clients() == ["recent"]
    assert await limiter.count("old") == 0


async def test_run_cleanup_until_stopped(clock: FakeClock) -> None:
    limiter = _limiter(clock, window=10.0)
    await limiter.allow("c")
    clock.advance(11)

    stop = asyncio.Event()
    task = limiter.start_cleanup_task(stop, interval=0.01)
    for _ in range(100):
        if not limiter.tracked_clients():
            break
        await asyncio.sleep(0.01)
    stop.set()
    await asyncio.wait_for(task, timeout=1)

    assert limiter.tracked_clients() == []
    assert task.done() and task.exception() is None


async def test_burst_size_does_not_change_admission(clock: FakeClock) -> None:
    limiter = RateLimiter(RateLimitConfig(requests_per_minute=2, burst_size=50), clock=clock)
    await limiter.allow("c")
    await limiter.allow("c")
    with pytest.raises(RateLimitedError):
        await limiter.allow("c")
