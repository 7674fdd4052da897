from __future__ import annotations

import asyncio

import pytest

from prdeck.cache import TTLCache


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_fetch() -> None:
    calls = 0
    release = asyncio.Event()

    async def fetch() -> str:
        nonlocal calls
        calls += 1
        await release.wait()
        return "items"

    cache: TTLCache[str] = TTLCache(ttl=60, clock=FakeClock())
    first = cache.get(fetch)
    second = cache.get(fetch)
    assert first is second

    release.set()
    assert await asyncio.gather(first, second) == ["items", "items"]
    assert calls == 1


@pytest.mark.asyncio
async def test_entry_reused_until_expiry() -> None:
    clock = FakeClock()
    results = iter(["a", "b"])

    async def fetch() -> str:
        return next(results)

    cache: TTLCache[str] = TTLCache(ttl=60, clock=clock)
    assert await cache.get(fetch) == "a"

    clock.now += 59
    assert await cache.get(fetch) == "a"

    clock.now += 1
    assert await cache.get(fetch) == "b"


@pytest.mark.asyncio
async def test_force_starts_new_fetch_while_old_completes() -> None:
    release = asyncio.Event()
    values = iter(["old", "new"])

    async def fetch() -> str:
        value = next(values)
        if value == "old":
            await release.wait()
        return value

    cache: TTLCache[str] = TTLCache(ttl=60, clock=FakeClock())
    old = cache.get(fetch)
    new = cache.get(fetch, force=True)
    assert old is not new

    release.set()
    assert await old == "old"
    assert await new == "new"
    assert await cache.get(fetch) == "new"


@pytest.mark.asyncio
async def test_failure_propagates_to_all_awaiters() -> None:
    async def fetch() -> str:
        raise RuntimeError("boom")

    cache: TTLCache[str] = TTLCache(ttl=60, clock=FakeClock())
    first = cache.get(fetch)
    second = cache.get(fetch)

    results = await asyncio.gather(first, second, return_exceptions=True)
    assert all(isinstance(r, RuntimeError) for r in results)


@pytest.mark.asyncio
async def test_failure_does_not_poison_after_expiry() -> None:
    clock = FakeClock()
    attempts = 0

    async def fetch() -> str:
        nonlocal attempts
        attempts += 1
        if attempts == 1:
            raise RuntimeError("boom")
        return "ok"

    cache: TTLCache[str] = TTLCache(ttl=60, clock=clock)
    with pytest.raises(RuntimeError):
        await cache.get(fetch)

    clock.now += 60
    assert await cache.get(fetch) == "ok"


@pytest.mark.asyncio
async def test_keys_are_independent() -> None:
    async def fetch_a() -> str:
        return "a"

    async def fetch_b() -> str:
        return "b"

    cache: TTLCache[str] = TTLCache(ttl=60, clock=FakeClock())
    assert await cache.get(fetch_a, key=("x",)) == "a"
    assert await cache.get(fetch_b, key=("y",)) == "b"
    assert await cache.get(fetch_b, key=("x",)) == "a"


@pytest.mark.asyncio
async def test_peek_and_invalidate() -> None:
    clock = FakeClock()

    async def fetch() -> int:
        return 1

    cache: TTLCache[int] = TTLCache(ttl=60, clock=clock)
    assert cache.peek() is None

    await cache.get(fetch)
    entry = cache.peek()
    assert entry is not None
    assert entry.expires_at == clock.now + 60

    cache.invalidate()
    assert cache.peek() is None

    await cache.get(fetch)
    clock.now += 61
    assert cache.peek() is None


@pytest.mark.asyncio
async def test_expired_keys_are_evicted() -> None:
    clock = FakeClock()

    async def fetch() -> str:
        return "v"

    cache: TTLCache[str] = TTLCache(ttl=60, clock=clock)
    await cache.get(fetch, key=("a",))
    await cache.get(fetch, key=("b",))
    assert len(cache) == 2

    clock.now += 60
    await cache.get(fetch, key=("c",))
    assert len(cache) == 1


@pytest.mark.asyncio
async def test_discard_only_drops_matching_future() -> None:
    values = iter([1, 2])

    async def fetch() -> int:
        return next(values)

    cache: TTLCache[int] = TTLCache(ttl=60, clock=FakeClock())
    old = cache.get(fetch)
    await old
    new = cache.get(fetch, force=True)
    await new

    cache.discard(old)
    assert cache.peek().future is new

    cache.discard(new)
    assert cache.peek() is None
