from __future__ import annotations

import asyncio

import pytest

from agency_crm.client.cache import QueryCache
from agency_crm.client.debounce import Debouncer

KEY = ("contacts", '{"page": "1"}')


async def test_concurrent_fetches_share_one_load() -> None:
    cache = QueryCache(stale_time=30)
    gate = asyncio.Event()
    calls = 0

    async def loader() -> dict:
        nonlocal calls
        calls += 1
        await gate.wait()
        return {"data": [{"id": "1"}]}

    first = asyncio.create_task(cache.fetch(KEY, loader))
    second = asyncio.create_task(cache.fetch(KEY, loader))
    await asyncio.sleep(0)
    assert cache.in_flight(KEY)

    gate.set()
    results = await asyncio.gather(first, second)

    assert calls == 1
    assert results[0] is results[1]
    assert not cache.in_flight(KEY)


async def test_cancelled_waiter_does_not_cancel_shared_load() -> None:
    cache = QueryCache(stale_time=30)
    gate = asyncio.Event()

    async def loader() -> str:
        await gate.wait()
        return "rows"

    abandoned = asyncio.create_task(cache.fetch(KEY, loader))
    kept = asyncio.create_task(cache.fetch(KEY, loader))
    await asyncio.sleep(0)

    abandoned.cancel()
    gate.set()

    assert await kept == "rows"
    with pytest.raises(asyncio.CancelledError):
        await abandoned
    assert cache.get(KEY) == "rows"


async def test_cancel_stops_the_load_for_every_waiter() -> None:
    cache = QueryCache(stale_time=30)

    async def loader() -> str:
        await asyncio.Event().wait()
        return "never"

    waiter = asyncio.create_task(cache.fetch(KEY, loader))
    await asyncio.sleep(0)
    await asyncio.sleep(0)

    assert cache.cancel(KEY) is True
    with pytest.raises(asyncio.CancelledError):
        await waiter
    assert cache.get(KEY) is None
    assert cache.cancel(KEY) is False


async def test_fresh_entries_are_served_until_stale() -> None:
    now = [100.0]
    cache = QueryCache(stale_time=30, clock=lambda: now[0])
    calls = 0

    async def loader() -> int:
        nonlocal calls
        calls += 1
        return calls

    assert await cache.fetch(KEY, loader) == 1
    now[0] += 29.9
    assert await cache.fetch(KEY, loader) == 1
    now[0] += 0.1
    assert cache.is_stale(KEY)
    assert await cache.fetch(KEY, loader) == 2


async def test_failed_loads_are_not_cached() -> None:
    cache = QueryCache(stale_time=30)
    attempts = 0

    async def loader() -> str:
        nonlocal attempts
        attempts += 1
        if attempts == 1:
            raise RuntimeError("network down")
        return "ok"

    with pytest.raises(RuntimeError):
        await cache.fetch(KEY, loader)
    assert not cache.in_flight(KEY)
    assert await cache.fetch(KEY, loader) == "ok"
    assert attempts == 2


def test_invalidate_drops_keys_by_prefix() -> None:
    cache = QueryCache(stale_time=30)
    cache.set(("contacts", "a"), 1)
    cache.set(("contacts", "b"), 2)
    cache.set(("deals", "a"), 3)

    assert cache.invalidate(("contacts",)) == 2
    assert cache.get(("contacts", "a")) is None
    assert cache.get(("deals", "a")) == 3
    assert cache.invalidate() == 1


async def test_debouncer_delivers_only_the_last_value() -> None:
    delivered: list[str] = []
    debouncer = Debouncer(delivered.append, delay=0.01)

    debouncer.push("s")
    debouncer.push("sa")
    debouncer.push("sara")
    assert debouncer.pending

    await asyncio.sleep(0.05)

    assert delivered == ["sara"]
    assert not debouncer.pending


async def test_debouncer_flush_and_cancel() -> None:
    delivered: list[str] = []

    async def deliver(value: str) -> None:
        delivered.append(value)

    debouncer = Debouncer(deliver, delay=10)
    debouncer.push("now")
    await debouncer.flush()
    assert delivered == ["now"]

    debouncer.push("dropped")
    debouncer.cancel()
    await debouncer.flush()
    await asyncio.sleep(0)
    assert delivered == ["now"]
