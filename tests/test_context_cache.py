"""Tests for the per-session browser context cache."""
import asyncio

import pytest

from session_proxy.proxy import ContextCache, SessionNotFound, SessionParseError

from conftest import cookie, write_session


async def test_same_context_reused(store, context_factory):
    path = write_session(store, "github", [cookie("sid", "1")])
    cache = ContextCache(context_factory, store)

    first = await cache.get_or_create(path)
    second = await cache.get_or_create(path)

    assert first is second
    assert len(context_factory.created) == 1
    assert path in cache


async def test_contexts_are_per_session(store, context_factory):
    a = write_session(store, "a", [])
    b = write_session(store, "b", [])
    cache = ContextCache(context_factory, store)
    assert await cache.get_or_create(a) is not await cache.get_or_create(b)
    assert len(cache) == 2


async def test_missing_session_is_an_error(store, context_factory):
    cache = ContextCache(context_factory, store)
    with pytest.raises(SessionNotFound):
        await cache.get_or_create(store.resolve_path("nope"))
    assert context_factory.created == []


async def test_corrupt_session_is_an_error(store, context_factory):
    path = store.resolve_path("bad")
    path.parent.mkdir(parents=True)
    path.write_text("{")
    with pytest.raises(SessionParseError):
        await ContextCache(context_factory, store).get_or_create(path)


async def test_concurrent_misses_create_one_context(store):
    path = write_session(store, "busy", [])
    created = []

    async def slow_factory(state):
        await asyncio.sleep(0.01)
        created.append(object())
        return created[-1]

    cache = ContextCache(slow_factory, store)
    results = await asyncio.gather(*(cache.get_or_create(path) for _ in range(5)))
    assert len(created) == 1
    assert all(r is created[0] for r in results)


async def test_storage_state_is_browser_ready(store, context_factory):
    path = write_session(store, "s", [cookie("sid", "1")])
    await ContextCache(context_factory, store).get_or_create(path)
    restored = context_factory.states[0]["cookies"][0]
    assert restored["expires"] == -1
    assert restored["sameSite"] == "Lax"
    assert restored["httpOnly"] is False


async def test_evict_idle_persists_and_closes(store, context_factory, events):
    path = write_session(store, "idle", [cookie("sid", "1")])
    now = [100.0]
    cache = ContextCache(context_factory, store, max_idle_s=60, clock=lambda: now[0])
    ctx = await cache.get_or_create(path)

    assert await cache.evict_idle(now=150.0) == []
    assert await cache.evict_idle(now=161.0) == [str(path)]
    assert ctx.closed
    assert ("persist", "ctx0") in events
    assert path not in cache


async def test_evict_skips_contexts_in_use(store, context_factory):
    path = write_session(store, "busy", [])
    cache = ContextCache(context_factory, store, max_idle_s=1, clock=lambda: 0.0)
    async with cache.use(path):
        assert await cache.evict_idle(now=1000.0) == []
    assert await cache.evict_idle(now=1000.0) == [str(path)]


async def test_eviction_disabled_by_default(store, context_factory):
    path = write_session(store, "s", [])
    cache = ContextCache(context_factory, store)
    await cache.get_or_create(path)
    assert await cache.evict_idle(now=10**9) == []
    assert len(cache) == 1


async def test_close_all_continues_past_failures(store, context_factory, events):
    a = write_session(store, "a", [])
    b = write_session(store, "b", [])
    cache = ContextCache(context_factory, store)
    ctx_a = await cache.get_or_create(a)
    ctx_b = await cache.get_or_create(b)
    ctx_a.fail_persist = True
    ctx_b.storage = {"cookies": [cookie("fresh", "yes")], "origins": []}

    failed = await cache.close_all()

    assert failed == [str(a)]
    assert ctx_a.closed and ctx_b.closed
    assert ("persist", "ctx1") in events
    assert store.load(b).cookies[0].name == "fresh"
    assert len(cache) == 0


async def test_context_borrowed_mid_eviction_stays_open(store, context_factory):
    a = write_session(store, "a", [])
    b = write_session(store, "b", [])
    cache = ContextCache(context_factory, store, max_idle_s=1, clock=lambda: 0.0)
    ctx_a = await cache.get_or_create(a)
    await cache.get_or_create(b)
    ctx_a.gate = asyncio.Event()

    eviction = asyncio.create_task(cache.evict_idle(now=100.0))
    await asyncio.sleep(0)
    async with cache.use(b) as borrowed:
        ctx_a.gate.set()
        assert await eviction == [str(a)]
        assert not borrowed.closed
    assert b in cache
    assert ctx_a.closed


async def test_miss_after_eviction_restores_persisted_state(store, context_factory):
    path = write_session(store, "s", [cookie("sid", "old")])
    cache = ContextCache(context_factory, store, max_idle_s=1, clock=lambda: 0.0)
    ctx = await cache.get_or_create(path)
    ctx.storage = {"cookies": [cookie("sid", "new")], "origins": []}

    await cache.evict_idle(now=100.0)
    await cache.get_or_create(path)

    assert len(context_factory.created) == 2
    assert context_factory.states[1]["cookies"][0]["value"] == "new"
