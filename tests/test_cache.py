"""DepthCache ageing and request coalescing."""

import asyncio

import pytest

from depthbook.cache import DepthCache, RequestCoalescer


class TestDepthCache:
    def test_get_returns_value_and_age(self, clock):
        cache = DepthCache(ttl=2, stale_window=60, clock=clock)
        cache.put("k", "v")
        clock.advance(1.5)
        value, age_ms = cache.get("k")
        assert value == "v"
        assert age_ms == pytest.approx(1500)
        assert cache.is_fresh(age_ms)

    def test_expired_entries_are_still_usable_as_stale(self, clock):
        cache = DepthCache(ttl=2, stale_window=60, clock=clock)
        cache.put("k", "v")
        clock.advance(10)
        value, age_ms = cache.get("k")
        assert not cache.is_fresh(age_ms)
        assert cache.is_usable_stale(age_ms)

    def test_entries_beyond_stale_window_are_dropped(self, clock):
        cache = DepthCache(ttl=2, stale_window=60, clock=clock)
        cache.put("k", "v")
        clock.advance(61)
        assert cache.get("k") is None
        assert len(cache) == 0

    def test_miss(self, clock):
        assert DepthCache(clock=clock).get("missing") is None

    def test_oldest_entries_are_evicted(self, clock):
        cache = DepthCache(capacity=2, clock=clock)
        cache.put("a", 1)
        clock.advance(1)
        cache.put("b", 2)
        clock.advance(1)
        cache.put("c", 3)
        assert cache.get("a") is None
        assert cache.get("b")[0] == 2
        assert cache.get("c")[0] == 3

    def test_put_refreshes_entry(self, clock):
        cache = DepthCache(capacity=2, clock=clock)
        cache.put("a", 1)
        cache.put("b", 2)
        clock.advance(5)
        cache.put("a", 10)
        cache.put("c", 3)
        assert cache.get("a") == (10, 0.0)
        assert cache.get("b") is None

    def test_stale_window_never_shorter_than_ttl(self, clock):
        assert DepthCache(ttl=5, stale_window=1, clock=clock).stale_window == 5


class TestRequestCoalescer:
    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_computation(self):
        coalescer = RequestCoalescer()
        calls = 0
        release = asyncio.Event()

        async def compute():
            nonlocal calls
            calls += 1
            await release.wait()
            return "depth"

        first = asyncio.ensure_future(coalescer.run("k", compute))
        second = asyncio.ensure_future(coalescer.run("k", compute))
        await asyncio.sleep(0)
        assert coalescer.in_flight("k")
        release.set()

        assert await asyncio.gather(first, second) == ["depth", "depth"]
        assert calls == 1
        assert not coalescer.in_flight("k")

    @pytest.mark.asyncio
    async def test_different_keys_run_separately(self):
        coalescer = RequestCoalescer()

        async def compute(value):
            return value

        results = await asyncio.gather(
            coalescer.run("a", lambda: compute(1)), coalescer.run("b", lambda: compute(2))
        )
        assert results == [1, 2]

    @pytest.mark.asyncio
    async def test_failures_reach_every_waiter_and_clear_the_key(self):
        coalescer = RequestCoalescer()

        async def boom():
            await asyncio.sleep(0)
            raise RuntimeError("rpc down")

        results = await asyncio.gather(
            coalescer.run("k", boom), coalescer.run("k", boom), return_exceptions=True
        )
        assert all(isinstance(result, RuntimeError) for result in results)
        assert not coalescer.in_flight("k")

    @pytest.mark.asyncio
    async def test_waiter_timeout_does_not_cancel_shared_work(self):
        coalescer = RequestCoalescer()
        release = asyncio.Event()

        async def compute():
            await release.wait()
            return "late"

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(coalescer.run("k", compute), timeout=0.01)
        assert coalescer.in_flight("k")
        release.set()
        assert await coalescer.run("k", compute) == "late"
