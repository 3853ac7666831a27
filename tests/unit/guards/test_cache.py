import asyncio

import pytest

from stream_gate.guards.cache import DenialCache
from stream_gate.types.results import QuotaDecision


def denial(reset_time: float, allowed: bool = False) -> QuotaDecision:
    return QuotaDecision(
        allowed=allowed,
        limit_type="hourly",
        limit=20,
        tokens_used=20,
        tokens_remaining=0,
        reset_time=reset_time,
        retry_after=60,
    )


class TestDenialCache:
    def test_get_recomputes_retry_after(self):
        cache = DenialCache(ttl=30)
        cache.put("user-1", denial(reset_time=1100.0), now=1000.0)

        cached = cache.get("user-1", now=1010.0)

        assert cached is not None
        assert cached.retry_after == 90

    def test_entry_expires_after_ttl(self):
        cache = DenialCache(ttl=30)
        cache.put("user-1", denial(reset_time=5000.0), now=1000.0)

        assert cache.get("user-1", now=1029.0) is not None
        assert cache.get("user-1", now=1030.0) is None
        assert len(cache) == 0

    def test_entry_never_outlives_reset(self):
        cache = DenialCache(ttl=30)
        cache.put("user-1", denial(reset_time=1010.0), now=1000.0)
        assert cache.get("user-1", now=1010.0) is None

    def test_allowed_ignored(self):
        cache = DenialCache()
        cache.put("user-1", denial(reset_time=2000.0, allowed=True), now=1000.0)
        assert len(cache) == 0

    def test_invalidate_and_clear(self):
        cache = DenialCache()
        cache.put("user-1", denial(2000.0), now=1000.0)
        cache.put("user-2", denial(2000.0), now=1000.0)

        cache.invalidate("user-1")
        assert cache.get("user-1", 1001.0) is None
        assert len(cache) == 1

        cache.clear()
        assert len(cache) == 0

    def test_bounded_evicts_soonest_expiry(self):
        cache = DenialCache(ttl=100, max_entries=2)
        cache.put("a", denial(1010.0), now=1000.0)
        cache.put("b", denial(1050.0), now=1000.0)
        cache.put("c", denial(1090.0), now=1000.0)

        assert len(cache) == 2
        assert cache.get("a", 1001.0) is None
        assert cache.get("b", 1001.0) is not None
        assert cache.get("c", 1001.0) is not None

    def test_sweep_skips_superseded(self):
        cache = DenialCache(ttl=10)
        cache.put("user-1", denial(5000.0), now=1000.0)
        cache.put("user-1", denial(5000.0), now=1005.0)

        assert cache.sweep(now=1012.0) == 0
        assert len(cache) == 1
        assert cache.sweep(now=1015.0) == 1
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_background_sweep(self):
        clock_value = [1000.0]
        cache = DenialCache(ttl=1, sweep_interval=0.01, clock=lambda: clock_value[0])
        cache.put("user-1", denial(5000.0), now=1000.0)

        await cache.start()
        clock_value[0] = 1002.0
        await asyncio.sleep(0.05)
        await cache.stop()

        assert len(cache) == 0
