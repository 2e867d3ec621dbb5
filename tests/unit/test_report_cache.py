"""
Unit tests for the in-memory side of the report cache.
"""
from errorscope.services.report_cache import ReportCache


class TestReportCacheFallback:
    async def test_round_trips_without_redis(self):
        cache = ReportCache()

        await cache.set("correlation:app:604800:temporal", [{"lift": 2.5}])

        assert await cache.get("correlation:app:604800:temporal") == [{"lift": 2.5}]
        assert await cache.get("missing") is None

    async def test_fallback_is_bounded(self):
        cache = ReportCache(max_fallback_entries=3)

        # Every distinct window length produces a new key
        for seconds in range(10):
            await cache.set(f"correlation:app:{seconds}:temporal", seconds)

        assert len(cache._fallback) == 3
        assert await cache.get("correlation:app:0:temporal") is None
        assert await cache.get("correlation:app:9:temporal") == 9

    async def test_reads_keep_a_key_alive(self):
        cache = ReportCache(max_fallback_entries=2)
        await cache.set("a", 1)
        await cache.set("b", 2)

        assert await cache.get("a") == 1
        await cache.set("c", 3)

        assert await cache.get("a") == 1
        assert await cache.get("b") is None
        assert await cache.get("c") == 3
