"""Tests for the TTL + LRU response cache."""

import asyncio

import pytest

from relay.core.cache import AutoCleanCache, CacheEntry, ExpiringCache
from relay.exceptions import InvalidConfigurationError


class TestCacheEntry:
    """Tests for CacheEntry expiry."""

    def test_not_expired_at_deadline(self):
        entry = CacheEntry(value="v", expires_at=10.0, last_accessed_at=0.0)
        assert not entry.is_expired(10.0)

    def test_expired_after_deadline(self):
        entry = CacheEntry(value="v", expires_at=10.0, last_accessed_at=0.0)
        assert entry.is_expired(10.001)


class TestExpiringCache:
    """Tests for ExpiringCache."""

    @pytest.fixture
    def evicted(self):
        return []

    @pytest.fixture
    def cache(self, clock, evicted):
        return ExpiringCache(
            ttl_ms=500,
            max_size=3,
            on_evict=lambda key, value: evicted.append((key, value)),
            clock=clock,
        )

    def test_invalid_configuration(self):
        with pytest.raises(InvalidConfigurationError):
            ExpiringCache(ttl_ms=0)
        with pytest.raises(InvalidConfigurationError):
            ExpiringCache(max_size=0)

    def test_set_and_get(self, cache):
        cache.set("k", {"id": 1})
        assert cache.get("k") == {"id": 1}

    def test_missing_key_returns_default(self, cache):
        assert cache.get("missing") is None
        assert cache.get("missing", "fallback") == "fallback"

    def test_falsy_values_are_hits(self, cache):
        sentinel = object()
        cache.set("zero", 0)
        cache.set("empty", [])
        assert cache.get("zero", sentinel) == 0
        assert cache.get("empty", sentinel) == []

    def test_ttl_boundary(self, cache, clock, evicted):
        """An entry set with 500ms TTL is readable at 499ms and gone at 501ms."""
        cache.set("k", "v")
        clock.advance_ms(499)
        assert cache.get("k") == "v"
        clock.advance_ms(2)
        assert cache.get("k") is None
        assert cache.size() == 0
        assert evicted == [("k", "v")]

    def test_per_entry_ttl_override(self, cache, clock):
        cache.set("short", 1, ttl_ms=100)
        cache.set("long", 2, ttl_ms=5000)
        clock.advance_ms(1000)
        assert cache.get("short") is None
        assert cache.get("long") == 2

    def test_lru_eviction(self, cache, evicted):
        """With capacity 3: set a, b, c, read a, set d evicts b."""
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("c", 3)
        cache.get("a")
        cache.set("d", 4)

        assert cache.has("a")
        assert not cache.has("b")
        assert cache.has("c")
        assert cache.has("d")
        assert evicted == [("b", 2)]

    def test_lru_eviction_by_access_time(self, cache, clock, evicted):
        cache.set("a", 1)
        clock.advance_ms(10)
        cache.set("b", 2)
        clock.advance_ms(10)
        cache.set("c", 3)
        clock.advance_ms(10)
        cache.get("a")
        cache.get("b")
        cache.set("d", 4)
        assert evicted == [("c", 3)]

    def test_overwrite_does_not_evict(self, cache, evicted):
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("c", 3)
        cache.set("a", 10)
        assert cache.size() == 3
        assert cache.get("a") == 10
        assert evicted == []

    def test_size_never_exceeds_max(self, cache):
        for i in range(20):
            cache.set(f"k{i}", i)
            assert cache.size() <= 3

    def test_delete(self, cache, evicted):
        cache.set("k", "v")
        assert cache.delete("k") is True
        assert cache.delete("k") is False
        assert evicted == [("k", "v")]

    def test_has_removes_expired(self, cache, clock, evicted):
        cache.set("k", "v")
        clock.advance_ms(600)
        assert "k" not in cache
        assert evicted == [("k", "v")]

    def test_clear_notifies_each_entry(self, cache, evicted):
        cache.set("a", 1)
        cache.set("b", 2)
        cache.clear()
        assert len(cache) == 0
        assert sorted(evicted) == [("a", 1), ("b", 2)]

    def test_keys_include_unswept_expired_entries(self, cache, clock):
        cache.set("old", 1, ttl_ms=100)
        cache.set("new", 2)
        clock.advance_ms(200)
        assert sorted(cache.keys()) == ["new", "old"]
        assert cache.clean_expired() == 1
        assert cache.keys() == ["new"]

    def test_clean_expired(self, cache, clock, evicted):
        cache.set("a", 1, ttl_ms=100)
        cache.set("b", 2, ttl_ms=100)
        cache.set("c", 3)
        clock.advance_ms(200)
        assert cache.clean_expired() == 2
        assert cache.keys() == ["c"]
        assert sorted(evicted) == [("a", 1), ("b", 2)]

    def test_delete_prefix(self, cache, evicted):
        cache.set("replies:1:{}", "r1")
        cache.set("replies:2:{}", "r2")
        cache.set("conversation:1:{}", "c1")
        assert cache.delete_prefix("replies:1:") == 1
        assert cache.keys() == ["replies:2:{}", "conversation:1:{}"]
        assert evicted == [("replies:1:{}", "r1")]

    def test_each_removal_notifies_once(self, clock):
        """Every removal path reports the entry exactly once."""
        evicted = []
        cache = ExpiringCache(
            ttl_ms=100,
            max_size=2,
            on_evict=lambda key, value: evicted.append(key),
            clock=clock,
        )
        cache.set("deleted", 1)
        cache.delete("deleted")
        cache.set("expired", 1)
        clock.advance_ms(200)
        cache.get("expired")
        cache.set("lru", 1)
        cache.set("x", 1)
        cache.set("y", 1)
        clock.advance_ms(200)
        cache.clean_expired()
        cache.set("cleared", 1)
        cache.clear()
        assert sorted(evicted) == sorted(["deleted", "expired", "lru", "x", "y", "cleared"])

    def test_stats(self, cache, clock):
        cache.set("a", 1)
        clock.advance_ms(100)
        stats = cache.stats()
        assert stats["size"] == 1
        assert stats["max_size"] == 3
        assert stats["default_ttl_ms"] == 500
        [entry] = stats["entries"]
        assert entry["key"] == "a"
        assert entry["remaining_ttl_ms"] == pytest.approx(400)
        assert entry["idle_time_ms"] == pytest.approx(100)


class TestAutoCleanCache:
    """Tests for the background sweep."""

    def test_requires_running_loop(self):
        with pytest.raises(RuntimeError):
            AutoCleanCache()

    @pytest.mark.asyncio
    async def test_sweeps_expired_entries(self):
        evicted = []
        cache = AutoCleanCache(
            ttl_ms=10,
            cleanup_interval_ms=20,
            on_evict=lambda key, value: evicted.append(key),
        )
        try:
            cache.set("k", "v")
            assert cache.cleanup_running
            await asyncio.sleep(0.1)
            assert cache.size() == 0
            assert evicted == ["k"]
        finally:
            cache.stop_cleanup()

    @pytest.mark.asyncio
    async def test_stop_cleanup_is_idempotent(self):
        cache = AutoCleanCache(cleanup_interval_ms=10)
        cache.stop_cleanup()
        cache.stop_cleanup()
        assert not cache.cleanup_running

    @pytest.mark.asyncio
    async def test_stopped_cache_keeps_expired_entries(self):
        cache = AutoCleanCache(ttl_ms=10, cleanup_interval_ms=10)
        cache.stop_cleanup()
        cache.set("k", "v")
        await asyncio.sleep(0.05)
        assert cache.size() == 1
        assert cache.get("k") is None

    @pytest.mark.asyncio
    async def test_clear_stops_cleanup(self):
        cache = AutoCleanCache(cleanup_interval_ms=10)
        cache.set("k", "v")
        cache.clear()
        assert not cache.cleanup_running
        assert cache.size() == 0
