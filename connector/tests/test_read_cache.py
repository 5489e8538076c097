"""
Unit tests for the read cache and its LRU tiers.
"""

import asyncio

import pytest

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from connector.caching import LRUCache, ReadCache, stable_hash
from shared.errors import NotFoundError
from shared.metrics import get_metrics_collector


class TestLRUCache:
    """Test cases for LRUCache."""

    def test_evicts_least_recently_used(self):
        """Test the oldest untouched key goes first."""
        cache = LRUCache(capacity=2)
        cache.set("a", 1)
        cache.set("b", 2)

        assert cache.get("a") == 1

        cache.set("c", 3)

        assert "a" in cache
        assert "b" not in cache
        assert "c" in cache
        assert len(cache) == 2

    def test_set_refreshes_existing_key(self):
        """Test overwriting a key counts as a use."""
        cache = LRUCache(capacity=2)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("a", 10)
        cache.set("c", 3)

        assert cache.get("a") == 10
        assert cache.get("b") is None

    def test_delete_and_clear(self):
        """Test explicit removal."""
        cache = LRUCache()
        cache.set("a", 1)
        cache.set("b", 2)

        cache.delete("a")
        cache.delete("missing")
        assert cache.get("a", "default") == "default"

        cache.clear()
        assert len(cache) == 0

    def test_capacity_must_be_positive(self):
        """Test a zero capacity is refused."""
        with pytest.raises(ValueError):
            LRUCache(capacity=0)


class TestStableHash:
    """Test cases for stable_hash."""

    def test_ignores_key_order(self):
        """Test equal selectors hash equally whatever their key order."""
        first = stable_hash("Person", {"a": 1, "b": {"c": 2, "d": 3}}, None)
        second = stable_hash("Person", {"b": {"d": 3, "c": 2}, "a": 1}, None)

        assert first == second

    def test_distinguishes_values(self):
        """Test different inputs hash differently."""
        assert stable_hash("Person", {"a": 1}) != stable_hash("Person", {"a": 2})
        assert stable_hash("Person", {"a": 1}) != stable_hash("Event", {"a": 1})


class TestReadCache:
    """Test cases for ReadCache."""

    @pytest.fixture
    def metrics(self):
        """Isolated metrics collector."""
        return get_metrics_collector("test")

    @pytest.fixture
    def cache(self, metrics):
        """Cache with a small list-tier capacity."""
        return ReadCache(capacity=2, metrics=metrics)

    @pytest.mark.asyncio
    async def test_object_tier(self, cache, metrics):
        """Test futures are stored and looked up per type and id."""
        future = asyncio.get_running_loop().create_future()
        future.set_result({"_id": "abc123"})

        assert cache.get_object("Person", "abc123") is None

        cache.put_object("Person", "abc123", future)

        assert cache.get_object("Person", "abc123") is future
        assert cache.get_object("Event", "abc123") is None
        assert metrics.sample("cache_hits_total", cache_type="object") == 1
        assert metrics.sample("cache_misses_total", cache_type="object") == 2

    @pytest.mark.asyncio
    async def test_failed_future_is_evicted(self, cache):
        """Test an entry whose fetch fails is removed."""
        future = asyncio.get_running_loop().create_future()
        cache.put_object("Person", "abc123", future)

        future.set_exception(NotFoundError("abc123 is not found"))
        await asyncio.sleep(0)

        assert cache.get_object("Person", "abc123") is None

    @pytest.mark.asyncio
    async def test_replaced_entry_survives_old_failure(self, cache):
        """Test a failing future does not evict the entry that replaced it."""
        loop = asyncio.get_running_loop()
        old, new = loop.create_future(), loop.create_future()
        cache.put_object("Person", "abc123", old)
        cache.put_object("Person", "abc123", new)

        old.set_exception(NotFoundError("abc123 is not found"))
        await asyncio.sleep(0)

        assert cache.get_object("Person", "abc123") is new
        new.cancel()

    def test_list_tiers_are_bounded(self, cache):
        """Test id-search and aggregate tiers keep at most ``capacity`` keys per type."""
        for key in ("q1", "q2", "q3"):
            cache.set_ids("Person", key, [key])
            cache.set_aggregate("Person", key, [{"count": 1}])

        assert cache.get_ids("Person", "q1") is None
        assert cache.get_ids("Person", "q3") == ["q3"]
        assert cache.get_aggregate("Person", "q1") is None
        assert cache.get_aggregate("Person", "q2") == [{"count": 1}]

    @pytest.mark.asyncio
    async def test_invalidate(self, cache):
        """Test invalidation drops the type's list tiers and only the named object."""
        loop = asyncio.get_running_loop()
        changed, untouched = loop.create_future(), loop.create_future()
        changed.set_result({"_id": "abc123"})
        untouched.set_result({"_id": "xyz789"})

        cache.put_object("Person", "abc123", changed)
        cache.put_object("Person", "xyz789", untouched)
        cache.set_ids("Person", "all", ["abc123", "xyz789"])
        cache.set_aggregate("Person", "count", [{"count": 2}])
        cache.set_ids("Event", "all", ["evt001"])

        cache.invalidate("Person", "abc123")

        assert cache.get_object("Person", "abc123") is None
        assert cache.get_object("Person", "xyz789") is untouched
        assert cache.get_ids("Person", "all") is None
        assert cache.get_aggregate("Person", "count") is None
        assert cache.get_ids("Event", "all") == ["evt001"]

    def test_invalidate_unknown_entry(self, cache):
        """Test invalidating something never cached is harmless."""
        cache.invalidate("Unknown", "nothing")

        assert cache.object_cache == {}
        assert cache.id_search_cache == {}

    @pytest.mark.asyncio
    async def test_clear(self, cache):
        """Test clearing forgets every tier of every type."""
        future = asyncio.get_running_loop().create_future()
        future.set_result({"_id": "abc123"})
        cache.put_object("Person", "abc123", future)
        cache.set_ids("Event", "all", ["evt001"])
        cache.set_aggregate("Person", "count", [{"count": 1}])

        cache.clear()

        assert cache.get_object("Person", "abc123") is None
        assert cache.get_ids("Event", "all") is None
        assert cache.get_aggregate("Person", "count") is None
