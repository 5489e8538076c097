"""
Three-tier read cache: single objects, search id lists and aggregation results.
"""

import asyncio
import hashlib
import json
from typing import Any, Dict, List, Optional

from shared.logging import get_logger
from shared.metrics import MetricsCollector
from ..models import Document
from .lru import LRUCache

DEFAULT_CAPACITY = 1000

OBJECT_CACHE = "object"
ID_SEARCH_CACHE = "id_search"
AGGREGATE_CACHE = "aggregate"


def stable_hash(*parts: Any) -> str:
    """Hash JSON-like values independently of dict key order."""
    payload = json.dumps(parts, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class ReadCache:
    """Per-entity-type caches consulted before work is queued.

    Entries are advisory: a missing entry only costs a network call. The
    object tier stores futures, so in-flight fetches are shared as well as
    completed ones; the two list tiers are bounded LRUs created lazily per
    entity type.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY, metrics: Optional[MetricsCollector] = None):
        self.capacity = capacity
        self.metrics = metrics
        self.logger = get_logger("connector.cache")

        self.object_cache: Dict[str, Dict[str, "asyncio.Future[Document]"]] = {}
        self.id_search_cache: Dict[str, LRUCache[str, List[str]]] = {}
        self.aggregate_cache: Dict[str, LRUCache[str, List[Any]]] = {}

    # Object tier

    def get_object(self, entity_type: str, object_id: str) -> Optional["asyncio.Future[Document]"]:
        future = self.object_cache.get(entity_type, {}).get(object_id)
        self._record_lookup(OBJECT_CACHE, future is not None)
        return future

    def put_object(self, entity_type: str, object_id: str, future: "asyncio.Future[Document]") -> None:
        """Remember a fetch future; it is dropped again if it fails."""
        self.object_cache.setdefault(entity_type, {})[object_id] = future
        future.add_done_callback(
            lambda done: self._evict_failed(entity_type, object_id, done)
        )

    def drop_object(self, entity_type: str, object_id: str) -> bool:
        return self.object_cache.get(entity_type, {}).pop(object_id, None) is not None

    def _evict_failed(self, entity_type: str, object_id: str, future: "asyncio.Future[Document]") -> None:
        if not future.cancelled() and future.exception() is None:
            return
        entries = self.object_cache.get(entity_type, {})
        if entries.get(object_id) is future:
            del entries[object_id]

    # Id-search tier

    def get_ids(self, entity_type: str, key: str) -> Optional[List[str]]:
        ids = self._id_search(entity_type).get(key)
        self._record_lookup(ID_SEARCH_CACHE, ids is not None)
        return ids

    def set_ids(self, entity_type: str, key: str, ids: List[str]) -> None:
        self._id_search(entity_type).set(key, ids)

    def _id_search(self, entity_type: str) -> LRUCache[str, List[str]]:
        if entity_type not in self.id_search_cache:
            self.id_search_cache[entity_type] = LRUCache(self.capacity)
        return self.id_search_cache[entity_type]

    # Aggregate tier

    def get_aggregate(self, entity_type: str, key: str) -> Optional[List[Any]]:
        rows = self._aggregates(entity_type).get(key)
        self._record_lookup(AGGREGATE_CACHE, rows is not None)
        return rows

    def set_aggregate(self, entity_type: str, key: str, rows: List[Any]) -> None:
        self._aggregates(entity_type).set(key, rows)

    def _aggregates(self, entity_type: str) -> LRUCache[str, List[Any]]:
        if entity_type not in self.aggregate_cache:
            self.aggregate_cache[entity_type] = LRUCache(self.capacity)
        return self.aggregate_cache[entity_type]

    # Invalidation

    def invalidate(self, entity_type: str, object_id: str) -> None:
        """Forget everything that a change to ``entity_type/object_id`` may have made stale.

        Both list tiers of the type are dropped whole; only the changed
        object leaves the object tier.
        """
        self.id_search_cache.pop(entity_type, None)
        self.aggregate_cache.pop(entity_type, None)
        dropped = self.drop_object(entity_type, object_id)

        self.logger.debug(
            "Cache invalidated",
            entity_type=entity_type,
            object_id=object_id,
            object_dropped=dropped
        )

    def clear(self) -> None:
        """Forget every entry of every type."""
        self.object_cache.clear()
        self.id_search_cache.clear()
        self.aggregate_cache.clear()
        self.logger.info("Cache cleared")

    def _record_lookup(self, cache_type: str, hit: bool) -> None:
        if self.metrics:
            metric = "cache_hits_total" if hit else "cache_misses_total"
            self.metrics.increment_counter(metric, cache_type=cache_type)
