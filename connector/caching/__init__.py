"""
Read caching package.

The read cache keeps fetch futures per object plus bounded LRUs of search
id lists and aggregation results, all keyed by entity type. Entries are
dropped on writes and on dirty notifications from the invalidation channel.
"""

from .lru import LRUCache
from .read_cache import ReadCache, stable_hash

__all__ = ["LRUCache", "ReadCache", "stable_hash"]
