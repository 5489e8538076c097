"""
Invalidation package.

Subscribes to the tenant's dirty channel and evicts read cache entries for
every ``"EntityType|objectId"`` notification. When the feed is lost the cache
is cleared and the adapter reconnects with backoff.
"""

from .adapter import ChannelState, InvalidationChannelAdapter
from .channels import (
    Channel,
    ChannelFactory,
    RedisChannelFactory,
    RedisPubSubChannel,
    SocketIOChannel,
    SocketIOChannelFactory,
    get_channel_factory,
)

__all__ = [
    "Channel",
    "ChannelFactory",
    "ChannelState",
    "InvalidationChannelAdapter",
    "RedisChannelFactory",
    "RedisPubSubChannel",
    "SocketIOChannel",
    "SocketIOChannelFactory",
    "get_channel_factory",
]
