"""
Invalidation channel adapter: turns dirty notifications into cache evictions.

While the channel is down no notifications arrive, so the adapter clears the
whole cache when the feed is lost and again once it has rejoined.
"""

import asyncio
from enum import Enum
from typing import Optional

from shared.errors import ChannelError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from ..caching import ReadCache
from .channels import Channel, ChannelFactory


class ChannelState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    JOINED = "joined"
    RECEIVING = "receiving"


class InvalidationChannelAdapter:
    """Listens on ``<tenant_id>_dirty`` and evicts cache entries for ``"Type|id"`` messages."""

    def __init__(
        self,
        cache: ReadCache,
        channel_factory: ChannelFactory,
        tenant_id: str,
        channel_url: str,
        *,
        metrics: Optional[MetricsCollector] = None,
        reconnect_delay: float = 1.0,
        reconnect_max_delay: float = 30.0
    ):
        self.cache = cache
        self.channel_factory = channel_factory
        self.tenant_id = tenant_id
        self.channel_url = channel_url
        self.metrics = metrics
        self.reconnect_delay = reconnect_delay
        self.reconnect_max_delay = reconnect_max_delay
        self.logger = get_logger("connector.invalidation")

        self.channel: Optional[Channel] = None
        self.state = ChannelState.DISCONNECTED
        self.reconnect_task: Optional[asyncio.Task] = None

    @property
    def channel_id(self) -> str:
        return f"{self.tenant_id}_dirty"

    async def start(self) -> None:
        """Connect, subscribe the handler and join the tenant channel."""
        if self.state != ChannelState.DISCONNECTED or self._reconnecting():
            return

        try:
            channel = await self.channel_factory.connect(self.channel_url)
        except Exception as e:
            self.logger.error("Failed to connect invalidation channel", url=self.channel_url, error=str(e))
            raise ChannelError("Failed to connect invalidation channel", {"url": self.channel_url, "error": str(e)})
        self._attach(channel)

        try:
            await channel.join(self.channel_id)
        except Exception as e:
            self.logger.error("Failed to join invalidation channel", channel=self.channel_id, error=str(e))
            await self.stop()
            raise ChannelError("Failed to join invalidation channel", {"channel": self.channel_id, "error": str(e)})
        self.state = ChannelState.JOINED

        self.logger.info("Invalidation channel joined", channel=self.channel_id, url=self.channel_url)

    async def stop(self) -> None:
        """Stop reconnecting and close the channel."""
        task, self.reconnect_task = self.reconnect_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        channel, self.channel = self.channel, None
        self.state = ChannelState.DISCONNECTED
        if channel is not None:
            await self._close_channel(channel)
            self.logger.info("Invalidation channel closed", channel=self.channel_id)

    def handle_message(self, message: str) -> None:
        """Apply one ``"EntityType|objectId"`` notification."""
        if self.state == ChannelState.JOINED:
            self.state = ChannelState.RECEIVING

        parts = message.split("|")
        if len(parts) != 2:
            self.logger.warning("Ignoring malformed dirty notification", message=message)
            self._record("malformed")
            return

        entity_type, object_id = parts
        self.cache.invalidate(entity_type, object_id)
        self._record("applied")

    def handle_disconnect(self, channel: Channel) -> None:
        """Drop the cache and start reconnecting after ``channel`` lost its feed."""
        if channel is not self.channel:
            return

        self.channel = None
        self.state = ChannelState.DISCONNECTED
        if self._reconnecting():
            return
        self.logger.warning("Invalidation channel lost, clearing cache", channel=self.channel_id)
        self.cache.clear()
        self._record_reconnect("feed_lost")
        self.reconnect_task = asyncio.create_task(self._reconnect(channel))

    def _attach(self, channel: Channel) -> None:
        self.channel = channel
        self.state = ChannelState.CONNECTED
        channel.on_message(self.handle_message)
        channel.on_disconnect(lambda: self.handle_disconnect(channel))

    def _reconnecting(self) -> bool:
        return self.reconnect_task is not None and not self.reconnect_task.done()

    async def _reconnect(self, lost: Channel) -> None:
        await self._close_channel(lost)

        delay = self.reconnect_delay
        attempt = 0
        while True:
            attempt += 1
            channel: Optional[Channel] = None
            try:
                channel = await self.channel_factory.connect(self.channel_url)
                self._attach(channel)
                await channel.join(self.channel_id)
                if self.channel is not channel:
                    raise ChannelError("Invalidation channel lost while joining", {"channel": self.channel_id})
            except Exception as e:
                self.logger.warning(
                    "Invalidation channel reconnect failed",
                    channel=self.channel_id,
                    attempt=attempt,
                    retry_in=delay,
                    error=str(e)
                )
                self._record_reconnect("failed")
                self.channel = None
                self.state = ChannelState.DISCONNECTED
                if channel is not None:
                    await self._close_channel(channel)
                await asyncio.sleep(delay)
                delay = min(delay * 2, self.reconnect_max_delay)
                continue

            # Notifications published while disconnected are gone.
            self.cache.clear()
            self.state = ChannelState.JOINED
            self._record_reconnect("succeeded")
            self.logger.info("Invalidation channel rejoined", channel=self.channel_id, attempt=attempt)
            return

    async def _close_channel(self, channel: Channel) -> None:
        try:
            await channel.close()
        except Exception as e:
            self.logger.warning("Error closing invalidation channel", channel=self.channel_id, error=str(e))

    def _record(self, outcome: str) -> None:
        if self.metrics:
            self.metrics.increment_counter("invalidation_messages_total", outcome=outcome)

    def _record_reconnect(self, outcome: str) -> None:
        if self.metrics:
            self.metrics.increment_counter("invalidation_reconnects_total", outcome=outcome)
