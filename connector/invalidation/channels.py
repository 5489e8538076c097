"""
Pub/sub channels delivering dirty notifications.

Two backends are provided:

- ``SocketIOChannel``: a socket.io connection; joining emits ``join`` with the
  channel id and every ``message`` event is a notification
- ``RedisPubSubChannel``: a Redis pub/sub subscription on the channel id

Both call the registered handlers with the raw text payload, and call the
disconnect handlers when the feed is lost without ``close()`` being called.
Channels do not reconnect by themselves.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, List, Optional, Protocol, Union

import redis.asyncio as redis
import socketio

from shared.logging import get_logger

MessageHandler = Callable[[str], Union[None, Awaitable[None]]]
DisconnectHandler = Callable[[], None]


class Channel(Protocol):
    """A joined feed of text messages."""

    async def join(self, channel_id: str) -> None: ...

    def on_message(self, handler: MessageHandler) -> None: ...

    def on_disconnect(self, handler: DisconnectHandler) -> None: ...

    async def close(self) -> None: ...


class ChannelFactory(Protocol):
    """Opens a channel connection."""

    async def connect(self, url: str) -> Channel: ...


class _HandlerRegistry:
    """Message and disconnect handlers shared by the channel backends."""

    def __init__(self, logger_name: str):
        self.logger = get_logger(logger_name)
        self._handlers: List[MessageHandler] = []
        self._disconnect_handlers: List[DisconnectHandler] = []
        self._closing = False

    def on_message(self, handler: MessageHandler) -> None:
        self._handlers.append(handler)

    def on_disconnect(self, handler: DisconnectHandler) -> None:
        self._disconnect_handlers.append(handler)

    async def _deliver(self, payload: Any) -> None:
        text = payload.decode("utf-8") if isinstance(payload, (bytes, bytearray)) else str(payload)
        for handler in list(self._handlers):
            try:
                result = handler(text)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                self.logger.error("Error processing channel message", message=text, error=str(e))

    def _feed_lost(self) -> None:
        if self._closing:
            return
        for handler in list(self._disconnect_handlers):
            try:
                handler()
            except Exception as e:
                self.logger.error("Error in channel disconnect handler", error=str(e))


class _ListeningChannel(_HandlerRegistry, ABC):
    """Channel fed by a background reader task."""

    def __init__(self, logger_name: str):
        super().__init__(logger_name)
        self._reader: Optional[asyncio.Task] = None

    @abstractmethod
    async def _read_loop(self) -> None:
        """Deliver messages until the feed ends."""

    def _start_reader(self) -> None:
        if self._reader is None:
            self._reader = asyncio.create_task(self._run_reader())

    async def _run_reader(self) -> None:
        try:
            await self._read_loop()
            self.logger.warning("Channel feed ended")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.logger.warning("Channel feed failed", error=str(e))
        self._feed_lost()

    async def _stop_reader(self) -> None:
        if self._reader is None:
            return
        reader, self._reader = self._reader, None
        reader.cancel()
        try:
            await reader
        except asyncio.CancelledError:
            pass
        except Exception as e:
            self.logger.warning("Channel reader stopped with error", error=str(e))


class SocketIOChannel(_HandlerRegistry):
    """Channel over a socket.io connection."""

    def __init__(self, client: socketio.AsyncClient):
        super().__init__("connector.invalidation.socketio")
        self.sio = client
        client.on("message", self._deliver)
        client.on("disconnect", self._on_disconnect)

    @classmethod
    async def connect(cls, url: str) -> "SocketIOChannel":
        client = socketio.AsyncClient(reconnection=False)
        channel = cls(client)
        await client.connect(url)
        return channel

    async def join(self, channel_id: str) -> None:
        await self.sio.emit("join", channel_id)
        self.logger.info("Joined socket.io channel", channel=channel_id)

    async def _on_disconnect(self, *reason: Any) -> None:
        self.logger.warning("Socket.io channel disconnected", reason=list(reason))
        self._feed_lost()

    async def close(self) -> None:
        self._closing = True
        await self.sio.disconnect()


class RedisPubSubChannel(_ListeningChannel):
    """Channel over a Redis pub/sub subscription."""

    def __init__(self, client: redis.Redis):
        super().__init__("connector.invalidation.redis")
        self.redis = client
        self.pubsub = client.pubsub()

    @classmethod
    async def connect(cls, url: str) -> "RedisPubSubChannel":
        client = redis.from_url(
            url,
            encoding="utf-8",
            decode_responses=True,
            socket_connect_timeout=5,
            health_check_interval=30
        )
        await client.ping()
        return cls(client)

    async def join(self, channel_id: str) -> None:
        await self.pubsub.subscribe(channel_id)
        self._start_reader()
        self.logger.info("Subscribed to redis channel", channel=channel_id)

    async def _read_loop(self) -> None:
        async for message in self.pubsub.listen():
            if message.get("type") != "message":
                continue
            await self._deliver(message.get("data"))

    async def close(self) -> None:
        self._closing = True
        await self._stop_reader()
        await self.pubsub.unsubscribe()
        await self.pubsub.aclose()
        await self.redis.aclose()


class SocketIOChannelFactory:
    """Factory for ``SocketIOChannel``."""

    async def connect(self, url: str) -> Channel:
        return await SocketIOChannel.connect(url)


class RedisChannelFactory:
    """Factory for ``RedisPubSubChannel``."""

    async def connect(self, url: str) -> Channel:
        return await RedisPubSubChannel.connect(url)


def get_channel_factory(backend: str) -> ChannelFactory:
    """Channel factory for a configured backend name."""
    if backend == "redis":
        return RedisChannelFactory()
    if backend == "socketio":
        return SocketIOChannelFactory()
    raise ValueError(f"Unknown invalidation backend: {backend}")
