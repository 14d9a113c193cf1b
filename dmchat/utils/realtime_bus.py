import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional

import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError

logger = logging.getLogger(__name__)

OnMessage = Callable[[str], Awaitable[None]]

PROFILES_CHANNEL = "profiles"


def channel_name(table: str, **filters: str) -> str:
    """Channel key for a table plus equality filters, e.g. ``messages:sender_id=eq.u1,receiver_id=eq.u2``."""
    if not filters:
        return table
    expr = ",".join(f"{column}=eq.{value}" for column, value in filters.items())
    return f"{table}:{expr}"


def message_channel(sender_id: str, receiver_id: str) -> str:
    return channel_name("messages", sender_id=sender_id, receiver_id=receiver_id)


class LocalBus:
    """In-process fan-out used when no Redis URL is configured."""

    enabled = True

    def __init__(self) -> None:
        self._subscribers: Dict[str, List["LocalSubscription"]] = {}

    async def publish(self, channel: str, message: str) -> None:
        for sub in list(self._subscribers.get(channel, [])):
            sub.deliver(message)

    async def subscribe(self, channel: str, on_message: OnMessage) -> "LocalSubscription":
        sub = LocalSubscription(self, channel, on_message)
        self._subscribers.setdefault(channel, []).append(sub)
        return sub

    def subscriber_count(self, channel: str) -> int:
        return len(self._subscribers.get(channel, []))

    def _remove(self, sub: "LocalSubscription") -> None:
        subs = self._subscribers.get(sub.channel)
        if not subs:
            return
        try:
            subs.remove(sub)
        except ValueError:
            pass
        if not subs:
            del self._subscribers[sub.channel]

    async def close(self) -> None:
        self._subscribers.clear()


class LocalSubscription:

    def __init__(self, bus: LocalBus, channel: str, on_message: OnMessage) -> None:
        self._bus = bus
        self.channel = channel
        self._on_message = on_message
        self._queue: "asyncio.Queue[Optional[str]]" = asyncio.Queue()
        self._running = True

    def deliver(self, message: str) -> None:
        if self._running:
            self._queue.put_nowait(message)

    async def run(self) -> None:
        while self._running:
            message = await self._queue.get()
            if message is None:
                break
            await self._on_message(message)

    async def cancel(self) -> None:
        self._running = False
        self._bus._remove(self)
        self._queue.put_nowait(None)


class RedisBus:

    enabled = True

    def __init__(self, url: str) -> None:
        self._redis = redis.from_url(url)

    async def publish(self, channel: str, message: str) -> None:
        await self._redis.publish(channel, message)

    async def subscribe(self, channel: str, on_message: OnMessage) -> "RedisSubscription":
        pubsub = self._redis.pubsub()
        await pubsub.subscribe(channel)
        return RedisSubscription(pubsub, channel, on_message)

    async def close(self) -> None:
        await self._redis.aclose()


class RedisSubscription:

    reconnect_delay = 0.5

    def __init__(self, pubsub, channel: str, on_message: OnMessage) -> None:
        self._pubsub = pubsub
        self.channel = channel
        self._on_message = on_message
        self._running = True

    async def run(self) -> None:
        while self._running:
            try:
                msg = await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
            except RedisConnectionError as exc:
                # the client reconnects on the next call; a gap is reconciled by reloading history
                logger.warning("realtime channel %s lost connection: %s", self.channel, exc)
                await asyncio.sleep(self.reconnect_delay)
                continue
            if msg and msg.get("type") == "message":
                data = msg.get("data")
                if isinstance(data, bytes):
                    data = data.decode("utf-8")
                await self._on_message(data)

    async def cancel(self) -> None:
        self._running = False
        try:
            await self._pubsub.unsubscribe(self.channel)
        finally:
            await self._pubsub.aclose()


def create_bus(url: Optional[str] = None):
    if not url:
        logger.info("REDIS_URL not set, using in-process realtime bus")
        return LocalBus()
    return RedisBus(url)
