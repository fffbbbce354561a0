"""
Change notification bus.

Publishes row-change and auth-state notifications on named channels and lets
live views subscribe to them. Two transports:

- RedisChangeBus: Redis pub/sub, shared by every worker process. Each process
  holds a single pub/sub connection for all of its subscriptions.
- LocalChangeBus: in-process queues, used when Redis is disabled or unreachable
  (single worker only).

Channel names are scoped per user (see `bookmarks_channel` / `auth_channel`), so a
subscriber only ever receives notifications about its own user's data.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from uuid import UUID

from redis.asyncio.client import PubSub
from redis.exceptions import RedisError

from core.redis import RedisClient

logger = logging.getLogger(__name__)


def bookmarks_channel(user_id: UUID | str) -> str:
    """Channel carrying bookmark row changes for one user."""
    return f"bookmarks:{user_id}"


def auth_channel(user_id: UUID | str) -> str:
    """Channel carrying sign-in/sign-out notifications for one user."""
    return f"auth:{user_id}"


class ChangeBusError(Exception):
    """Raised when a subscription cannot be opened."""


class Subscription(ABC):
    """An open subscription to a single channel; iterate it to receive messages."""

    def __init__(self, channel: str) -> None:
        self.channel = channel
        self._closed = False

    @property
    def closed(self) -> bool:
        """Whether close() has been called."""
        return self._closed

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> str:
        if self._closed:
            raise StopAsyncIteration
        message = await self._receive()
        if message is None:
            raise StopAsyncIteration
        return message

    @abstractmethod
    async def _receive(self) -> str | None:
        """Wait for the next message; None means the subscription ended."""

    @abstractmethod
    async def close(self) -> None:
        """Stop receiving and release the underlying resources."""


class ChangeBus(ABC):
    """Publish/subscribe transport for change notifications."""

    name: str = "unknown"

    @abstractmethod
    async def publish(self, channel: str, message: str) -> bool:
        """Publish a message. Returns False if it could not be delivered to the transport."""

    @abstractmethod
    async def subscribe(self, channel: str) -> Subscription:
        """Open a subscription to a channel."""

    async def close(self) -> None:  # noqa: B027
        """Release transport resources."""


class _LocalSubscription(Subscription):
    def __init__(self, bus: "LocalChangeBus", channel: str) -> None:
        super().__init__(channel)
        self._bus = bus
        self.queue: asyncio.Queue[str | None] = asyncio.Queue()

    async def _receive(self) -> str | None:
        return await self.queue.get()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._bus._remove(self)  # noqa: SLF001
        self.queue.put_nowait(None)


class LocalChangeBus(ChangeBus):
    """In-process bus backed by one asyncio.Queue per subscription."""

    name = "local"

    def __init__(self) -> None:
        self._subscriptions: dict[str, set[_LocalSubscription]] = {}

    async def publish(self, channel: str, message: str) -> bool:
        for subscription in list(self._subscriptions.get(channel, ())):
            subscription.queue.put_nowait(message)
        return True

    async def subscribe(self, channel: str) -> Subscription:
        subscription = _LocalSubscription(self, channel)
        self._subscriptions.setdefault(channel, set()).add(subscription)
        return subscription

    def subscriber_count(self, channel: str) -> int:
        """Number of open subscriptions on a channel."""
        return len(self._subscriptions.get(channel, ()))

    def _remove(self, subscription: _LocalSubscription) -> None:
        subscribers = self._subscriptions.get(subscription.channel)
        if subscribers is None:
            return
        subscribers.discard(subscription)
        if not subscribers:
            del self._subscriptions[subscription.channel]

    async def close(self) -> None:
        for subscribers in list(self._subscriptions.values()):
            for subscription in list(subscribers):
                await subscription.close()


def _text(value: bytes | str) -> str:
    return value.decode() if isinstance(value, bytes) else str(value)


class _SharedSubscription(Subscription):
    """Local queue fed by the bus's single Redis pub/sub connection."""

    def __init__(self, bus: "RedisChangeBus", local: Subscription) -> None:
        super().__init__(local.channel)
        self._bus = bus
        self._local = local

    async def _receive(self) -> str | None:
        return await anext(self._local, None)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._local.close()
        await self._bus._release(self.channel)  # noqa: SLF001


class RedisChangeBus(ChangeBus):
    """
    Bus backed by Redis pub/sub.

    The whole process shares one pub/sub connection. The first local subscriber
    of a channel subscribes it on Redis and the last one to close unsubscribes
    it; a single reader task hands incoming messages to a LocalChangeBus that
    fans them out to the open subscriptions. Publishing uses the client's pool,
    so any number of open views holds exactly one connection besides it.
    """

    name = "redis"

    def __init__(self, redis_client: RedisClient) -> None:
        self._redis = redis_client
        self._local = LocalChangeBus()
        self._pubsub: PubSub | None = None
        self._reader: asyncio.Task | None = None
        self._lock = asyncio.Lock()

    async def publish(self, channel: str, message: str) -> bool:
        return await self._redis.publish(channel, message)

    async def subscribe(self, channel: str) -> Subscription:
        async with self._lock:
            if self._pubsub is None:
                self._pubsub = self._redis.pubsub()
                if self._pubsub is None:
                    raise ChangeBusError("Redis is not connected")
            if self._local.subscriber_count(channel) == 0:
                try:
                    await self._pubsub.subscribe(channel)
                except RedisError as e:
                    raise ChangeBusError(f"Could not subscribe to {channel}: {e}") from e
            local = await self._local.subscribe(channel)
            # listen() returns once nothing is subscribed, so restart it on demand
            if self._reader is None or self._reader.done():
                self._reader = asyncio.create_task(
                    self._read(self._pubsub), name="redis-change-bus-reader",
                )
        return _SharedSubscription(self, local)

    def subscriber_count(self, channel: str) -> int:
        """Number of open subscriptions on a channel in this process."""
        return self._local.subscriber_count(channel)

    async def _release(self, channel: str) -> None:
        async with self._lock:
            if self._pubsub is None or self._local.subscriber_count(channel):
                return
            try:
                await self._pubsub.unsubscribe(channel)
            except RedisError as e:
                logger.warning("Redis unsubscribe from %s failed: %s", channel, e)

    async def _read(self, pubsub: PubSub) -> None:
        try:
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                await self._local.publish(_text(message["channel"]), _text(message["data"]))
        except RedisError:
            logger.exception("Redis change bus connection failed; closing subscriptions")
            await self._reset(pubsub)

    async def _reset(self, pubsub: PubSub) -> None:
        async with self._lock:
            if self._pubsub is pubsub:
                self._pubsub = None
            await self._local.close()
        try:
            await pubsub.aclose()
        except RedisError as e:
            logger.warning("Closing Redis pub/sub failed: %s", e)

    async def close(self) -> None:
        if self._reader is not None:
            self._reader.cancel()
            await asyncio.gather(self._reader, return_exceptions=True)
            self._reader = None
        pubsub, self._pubsub = self._pubsub, None
        await self._local.close()
        if pubsub is not None:
            try:
                await pubsub.aclose()
            except RedisError as e:
                logger.warning("Closing Redis pub/sub failed: %s", e)


# Global change bus state using a container to avoid global statement
class _ChangeBusState:
    """Container for global change bus state."""

    bus: ChangeBus | None = None


_state = _ChangeBusState()


def get_change_bus() -> ChangeBus | None:
    """Get the global change bus instance."""
    return _state.bus


def set_change_bus(bus: ChangeBus | None) -> None:
    """Set the global change bus instance."""
    _state.bus = bus


def build_change_bus(redis_client: RedisClient) -> ChangeBus:
    """Pick Redis pub/sub when connected, otherwise fall back to the in-process bus."""
    if redis_client.is_connected:
        return RedisChangeBus(redis_client)
    logger.warning(
        "Redis unavailable - using in-process change bus; "
        "live updates will not cross worker processes",
    )
    return LocalChangeBus()
