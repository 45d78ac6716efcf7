# =============================================================================
# Realtime Chat Feed - Publish / Subscribe per Room
# =============================================================================
#
# After a chat message is stored, the ingest route publishes it here and
# every open stream for that room receives it (push, no polling).
#
# Two backends behind one interface:
#   - MemoryBroadcaster: asyncio queues in this process. Subscribers on
#     other instances see nothing.
#   - RedisBroadcaster: Redis pub/sub on channel "chat:<room>", so every
#     instance's subscribers see every message.
#
# Ordering is publish order per publisher; there is no global ordering
# across instances. Publish failures are logged and never fail the ingest
# request, the message is already stored.
#
# Event shape (one stored chat_messages row):
#   {"id", "input_id", "user_id", "room", "text", "created_at"}
# =============================================================================

from __future__ import annotations

import asyncio
import json
import logging
from collections import defaultdict
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Protocol

from app.config import settings
from app.services.ingest_store import StoredChatMessage

logger = logging.getLogger(__name__)


def message_event(message: StoredChatMessage) -> dict:
    """Serialize a stored chat message into a realtime event."""
    return {
        "id": message.id,
        "input_id": message.input_id,
        "user_id": message.user_id,
        "room": message.room,
        "text": message.text,
        "created_at": message.created_at.isoformat(),
    }


class Subscription(Protocol):
    async def get(self, timeout: float | None = None) -> dict | None:
        """Next event, or None if `timeout` seconds pass without one."""
        ...


class ChatBroadcaster(Protocol):
    async def publish(self, room: str, event: dict) -> None: ...

    def subscribe(self, room: str): ...

    async def close(self) -> None: ...


# ---------------------------------------------------------------------------
# In-process backend
# ---------------------------------------------------------------------------


class _QueueSubscription:
    def __init__(self, queue: asyncio.Queue):
        self._queue = queue

    async def get(self, timeout: float | None = None) -> dict | None:
        try:
            return await asyncio.wait_for(self._queue.get(), timeout)
        except TimeoutError:
            return None


class MemoryBroadcaster:
    """Fan-out to asyncio queues held by subscribers in this process."""

    def __init__(self, max_queue_size: int = 100):
        self.max_queue_size = max_queue_size
        self._rooms: dict[str, set[asyncio.Queue]] = defaultdict(set)

    def subscriber_count(self, room: str) -> int:
        return len(self._rooms.get(room, ()))

    async def publish(self, room: str, event: dict) -> None:
        for queue in list(self._rooms.get(room, ())):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning("Dropping chat event for slow subscriber (room=%s)", room)

    @asynccontextmanager
    async def subscribe(self, room: str) -> AsyncIterator[_QueueSubscription]:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.max_queue_size)
        self._rooms[room].add(queue)
        logger.debug(
            "Subscriber joined (room=%s, subscribers=%d)", room, self.subscriber_count(room),
        )
        try:
            yield _QueueSubscription(queue)
        finally:
            self._rooms[room].discard(queue)
            if not self._rooms[room]:
                del self._rooms[room]
            logger.debug(
                "Subscriber left (room=%s, subscribers=%d)", room, self.subscriber_count(room),
            )

    async def close(self) -> None:
        self._rooms.clear()


# ---------------------------------------------------------------------------
# Redis backend
# ---------------------------------------------------------------------------


class _RedisSubscription:
    def __init__(self, pubsub):
        self._pubsub = pubsub

    async def get(self, timeout: float | None = None) -> dict | None:
        message = await self._pubsub.get_message(
            ignore_subscribe_messages=True,
            timeout=timeout,
        )
        if message is None:
            return None
        try:
            return json.loads(message["data"])
        except (TypeError, ValueError):
            logger.warning("Ignoring malformed chat event: %r", message.get("data"))
            return None


class RedisBroadcaster:
    """Redis pub/sub on channels "chat:<room>"."""

    def __init__(self, redis_url: str, channel_prefix: str = "chat"):
        self.redis_url = redis_url
        self.channel_prefix = channel_prefix
        self._client = None

    def _get_redis(self):
        """Lazily create and cache the async Redis client."""
        if self._client is None:
            import redis.asyncio as aioredis
            self._client = aioredis.from_url(self.redis_url, decode_responses=True)
        return self._client

    def _channel(self, room: str) -> str:
        return f"{self.channel_prefix}:{room}"

    async def publish(self, room: str, event: dict) -> None:
        await self._get_redis().publish(self._channel(room), json.dumps(event))

    @asynccontextmanager
    async def subscribe(self, room: str) -> AsyncIterator[_RedisSubscription]:
        pubsub = self._get_redis().pubsub()
        await pubsub.subscribe(self._channel(room))
        try:
            yield _RedisSubscription(pubsub)
        finally:
            await pubsub.unsubscribe(self._channel(room))
            await pubsub.aclose()

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


# ---------------------------------------------------------------------------
# Module-level broadcaster
# ---------------------------------------------------------------------------

_broadcaster: MemoryBroadcaster | RedisBroadcaster | None = None


def get_chat_broadcaster() -> MemoryBroadcaster | RedisBroadcaster:
    """FastAPI dependency returning the configured broadcaster."""
    global _broadcaster
    if _broadcaster is None:
        if settings.realtime_backend == "redis":
            _broadcaster = RedisBroadcaster(settings.realtime_redis_url)
        else:
            _broadcaster = MemoryBroadcaster()
        logger.info("Realtime chat backend: %s", settings.realtime_backend)
    return _broadcaster


async def publish_chat_message(
    broadcaster: ChatBroadcaster,
    message: StoredChatMessage,
) -> None:
    """Publish a stored message. Logs and swallows backend errors."""
    try:
        await broadcaster.publish(message.room, message_event(message))
    except Exception as e:
        logger.warning(
            "Failed to publish chat message %s to room %s: %s",
            message.id, message.room, e,
        )


async def close_chat_broadcaster() -> None:
    global _broadcaster
    if _broadcaster is not None:
        await _broadcaster.close()
        _broadcaster = None
