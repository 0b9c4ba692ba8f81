from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Protocol

from redis.exceptions import RedisError

from cfiportal.core.config import get_settings
from cfiportal.services.redis import get_redis


logger = logging.getLogger(__name__)


def build_event(topic: str, event_type: str, payload: dict[str, Any]) -> dict[str, Any]:
    # Events are hints to re-fetch state; they carry no ordering guarantee.
    return {
        **payload,
        "type": event_type,
        "topic": topic,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


class Subscription(Protocol):
    async def get(self, timeout_s: float) -> dict[str, Any] | None:
        ...


class PubSub(Protocol):
    async def publish(self, topic: str, event_type: str, payload: dict[str, Any]) -> bool:
        ...

    def subscribe(self, topic: str) -> Any:
        ...


class _RedisSubscription:
    def __init__(self, pubsub: Any) -> None:
        self._pubsub = pubsub

    async def get(self, timeout_s: float) -> dict[str, Any] | None:
        message = await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=timeout_s)
        if message is None:
            return None
        try:
            event = json.loads(message["data"])
        except (TypeError, ValueError):
            logger.warning("pubsub_event_invalid channel=%s", message.get("channel"))
            return None
        return event if isinstance(event, dict) else None


class RedisPubSub:
    def __init__(self, prefix: str | None = None) -> None:
        self._prefix = prefix or get_settings().pubsub_prefix

    def _channel(self, topic: str) -> str:
        return f"{self._prefix}:{topic}"

    async def publish(self, topic: str, event_type: str, payload: dict[str, Any]) -> bool:
        event = build_event(topic, event_type, payload)
        try:
            redis = await get_redis()
            await redis.publish(self._channel(topic), json.dumps(event, ensure_ascii=False, default=str))
        except (RedisError, OSError) as exc:
            # Publishing is best effort; task state in the database stays authoritative.
            logger.warning("pubsub_publish_failed topic=%s type=%s", topic, event_type, exc_info=exc)
            return False
        return True

    @asynccontextmanager
    async def subscribe(self, topic: str) -> AsyncIterator[_RedisSubscription]:
        redis = await get_redis()
        pubsub = redis.pubsub()
        await pubsub.subscribe(self._channel(topic))
        try:
            yield _RedisSubscription(pubsub)
        finally:
            await pubsub.unsubscribe(self._channel(topic))
            await pubsub.aclose()


class _MemorySubscription:
    def __init__(self, queue: asyncio.Queue) -> None:
        self.queue = queue

    async def get(self, timeout_s: float) -> dict[str, Any] | None:
        try:
            return await asyncio.wait_for(self.queue.get(), timeout=timeout_s)
        except asyncio.TimeoutError:
            return None


class MemoryPubSub:
    def __init__(self) -> None:
        self._subscribers: dict[str, list[asyncio.Queue]] = {}
        # Every published event in order, for assertions in tests.
        self.published: list[dict[str, Any]] = []

    async def publish(self, topic: str, event_type: str, payload: dict[str, Any]) -> bool:
        event = build_event(topic, event_type, payload)
        self.published.append(event)
        for queue in self._subscribers.get(topic, []):
            queue.put_nowait(event)
        return True

    def events(self, topic: str) -> list[dict[str, Any]]:
        return [event for event in self.published if event["topic"] == topic]

    @asynccontextmanager
    async def subscribe(self, topic: str) -> AsyncIterator[_MemorySubscription]:
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.setdefault(topic, []).append(queue)
        try:
            yield _MemorySubscription(queue)
        finally:
            self._subscribers[topic].remove(queue)


_pubsub: PubSub | None = None


def get_pubsub() -> PubSub:
    global _pubsub
    if _pubsub is None:
        if get_settings().pubsub_backend.lower() == "memory":
            _pubsub = MemoryPubSub()
        else:
            _pubsub = RedisPubSub()
    return _pubsub


def set_pubsub(pubsub: PubSub | None) -> None:
    global _pubsub
    _pubsub = pubsub
