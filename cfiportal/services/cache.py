from __future__ import annotations

import json
import logging
import time
from typing import Any, Callable, Protocol

from redis.exceptions import RedisError

from cfiportal.core.config import get_settings
from cfiportal.services.redis import get_redis


logger = logging.getLogger(__name__)


class CacheBackend(Protocol):
    async def get(self, key: str) -> Any | None:
        ...

    async def set(self, key: str, value: Any, ttl_s: int) -> None:
        ...

    async def delete(self, key: str) -> None:
        ...


class RedisCache:
    # Values are JSON documents; an unavailable Redis degrades to a miss.

    def __init__(self, prefix: str | None = None) -> None:
        self._prefix = prefix or get_settings().cache_prefix

    def _key(self, key: str) -> str:
        return f"{self._prefix}:{key}"

    async def get(self, key: str) -> Any | None:
        try:
            redis = await get_redis()
            raw = await redis.get(self._key(key))
        except RedisError as exc:
            logger.warning("cache_get_failed key=%s", key, exc_info=exc)
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("cache_payload_invalid key=%s", key)
            return None

    async def set(self, key: str, value: Any, ttl_s: int) -> None:
        try:
            redis = await get_redis()
            await redis.set(self._key(key), json.dumps(value, ensure_ascii=False), ex=ttl_s)
        except RedisError as exc:
            logger.warning("cache_set_failed key=%s", key, exc_info=exc)

    async def delete(self, key: str) -> None:
        try:
            redis = await get_redis()
            await redis.delete(self._key(key))
        except RedisError as exc:
            logger.warning("cache_delete_failed key=%s", key, exc_info=exc)


class MemoryCache:
    def __init__(self, time_source: Callable[[], float] = time.time) -> None:
        self._items: dict[str, tuple[float, str]] = {}
        self._time = time_source

    async def get(self, key: str) -> Any | None:
        entry = self._items.get(key)
        if entry is None:
            return None
        expires_at, raw = entry
        if expires_at <= self._time():
            self._items.pop(key, None)
            return None
        return json.loads(raw)

    async def set(self, key: str, value: Any, ttl_s: int) -> None:
        # Serialize on write so cached values behave like the Redis backend.
        self._items[key] = (self._time() + ttl_s, json.dumps(value, ensure_ascii=False))

    async def delete(self, key: str) -> None:
        self._items.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._items)


_cache: CacheBackend | None = None


def get_cache() -> CacheBackend:
    global _cache
    if _cache is None:
        if get_settings().cache_backend.lower() == "memory":
            _cache = MemoryCache()
        else:
            _cache = RedisCache()
    return _cache


def set_cache(cache: CacheBackend | None) -> None:
    global _cache
    _cache = cache
