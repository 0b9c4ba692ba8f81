from __future__ import annotations

import asyncio
import logging

from redis.asyncio import Redis

from cfiportal.core.config import get_settings


logger = logging.getLogger(__name__)

_redis_pool: Redis | None = None
_redis_loop: asyncio.AbstractEventLoop | None = None
_redis_lock = asyncio.Lock()


async def get_redis() -> Redis:
    # Share one client per event loop for sessions, cache and pub/sub.
    global _redis_pool, _redis_loop
    current_loop = asyncio.get_running_loop()
    if _redis_pool is not None and _redis_loop == current_loop:
        return _redis_pool
    if _redis_pool is not None and _redis_loop != current_loop:
        # Drop loop-bound clients to avoid cross-loop errors in tests.
        _redis_pool = None
    async with _redis_lock:
        if _redis_pool is None:
            settings = get_settings()
            _redis_pool = Redis.from_url(settings.redis_url, encoding="utf-8", decode_responses=True)
            _redis_loop = current_loop
    return _redis_pool
