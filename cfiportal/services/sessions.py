from __future__ import annotations

import json
import logging
import secrets
import time
from collections.abc import MutableMapping
from typing import Any, Callable, Iterator, Protocol

from cfiportal.core.config import get_settings
from cfiportal.services.redis import get_redis


logger = logging.getLogger(__name__)


class HttpSession(MutableMapping):
    """Server-side session bound to one browser cookie."""

    def __init__(self, session_id: str | None = None, data: dict[str, Any] | None = None) -> None:
        self.is_new = session_id is None
        self.id = session_id or secrets.token_urlsafe(32)
        self._data: dict[str, Any] = dict(data or {})
        self.modified = False

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __setitem__(self, key: str, value: Any) -> None:
        self._data[key] = value
        self.modified = True

    def __delitem__(self, key: str) -> None:
        del self._data[key]
        self.modified = True

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def to_dict(self) -> dict[str, Any]:
        return dict(self._data)


class SessionBackend(Protocol):
    async def load(self, session_id: str) -> dict[str, Any] | None:
        ...

    async def save(self, session_id: str, data: dict[str, Any], ttl_s: int) -> None:
        ...

    async def delete(self, session_id: str) -> None:
        ...


class RedisSessionBackend:
    def __init__(self, prefix: str = "cfiportal:session") -> None:
        self._prefix = prefix

    def _key(self, session_id: str) -> str:
        return f"{self._prefix}:{session_id}"

    async def load(self, session_id: str) -> dict[str, Any] | None:
        redis = await get_redis()
        raw = await redis.get(self._key(session_id))
        if not raw:
            return None
        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning("session_payload_invalid session_id=%s", session_id[:8])
            return None
        return data if isinstance(data, dict) else None

    async def save(self, session_id: str, data: dict[str, Any], ttl_s: int) -> None:
        redis = await get_redis()
        await redis.set(self._key(session_id), json.dumps(data, ensure_ascii=False), ex=ttl_s)

    async def delete(self, session_id: str) -> None:
        redis = await get_redis()
        await redis.delete(self._key(session_id))


class MemorySessionBackend:
    def __init__(self, time_source: Callable[[], float] = time.time) -> None:
        self._items: dict[str, tuple[float, dict[str, Any]]] = {}
        self._time = time_source

    async def load(self, session_id: str) -> dict[str, Any] | None:
        entry = self._items.get(session_id)
        if entry is None:
            return None
        expires_at, data = entry
        if expires_at <= self._time():
            self._items.pop(session_id, None)
            return None
        return dict(data)

    async def save(self, session_id: str, data: dict[str, Any], ttl_s: int) -> None:
        self._items[session_id] = (self._time() + ttl_s, dict(data))

    async def delete(self, session_id: str) -> None:
        self._items.pop(session_id, None)


_backend: SessionBackend | None = None


def get_session_backend() -> SessionBackend:
    global _backend
    if _backend is None:
        settings = get_settings()
        if settings.session_backend.lower() == "memory":
            _backend = MemorySessionBackend()
        else:
            _backend = RedisSessionBackend()
    return _backend


def set_session_backend(backend: SessionBackend | None) -> None:
    # Tests swap in a memory backend; None restores settings-driven selection.
    global _backend
    _backend = backend


async def load_session(session_id: str | None) -> HttpSession:
    if not session_id:
        return HttpSession()
    data = await get_session_backend().load(session_id)
    if data is None:
        # Unknown or expired id: never resurrect a client-chosen session id.
        return HttpSession()
    return HttpSession(session_id, data)


async def persist_session(session: HttpSession) -> bool:
    # Returns True when the cookie must be (re)issued. Every live session is re-saved so its TTL slides.
    settings = get_settings()
    backend = get_session_backend()
    if not session.modified and (session.is_new or not session):
        return False
    if not session and not session.is_new:
        await backend.delete(session.id)
        return False
    if not session:
        return False
    await backend.save(session.id, session.to_dict(), settings.session_ttl_s)
    return True
