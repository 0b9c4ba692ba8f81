from __future__ import annotations

import logging
import time
from collections.abc import MutableMapping
from typing import Any, Callable

from cfiportal.core.config import get_settings
from cfiportal.core.errors import NoSessionError


logger = logging.getLogger(__name__)

TOKEN_KEY = "cfi_jeton"
TOKEN_TIMESTAMP_KEY = "cfi_jeton_timestamp"
USER_DATA_KEY = "cfi_user_data"
CURRENT_TENANT_KEY = "cfi_current_tenant"
_ALL_KEYS = (TOKEN_KEY, TOKEN_TIMESTAMP_KEY, USER_DATA_KEY, CURRENT_TENANT_KEY)


class SessionTokenStore:
    """CFI token, user data and current division held in the HTTP session.

    The TTL is a local estimate of the remote token lifetime; a 401 from the
    remote API remains the authoritative expiry signal.
    """

    def __init__(
        self,
        session: MutableMapping[str, Any] | None,
        *,
        ttl_s: int | None = None,
        refresh_threshold_s: int | None = None,
        time_source: Callable[[], float] = time.time,
    ) -> None:
        settings = get_settings()
        self._session = session
        self._ttl_s = settings.cfi_token_ttl_s if ttl_s is None else ttl_s
        self._refresh_threshold_s = (
            settings.cfi_token_refresh_threshold_s if refresh_threshold_s is None else refresh_threshold_s
        )
        self._time = time_source

    def _require_session(self) -> MutableMapping[str, Any]:
        if self._session is None:
            raise NoSessionError("no HTTP session bound to this execution")
        return self._session

    def _age(self) -> float | None:
        timestamp = self._require_session().get(TOKEN_TIMESTAMP_KEY)
        if timestamp is None:
            return None
        return self._time() - float(timestamp)

    def set_token(self, token: str) -> None:
        session = self._require_session()
        session[TOKEN_KEY] = token
        session[TOKEN_TIMESTAMP_KEY] = self._time()
        logger.debug("cfi_token_stored")

    def get_token(self) -> str | None:
        session = self._require_session()
        token = session.get(TOKEN_KEY)
        if not token:
            return None
        age = self._age()
        if age is None or age >= self._ttl_s:
            logger.info("cfi_token_expired age_s=%s ttl_s=%s", None if age is None else int(age), self._ttl_s)
            self.clear()
            return None
        return str(token)

    def is_expired(self) -> bool:
        age = self._age()
        return age is None or age >= self._ttl_s

    def should_refresh(self) -> bool:
        age = self._age()
        if age is None:
            return False
        return age >= self._ttl_s - self._refresh_threshold_s

    def time_remaining(self) -> int:
        age = self._age()
        if age is None:
            return 0
        return max(0, int(self._ttl_s - age))

    def set_user_data(self, data: dict[str, Any]) -> None:
        self._require_session()[USER_DATA_KEY] = dict(data)

    def get_user_data(self) -> dict[str, Any] | None:
        data = self._require_session().get(USER_DATA_KEY)
        return dict(data) if isinstance(data, dict) else None

    def set_current_tenant(self, tenant_id: int) -> None:
        self._require_session()[CURRENT_TENANT_KEY] = int(tenant_id)

    def get_current_tenant(self) -> int | None:
        value = self._require_session().get(CURRENT_TENANT_KEY)
        return int(value) if value is not None else None

    def clear_current_tenant(self) -> None:
        self._require_session().pop(CURRENT_TENANT_KEY, None)

    def clear(self) -> None:
        session = self._require_session()
        for key in _ALL_KEYS:
            session.pop(key, None)
