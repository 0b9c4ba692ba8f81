from __future__ import annotations

from cfiportal.core.errors import NoSessionError
from cfiportal.services.cfi.session import SessionTokenStore


class AsyncTokenContext:
    # One instance per request or per worker message; never shared across jobs.

    def __init__(self, store: SessionTokenStore | None = None) -> None:
        self._store = store
        self._token: str | None = None

    def set_token(self, token: str | None) -> None:
        self._token = token or None

    def clear_token(self) -> None:
        self._token = None

    def get_token(self) -> str | None:
        if self._token is not None:
            return self._token
        if self._store is None:
            return None
        try:
            return self._store.get_token()
        except NoSessionError:
            # Worker executions have no HTTP session.
            return None

    def has_token(self) -> bool:
        return self.get_token() is not None
