from __future__ import annotations

from dataclasses import dataclass
from typing import AsyncGenerator

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from cfiportal.core.errors import AuthenticationRequiredError, NoSessionError, TenantNotSelectedError
from cfiportal.persistence.db import get_session
from cfiportal.services.api.factory import ApiServices, build_api_services
from cfiportal.services.cfi.division_sync import DivisionSyncService
from cfiportal.services.cfi.session import SessionTokenStore
from cfiportal.services.cfi.tenant import TenantContext
from cfiportal.services.cfi.token_context import AsyncTokenContext
from cfiportal.services.sessions import HttpSession


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    # One AsyncSession per request; context manager ensures close on success/error.
    async with get_session() as session:
        yield session


def get_http_session(request: Request) -> HttpSession:
    session = getattr(request.state, "session", None)
    if session is None:
        raise NoSessionError("session middleware is not installed")
    return session


def get_token_store(session: HttpSession = Depends(get_http_session)) -> SessionTokenStore:
    return SessionTokenStore(session)


def get_token_context(store: SessionTokenStore = Depends(get_token_store)) -> AsyncTokenContext:
    # Fresh per request so an explicit override can never leak to another request.
    return AsyncTokenContext(store)


def get_tenant_context(store: SessionTokenStore = Depends(get_token_store)) -> TenantContext:
    return TenantContext(store)


def get_api_services(tokens: AsyncTokenContext = Depends(get_token_context)) -> ApiServices:
    return build_api_services(tokens)


def get_division_sync(services: ApiServices = Depends(get_api_services)) -> DivisionSyncService:
    return DivisionSyncService(services.divisions)


@dataclass(frozen=True)
class CurrentUser:
    # Authenticated CFI user with the division selected in the session.
    user_id: int
    tenant_id: int
    token: str


def require_user(store: SessionTokenStore = Depends(get_token_store)) -> CurrentUser:
    token = store.get_token()
    if token is None:
        raise AuthenticationRequiredError("CFI session missing or expired")
    user_data = store.get_user_data()
    if not user_data or user_data.get("id") is None:
        raise AuthenticationRequiredError("CFI session has no user")
    tenant_id = store.get_current_tenant()
    if tenant_id is None:
        raise TenantNotSelectedError("no division selected for this session")
    return CurrentUser(user_id=int(user_data["id"]), tenant_id=tenant_id, token=token)
