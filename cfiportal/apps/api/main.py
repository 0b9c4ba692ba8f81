from __future__ import annotations

import time
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from cfiportal.apps.api.errors import (
    http_exception_handler,
    portal_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from cfiportal.apps.api.routes.auth import router as auth_router
from cfiportal.apps.api.routes.cfi_data import router as cfi_data_router
from cfiportal.apps.api.routes.chat import router as chat_router
from cfiportal.apps.api.routes.events import router as events_router
from cfiportal.apps.api.routes.health import router as health_router
from cfiportal.apps.api.routes.marketing import router as marketing_router
from cfiportal.apps.api.routes.tenant import router as tenant_router
from cfiportal.core.config import get_settings
from cfiportal.core.errors import PortalError
from cfiportal.core.logging import configure_logging
from cfiportal.services.sessions import load_session, persist_session
from cfiportal.services.telemetry import record_request


def create_app() -> FastAPI:
    configure_logging()
    settings = get_settings()
    app = FastAPI(title="CFI Portal API")

    @app.middleware("http")
    async def session_middleware(request: Request, call_next):  # type: ignore[override]
        # Server-side session keyed by an opaque cookie; the CFI token never reaches the browser.
        session = await load_session(request.cookies.get(settings.session_cookie_name))
        request.state.session = session
        response = await call_next(request)
        if await persist_session(session):
            response.set_cookie(
                settings.session_cookie_name,
                session.id,
                max_age=settings.session_ttl_s,
                httponly=True,
                samesite="lax",
                secure=settings.session_cookie_secure,
            )
        elif session.modified and not session and not session.is_new:
            response.delete_cookie(settings.session_cookie_name)
        return response

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        start = time.monotonic()
        response = await call_next(request)
        # Route templates keep label cardinality bounded.
        route = request.scope.get("route")
        record_request(
            method=request.method,
            route=getattr(route, "path", "unmatched"),
            status_code=response.status_code,
            latency_s=time.monotonic() - start,
        )
        response.headers.setdefault("X-Request-Id", request_id)
        return response

    @app.exception_handler(PortalError)
    async def _portal_exception_handler(request: Request, exc: PortalError):
        return await portal_exception_handler(request, exc)

    @app.exception_handler(StarletteHTTPException)
    async def _starlette_http_exception_handler(request: Request, exc: StarletteHTTPException):
        return await http_exception_handler(request, exc)

    @app.exception_handler(HTTPException)
    async def _http_exception_handler(request: Request, exc: HTTPException):
        return await http_exception_handler(request, exc)

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(request: Request, exc: RequestValidationError):
        return await validation_exception_handler(request, exc)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        return await unhandled_exception_handler(request, exc)

    app.include_router(health_router)
    app.include_router(auth_router)
    app.include_router(tenant_router)
    app.include_router(cfi_data_router)
    app.include_router(marketing_router)
    app.include_router(chat_router)
    app.include_router(events_router)
    return app


app = create_app()
