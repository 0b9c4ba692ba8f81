from __future__ import annotations

import logging
from typing import Any

from fastapi import HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from cfiportal.core.errors import (
    AuthenticationRequiredError,
    ChatContextError,
    GenerationError,
    InvalidCredentialsError,
    NoSessionError,
    NotFoundError,
    PortalError,
    RemoteAccessDeniedError,
    RemoteClientError,
    RemoteServerError,
    RemoteTokenExpiredError,
    RemoteTransportError,
    TenantAccessDeniedError,
    TenantNotSelectedError,
)
from cfiportal.services.cfi.session import SessionTokenStore


logger = logging.getLogger(__name__)

_DEFAULT_ERROR_CODES: dict[int, str] = {
    400: "BAD_REQUEST",
    401: "AUTH_REQUIRED",
    403: "ACCESS_DENIED",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    422: "VALIDATION_ERROR",
    500: "INTERNAL_ERROR",
    502: "CFI_UNAVAILABLE",
    503: "SERVICE_UNAVAILABLE",
}


def error_body(code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    body: dict[str, Any] = {"success": False, "error": message, "code": code}
    if details:
        body["details"] = details
    return body


def map_portal_error(exc: PortalError) -> tuple[int, str, str]:
    # Order matters: subclasses are matched before their parents.
    if isinstance(exc, RemoteTokenExpiredError):
        return 401, "CFI_TOKEN_EXPIRED", "Your CFI session has expired, please log in again."
    if isinstance(exc, AuthenticationRequiredError):
        return 401, "AUTH_REQUIRED", "Please log in again."
    if isinstance(exc, RemoteAccessDeniedError):
        return 403, "CFI_ACCESS_DENIED", "You do not have access to this data."
    if isinstance(exc, TenantAccessDeniedError):
        return 403, "TENANT_ACCESS_DENIED", "You do not have access to this division."
    if isinstance(exc, TenantNotSelectedError):
        return 400, "TENANT_NOT_SELECTED", "No division is selected."
    if isinstance(exc, InvalidCredentialsError):
        return 400, "INVALID_CREDENTIALS", str(exc)
    if isinstance(exc, ChatContextError):
        return 400, "INVALID_CHAT_CONTEXT", str(exc)
    if isinstance(exc, NotFoundError):
        return 404, "NOT_FOUND", str(exc)
    if isinstance(exc, RemoteClientError):
        return 400, "CFI_BAD_REQUEST", "The CFI service rejected the request."
    if isinstance(exc, RemoteServerError):
        return 502, "CFI_UNAVAILABLE", "The CFI service is unavailable, please try again later."
    if isinstance(exc, RemoteTransportError):
        return 503, "CFI_UNREACHABLE", "The CFI service is unreachable, please try again later."
    if isinstance(exc, GenerationError):
        return 503, "GENERATION_UNAVAILABLE", "Generation is unavailable, please try again later."
    if isinstance(exc, NoSessionError):
        return 401, "AUTH_REQUIRED", "Please log in again."
    return 500, "INTERNAL_ERROR", "Internal server error"


async def portal_exception_handler(request: Request, exc: PortalError) -> JSONResponse:
    status_code, code, message = map_portal_error(exc)
    if isinstance(exc, RemoteTokenExpiredError):
        # The remote side is authoritative on expiry; drop the stale local token.
        session = getattr(request.state, "session", None)
        if session is not None:
            SessionTokenStore(session).clear()
    correlation_id = getattr(exc, "correlation_id", None)
    log = logger.error if status_code >= 500 else logger.info
    log(
        "request_failed path=%s code=%s status=%s correlation_id=%s error=%s",
        request.url.path,
        code,
        status_code,
        correlation_id,
        exc,
    )
    details = {"correlation_id": correlation_id} if correlation_id else None
    return JSONResponse(content=error_body(code, message, details), status_code=status_code)


def _split_detail(detail: Any, status_code: int) -> tuple[str, str]:
    # Extract code/message from HTTPException detail payloads.
    if isinstance(detail, dict):
        code = str(detail.get("code") or _DEFAULT_ERROR_CODES.get(status_code, "UNKNOWN_ERROR"))
        message = str(detail.get("message") or "Request failed")
        return code, message
    if isinstance(detail, str):
        return _DEFAULT_ERROR_CODES.get(status_code, "UNKNOWN_ERROR"), detail
    return _DEFAULT_ERROR_CODES.get(status_code, "UNKNOWN_ERROR"), "Request failed"


async def http_exception_handler(request: Request, exc: HTTPException | StarletteHTTPException) -> JSONResponse:
    code, message = _split_detail(exc.detail, exc.status_code)
    return JSONResponse(content=error_body(code, message), status_code=exc.status_code, headers=exc.headers)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        content=error_body("VALIDATION_ERROR", "Validation error", {"errors": jsonable_encoder(exc.errors())}),
        status_code=422,
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Avoid leaking stack traces; the full error goes to the logs.
    logger.exception("request_unhandled_error path=%s", request.url.path, exc_info=exc)
    return JSONResponse(content=error_body("INTERNAL_ERROR", "Internal server error"), status_code=500)
