from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    # Stable classification shared by exceptions, results and HTTP mapping.
    AUTH_REQUIRED = "auth_required"
    ACCESS_DENIED = "access_denied"
    CLIENT = "client"
    SERVER = "server"
    TRANSPORT = "transport"


class PortalError(Exception):
    """Base error for cfiportal."""


class NoSessionError(PortalError, RuntimeError):
    """No HTTP session is bound to the current execution."""


class AuthenticationRequiredError(PortalError):
    """Missing or expired CFI token."""


class TenantNotSelectedError(PortalError):
    """No current division has been selected for this session."""


class TenantAccessDeniedError(PortalError):
    """User is not allowed to act on the requested division."""

    def __init__(self, user_id: int, tenant_id: int) -> None:
        super().__init__(f"user {user_id} has no access to division {tenant_id}")
        self.user_id = user_id
        self.tenant_id = tenant_id


class RemoteApiError(PortalError):
    """CFI API call failure."""

    kind: ErrorKind = ErrorKind.SERVER

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        correlation_id: str | None = None,
        endpoint: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.correlation_id = correlation_id
        self.endpoint = endpoint


class RemoteClientError(RemoteApiError):
    """CFI API rejected the request (4xx)."""

    kind = ErrorKind.CLIENT


class RemoteTokenExpiredError(RemoteClientError):
    """CFI API rejected the token (401)."""

    kind = ErrorKind.AUTH_REQUIRED


class RemoteAccessDeniedError(RemoteClientError):
    """CFI API denied access to the resource (403)."""

    kind = ErrorKind.ACCESS_DENIED


class RemoteServerError(RemoteApiError):
    """CFI API failed server-side (5xx)."""

    kind = ErrorKind.SERVER


class RemoteDecodingError(RemoteServerError):
    """CFI API answered 2xx with a body that is not JSON."""


class RemoteTransportError(RemoteApiError):
    """Network, DNS or timeout failure before a response was received."""

    kind = ErrorKind.TRANSPORT


class InvalidCredentialsError(PortalError):
    """Login payload is malformed (e.g. password is not a SHA-512 hex digest)."""


class NotFoundError(PortalError):
    """Requested local entity does not exist or is not visible."""


class GenerationError(PortalError):
    """Asynchronous generation job failure."""


class ChatContextError(GenerationError):
    """Unknown chat context requested."""

    def __init__(self, context: str) -> None:
        super().__init__(f"unknown chat context: {context}")
        self.context = context


class LLMProviderError(GenerationError):
    """LLM provider call failed or is misconfigured."""
