from __future__ import annotations

import logging
import time
from typing import Any
from uuid import uuid4

import httpx

from cfiportal.core.config import get_settings
from cfiportal.core.errors import (
    RemoteAccessDeniedError,
    RemoteApiError,
    RemoteClientError,
    RemoteDecodingError,
    RemoteServerError,
    RemoteTokenExpiredError,
    RemoteTransportError,
)
from cfiportal.core.results import Err, Ok, Result
from cfiportal.services.telemetry import record_cfi_call


logger = logging.getLogger(__name__)


def _metric_labels(endpoint: str) -> tuple[str, str]:
    # "/Stocks/getStocks" -> ("Stocks", "getStocks")
    parts = [part for part in endpoint.split("/") if part]
    if len(parts) >= 2:
        return parts[-2], parts[-1]
    return "cfi", parts[-1] if parts else "unknown"


def _error_for_status(
    status_code: int, endpoint: str, correlation_id: str, body_preview: str
) -> RemoteApiError:
    kwargs = {"status_code": status_code, "correlation_id": correlation_id, "endpoint": endpoint}
    if status_code == 401:
        return RemoteTokenExpiredError("CFI token rejected", **kwargs)
    if status_code == 403:
        return RemoteAccessDeniedError("CFI access denied", **kwargs)
    if 400 <= status_code < 500:
        return RemoteClientError(f"CFI request rejected ({status_code}): {body_preview}", **kwargs)
    return RemoteServerError(f"CFI server error ({status_code})", **kwargs)


class RemoteApiClient:
    """POST-only client for the CFI business API.

    Single attempt per call: retries are left to callers so that a failed
    mutation is never replayed blindly.
    """

    def __init__(
        self,
        *,
        base_url: str | None = None,
        timeout_s: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self._base_url = (base_url or settings.cfi_api_base_url).rstrip("/")
        self._timeout_s = settings.cfi_api_timeout_s if timeout_s is None else timeout_s
        self._transport = transport

    def _url(self, endpoint: str) -> str:
        return f"{self._base_url}/{endpoint.lstrip('/')}"

    async def post(self, endpoint: str, body: dict[str, Any] | None = None, *, token: str | None = None) -> Any:
        correlation_id = str(uuid4())
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "X-Correlation-ID": correlation_id,
        }
        # Anonymous calls (login) omit the token header entirely.
        if token:
            headers["Jeton"] = token
        service, method = _metric_labels(endpoint)
        logger.debug(
            "cfi_request endpoint=%s correlation_id=%s has_token=%s", endpoint, correlation_id, bool(token)
        )
        start = time.monotonic()
        try:
            async with httpx.AsyncClient(timeout=self._timeout_s, transport=self._transport) as client:
                response = await client.post(self._url(endpoint), json=body or {}, headers=headers)
        except httpx.TransportError as exc:
            latency_ms = (time.monotonic() - start) * 1000.0
            error_type = "timeout" if isinstance(exc, httpx.TimeoutException) else "transport"
            record_cfi_call(service=service, method=method, latency_ms=latency_ms, error_type=error_type)
            logger.error(
                "cfi_transport_error endpoint=%s correlation_id=%s error=%s",
                endpoint,
                correlation_id,
                type(exc).__name__,
            )
            raise RemoteTransportError(
                f"CFI unreachable: {type(exc).__name__}",
                correlation_id=correlation_id,
                endpoint=endpoint,
            ) from exc

        latency_ms = (time.monotonic() - start) * 1000.0
        logger.debug(
            "cfi_response endpoint=%s correlation_id=%s status=%s latency_ms=%.1f",
            endpoint,
            correlation_id,
            response.status_code,
            latency_ms,
        )
        if response.status_code >= 400:
            error = _error_for_status(response.status_code, endpoint, correlation_id, response.text[:200])
            record_cfi_call(service=service, method=method, latency_ms=latency_ms, error_type=error.kind.value)
            logger.warning(
                "cfi_error_status endpoint=%s correlation_id=%s status=%s kind=%s",
                endpoint,
                correlation_id,
                response.status_code,
                error.kind.value,
            )
            raise error

        record_cfi_call(service=service, method=method, latency_ms=latency_ms)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise RemoteDecodingError(
                "CFI returned a non-JSON body",
                status_code=response.status_code,
                correlation_id=correlation_id,
                endpoint=endpoint,
            ) from exc

    async def send(self, endpoint: str, body: dict[str, Any] | None = None, *, token: str | None = None) -> Result:
        try:
            return Ok(await self.post(endpoint, body, token=token))
        except RemoteApiError as exc:
            return Err.from_exception(exc)


def unwrap_list(payload: Any) -> list[Any]:
    # Endpoints answer either a bare array or {"data": [...]}.
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        data = payload.get("data")
        if isinstance(data, list):
            return data
    return []


_client: RemoteApiClient | None = None


def get_remote_client() -> RemoteApiClient:
    global _client
    if _client is None:
        _client = RemoteApiClient()
    return _client


def set_remote_client(client: RemoteApiClient | None) -> None:
    global _client
    _client = client
