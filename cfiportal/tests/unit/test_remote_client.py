from __future__ import annotations

import httpx
import pytest

from cfiportal.core.errors import (
    ErrorKind,
    RemoteDecodingError,
    RemoteServerError,
    RemoteTokenExpiredError,
    RemoteTransportError,
)
from cfiportal.services.cfi.client import RemoteApiClient, unwrap_list


def _client(handler) -> RemoteApiClient:
    return RemoteApiClient(base_url="http://cfi.test/api", transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_rejected_token_expired_and_server_error_are_distinguishable() -> None:
    def unauthorized(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"message": "expired"})

    def broken(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="boom")

    def timeout(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    with pytest.raises(RemoteTokenExpiredError) as expired:
        await _client(unauthorized).post("/Stocks/getStocks", {}, token="tok")
    with pytest.raises(RemoteServerError) as server:
        await _client(broken).post("/Stocks/getStocks", {}, token="tok")
    with pytest.raises(RemoteTransportError) as transport:
        await _client(timeout).post("/Stocks/getStocks", {}, token="tok")

    assert expired.value.kind is ErrorKind.AUTH_REQUIRED
    assert expired.value.status_code == 401
    assert server.value.kind is ErrorKind.SERVER
    assert server.value.status_code == 500
    assert transport.value.kind is ErrorKind.TRANSPORT
    assert expired.value.correlation_id


@pytest.mark.asyncio
async def test_token_header_only_sent_when_authenticated() -> None:
    seen: list[httpx.Headers] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.headers)
        return httpx.Response(200, json=[])

    client = _client(handler)
    await client.post("/Utilisateurs/getUtilisateurGorillias", {"jetonUtilisateur": "x"})
    await client.post("/Stocks/getStocks", {}, token="tok")

    assert "Jeton" not in seen[0]
    assert seen[1]["Jeton"] == "tok"
    assert seen[0]["X-Correlation-ID"] != seen[1]["X-Correlation-ID"]


@pytest.mark.asyncio
async def test_non_json_body_is_a_decoding_error_and_empty_body_is_none() -> None:
    def html(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>maintenance</html>")

    def empty(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"")

    with pytest.raises(RemoteDecodingError) as exc_info:
        await _client(html).post("/Stocks/getStocks", {}, token="tok")
    assert exc_info.value.kind is ErrorKind.SERVER
    assert await _client(empty).post("/Stocks/getStocks", {}, token="tok") is None


@pytest.mark.asyncio
async def test_send_wraps_failures_in_err() -> None:
    def forbidden(request: httpx.Request) -> httpx.Response:
        return httpx.Response(403, json={})

    result = await _client(forbidden).send("/Stocks/getStocks", {}, token="tok")

    assert result.ok is False
    assert result.kind is ErrorKind.ACCESS_DENIED
    assert result.status_code == 403


def test_unwrap_list_accepts_bare_and_wrapped_arrays() -> None:
    assert unwrap_list([1, 2]) == [1, 2]
    assert unwrap_list({"data": [3]}) == [3]
    assert unwrap_list({"data": {"id": 1}}) == []
    assert unwrap_list(None) == []
