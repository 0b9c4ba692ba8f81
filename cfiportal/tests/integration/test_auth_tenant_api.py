from __future__ import annotations

import pytest
from httpx import AsyncClient

from cfiportal.tests.utils.cfi import FakeCfiApi, LOGIN_TOKEN, login


@pytest.mark.asyncio
async def test_login_issues_session_cookie_and_session_status(client: AsyncClient) -> None:
    body = await login(client)

    assert body["success"] is True
    assert body["user"]["id"] == 42
    assert body["current_tenant_id"] == 10
    assert "cfi_session" in client.cookies

    status = (await client.get("/auth/session")).json()
    assert status["authenticated"] is True
    assert status["current_tenant_id"] == 10
    assert status["should_refresh"] is False
    assert status["divisions_stale"] is False
    # The CFI token stays server-side.
    assert "jeton" not in str(status).lower()


@pytest.mark.asyncio
async def test_logout_clears_authentication(client: AsyncClient) -> None:
    await login(client)

    assert (await client.post("/auth/logout")).json() == {"success": True}
    assert (await client.get("/auth/session")).json()["authenticated"] is False
    assert (await client.get("/api/tenant/divisions")).status_code == 401


@pytest.mark.asyncio
async def test_malformed_login_token_is_a_bad_request(client: AsyncClient) -> None:
    response = await client.post("/auth/login", json={"mode": "token", "jetonUtilisateur": "nope"})

    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_CREDENTIALS"
    assert response.json()["success"] is False


@pytest.mark.asyncio
async def test_login_survives_division_service_outage(client: AsyncClient, fake_cfi: FakeCfiApi) -> None:
    fake_cfi.set("/Division/getDivisions", 503, {"message": "maintenance"})

    body = await login(client, LOGIN_TOKEN)

    assert body["current_tenant_id"] == 10
    # Nothing was mirrored, so the membership is reported as stale.
    assert (await client.get("/auth/session")).json()["divisions_stale"] is True


@pytest.mark.asyncio
async def test_protected_routes_require_login(client: AsyncClient) -> None:
    response = await client.get("/api/tenant/divisions")

    assert response.status_code == 401
    assert response.json()["code"] == "AUTH_REQUIRED"


@pytest.mark.asyncio
async def test_divisions_list_flags_current_division(client: AsyncClient) -> None:
    await login(client)

    body = (await client.get("/api/tenant/divisions")).json()

    assert body["success"] is True
    assert body["current_tenant_id"] == 10
    assert {item["id"]: item["current"] for item in body["divisions"]} == {10: True, 20: False}


@pytest.mark.asyncio
async def test_switch_to_accessible_division(client: AsyncClient) -> None:
    await login(client)

    response = await client.post("/api/tenant/switch", json={"idDivision": 20})

    assert response.status_code == 200
    assert response.json()["new_tenant_id"] == 20
    assert (await client.get("/auth/session")).json()["current_tenant_id"] == 20


@pytest.mark.asyncio
async def test_switch_to_foreign_division_is_forbidden(client: AsyncClient) -> None:
    await login(client)

    response = await client.post("/api/tenant/switch", json={"idDivision": 30})

    assert response.status_code == 403
    assert response.json()["code"] == "TENANT_ACCESS_DENIED"
    assert (await client.get("/auth/session")).json()["current_tenant_id"] == 10


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [{}, {"idDivision": "20"}, {"idDivision": True}, {"idDivision": None}])
async def test_switch_requires_integer_division(client: AsyncClient, payload: dict) -> None:
    await login(client)

    response = await client.post("/api/tenant/switch", json=payload)

    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_DIVISION"


@pytest.mark.asyncio
async def test_sync_picks_up_new_membership(client: AsyncClient, fake_cfi: FakeCfiApi) -> None:
    await login(client)
    fake_cfi.set("/Division/getDivisions", 200, [{"id": 10, "nom": "Paris Centre"}, {"id": 30, "nom": "Nantes"}])

    body = (await client.post("/api/tenant/sync")).json()

    assert sorted(item["id"] for item in body["divisions"]) == [10, 30]
    assert (await client.post("/api/tenant/switch", json={"idDivision": 30})).status_code == 200
