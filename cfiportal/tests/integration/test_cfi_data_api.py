from __future__ import annotations

import pytest
from httpx import AsyncClient

from cfiportal.tests.utils.cfi import SESSION_TOKEN, FakeCfiApi, login


@pytest.mark.asyncio
async def test_stocks_are_read_through_cache_with_session_token(client: AsyncClient, fake_cfi: FakeCfiApi) -> None:
    await login(client)

    first = await client.get("/api/stocks")
    second = await client.get("/api/stocks")

    assert first.status_code == 200
    assert first.json()["count"] == 3
    assert second.json() == first.json()
    assert len(fake_cfi.calls("/Stocks/getStocks")) == 1
    assert fake_cfi.headers_for("/Stocks/getStocks")[0]["Jeton"] == SESSION_TOKEN


@pytest.mark.asyncio
async def test_stock_alert_filter(client: AsyncClient) -> None:
    await login(client)

    body = (await client.get("/api/stocks", params={"en_alerte": "true"})).json()

    assert [item["id"] for item in body["data"]] == [1]


@pytest.mark.asyncio
async def test_remote_token_rejection_logs_the_user_out(client: AsyncClient, fake_cfi: FakeCfiApi) -> None:
    await login(client)
    fake_cfi.set("/Stocks/getStocks", 401, {"message": "expired"})

    response = await client.get("/api/stocks")

    assert response.status_code == 401
    assert response.json()["code"] == "CFI_TOKEN_EXPIRED"
    assert response.json()["details"]["correlation_id"]
    assert (await client.get("/auth/session")).json()["authenticated"] is False


@pytest.mark.asyncio
async def test_remote_outage_maps_to_bad_gateway(client: AsyncClient, fake_cfi: FakeCfiApi) -> None:
    await login(client)
    fake_cfi.set("/Campagnes/getLignesCampagnes", 500, {"message": "boom"})

    response = await client.get("/api/operations")

    assert response.status_code == 502
    assert response.json()["code"] == "CFI_UNAVAILABLE"
    # Server failures keep the session.
    assert (await client.get("/auth/session")).json()["authenticated"] is True


@pytest.mark.asyncio
async def test_invoices_operations_states_and_rights(client: AsyncClient, fake_cfi: FakeCfiApi) -> None:
    await login(client)

    factures = (await client.get("/api/facturations", params={"debut": "2024-01-01", "fin": "2024-12-31"})).json()
    operations = (await client.get("/api/operations", params={"type": "courrier"})).json()
    etats = (await client.get("/api/etats-operations")).json()
    etat = (await client.get("/api/etats-operations/2")).json()
    droits = (await client.get("/api/droits")).json()

    assert factures["data"][0]["id"] == 501
    assert fake_cfi.calls("/Facturations/getFacturations") == [{"debut": "2024-01-01", "fin": "2024-12-31"}]
    assert operations["data"][0]["nom"] == "Rentree"
    assert fake_cfi.calls("/Campagnes/getLignesCampagnes") == [{"idDivision": 10, "type": "courrier"}]
    assert [item["id"] for item in etats["data"]] == [1, 2]
    assert etat["data"]["libelle"] == "Terminee"
    assert droits["data"]["connexion"] is True


@pytest.mark.asyncio
async def test_missing_invoice_is_not_found(client: AsyncClient, fake_cfi: FakeCfiApi) -> None:
    await login(client)
    fake_cfi.set("/Facturations/getFacture", 404, {"message": "unknown"})

    response = await client.get("/api/facturations/999")

    assert response.status_code == 404
    assert response.json()["code"] == "NOT_FOUND"


@pytest.mark.asyncio
async def test_cache_is_not_shared_across_divisions(client: AsyncClient, fake_cfi: FakeCfiApi) -> None:
    await login(client)
    await client.get("/api/stocks")

    await client.post("/api/tenant/switch", json={"idDivision": 20})
    await client.get("/api/stocks")

    assert [call["idDivision"] for call in fake_cfi.calls("/Stocks/getStocks")] == [10, 20]
