from __future__ import annotations

from datetime import date

import httpx
import pytest

from cfiportal.services.api.base import build_cache_key, key_part
from cfiportal.services.api.factory import build_api_services
from cfiportal.services.cache import MemoryCache
from cfiportal.services.cfi.client import RemoteApiClient
from cfiportal.services.cfi.token_context import AsyncTokenContext
from cfiportal.tests.utils.cfi import FakeCfiApi, stock_payload


def _services(fake: FakeCfiApi, cache: MemoryCache, token: str | None = "tok"):
    tokens = AsyncTokenContext()
    tokens.set_token(token)
    client = RemoteApiClient(base_url="http://cfi.test/api", transport=httpx.MockTransport(fake.handler))
    return build_api_services(tokens, client=client, cache=cache)


def test_cache_key_parts_are_normalized() -> None:
    assert key_part(None) == "all"
    assert key_part(True) == "true"
    assert key_part(date(2024, 3, 1)) == "=2024-03-01"
    assert key_part("a b/c:d") == "=a%20b%2Fc%3Ad"
    assert build_cache_key("cfi.stocks", 10, None, True) == "cfi.stocks:10:all:true"


def test_distinct_filter_sets_never_share_a_key() -> None:
    keys = {
        build_cache_key("cfi.stocks", 10, "AB:12", None),
        build_cache_key("cfi.stocks", 10, "AB-12", None),
        build_cache_key("cfi.stocks", 10, "all", None),
        build_cache_key("cfi.stocks", 10, None, None),
        build_cache_key("cfi.stocks", 10, "a:=b", None),
        build_cache_key("cfi.stocks", 10, "a", "b"),
        build_cache_key("cfi.stocks", 10, "a.b", "c"),
        build_cache_key("cfi.stocks", 10, "a", "b.c"),
    }

    assert len(keys) == 8


@pytest.mark.asyncio
async def test_lookalike_references_each_hit_the_remote_api() -> None:
    fake = FakeCfiApi()
    services = _services(fake, MemoryCache())

    await services.stocks.get_stocks(10, reference="AB:12")
    await services.stocks.get_stocks(10, reference="AB-12")
    await services.stocks.get_stocks(10, reference="all")
    await services.stocks.get_stocks(10)

    assert fake.calls("/Stocks/getStocks") == [
        {"idDivision": 10, "reference": "AB:12"},
        {"idDivision": 10, "reference": "AB-12"},
        {"idDivision": 10, "reference": "all"},
        {"idDivision": 10},
    ]


@pytest.mark.asyncio
async def test_expired_entry_triggers_exactly_one_refetch() -> None:
    now = [1000.0]
    fake = FakeCfiApi()
    services = _services(fake, MemoryCache(time_source=lambda: now[0]))

    await services.stocks.get_stocks(10)
    now[0] += 299
    await services.stocks.get_stocks(10)
    assert len(fake.calls("/Stocks/getStocks")) == 1

    now[0] += 1
    await services.stocks.get_stocks(10)
    await services.stocks.get_stocks(10)
    assert len(fake.calls("/Stocks/getStocks")) == 2


@pytest.mark.asyncio
async def test_second_read_is_served_from_cache() -> None:
    fake = FakeCfiApi()
    cache = MemoryCache()
    services = _services(fake, cache)

    first = await services.stocks.get_stocks(10)
    second = await services.stocks.get_stocks(10)

    assert [stock.id for stock in first] == [1, 2, 3]
    assert [stock.id for stock in second] == [1, 2, 3]
    assert len(fake.calls("/Stocks/getStocks")) == 1
    assert fake.headers_for("/Stocks/getStocks")[0]["Jeton"] == "tok"


@pytest.mark.asyncio
async def test_cache_entries_are_scoped_by_division() -> None:
    fake = FakeCfiApi()
    cache = MemoryCache()
    services = _services(fake, cache)

    await services.stocks.get_stocks(10)
    await services.stocks.get_stocks(20)

    assert len(fake.calls("/Stocks/getStocks")) == 2
    assert sorted(cache.keys()) == ["cfi.stocks:10:all:all", "cfi.stocks:20:all:all"]
    assert [call["idDivision"] for call in fake.calls("/Stocks/getStocks")] == [10, 20]


@pytest.mark.asyncio
async def test_missing_token_returns_empty_without_caching() -> None:
    fake = FakeCfiApi()
    cache = MemoryCache()
    services = _services(fake, cache, token=None)

    assert await services.stocks.get_stocks(10) == []
    assert await services.utilisateurs.get_droits_utilisateur(10, 42) == {}
    assert fake.requests == []
    assert cache.keys() == []


@pytest.mark.asyncio
async def test_alert_filter_applies_after_mapping() -> None:
    fake = FakeCfiApi()
    services = _services(fake, MemoryCache())

    alerts = await services.stocks.get_stocks(10, en_alerte=True)
    healthy = await services.stocks.get_stocks(10, en_alerte=False)

    assert [stock.id for stock in alerts] == [1]
    # Unknown quantity never counts as an alert.
    assert [stock.id for stock in healthy] == [2, 3]


@pytest.mark.asyncio
async def test_invalid_elements_are_skipped() -> None:
    fake = FakeCfiApi()
    fake.set(
        "/Stocks/getStocks",
        200,
        [stock_payload(1, qte=1, stock_minimum=2), {"nom": "no id"}, "garbage"],
    )
    services = _services(fake, MemoryCache())

    stocks = await services.stocks.get_stocks(10)

    assert [stock.id for stock in stocks] == [1]


@pytest.mark.asyncio
async def test_facture_detail_failure_returns_none() -> None:
    fake = FakeCfiApi()
    fake.set("/Facturations/getFacture", 500, {"message": "boom"})
    services = _services(fake, MemoryCache())

    assert await services.facturations.get_facture(501) is None
    assert fake.calls("/Facturations/getFacture") == [{"idFacture": 501}]


@pytest.mark.asyncio
async def test_etat_lookup_by_id_and_invalidation() -> None:
    fake = FakeCfiApi()
    cache = MemoryCache()
    services = _services(fake, cache)

    etat = await services.etats.get_etat_operation_by_id(10, 2)
    assert etat is not None and etat.libelle == "Terminee"
    assert await services.etats.get_etat_operation_by_id(10, 99) is None
    assert len(fake.calls("/Operations/getEtatsOperations")) == 1

    await services.etats.invalidate_cache(10)
    await services.etats.get_etats_operations(10)
    assert len(fake.calls("/Operations/getEtatsOperations")) == 2


@pytest.mark.asyncio
async def test_rights_are_cached_per_user() -> None:
    fake = FakeCfiApi()
    services = _services(fake, MemoryCache())

    rights = await services.utilisateurs.get_droits_utilisateur(10, 42)
    await services.utilisateurs.get_droits_utilisateur(10, 42)

    assert rights["connexion"] is True
    assert rights["stocks_visu"] is True
    assert rights["telechargement_hd"] == 2
    assert len(fake.calls("/Utilisateurs/getDroitsUtilisateur")) == 1
