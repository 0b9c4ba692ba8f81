from __future__ import annotations

from dataclasses import dataclass

from cfiportal.core.config import get_settings
from cfiportal.services.api.divisions import DivisionApiService
from cfiportal.services.api.etats import EtatOperationApiService
from cfiportal.services.api.facturations import FacturationApiService
from cfiportal.services.api.operations import OperationApiService
from cfiportal.services.api.stocks import StockApiService
from cfiportal.services.api.utilisateurs import UtilisateurApiService
from cfiportal.services.cache import CacheBackend, get_cache
from cfiportal.services.cfi.client import RemoteApiClient, get_remote_client
from cfiportal.services.cfi.token_context import AsyncTokenContext


@dataclass(frozen=True)
class ApiServices:
    stocks: StockApiService
    facturations: FacturationApiService
    operations: OperationApiService
    etats: EtatOperationApiService
    utilisateurs: UtilisateurApiService
    divisions: DivisionApiService


def build_api_services(
    tokens: AsyncTokenContext,
    *,
    client: RemoteApiClient | None = None,
    cache: CacheBackend | None = None,
) -> ApiServices:
    # Services are cheap wrappers; build them per request or per job around its token context.
    settings = get_settings()
    client = client or get_remote_client()
    cache = cache or get_cache()
    return ApiServices(
        stocks=StockApiService(client, cache, tokens, ttl_s=settings.cache_ttl_volatile_s),
        facturations=FacturationApiService(client, cache, tokens, ttl_s=settings.cache_ttl_volatile_s),
        operations=OperationApiService(client, cache, tokens, ttl_s=settings.cache_ttl_volatile_s),
        etats=EtatOperationApiService(client, cache, tokens, ttl_s=settings.cache_ttl_reference_s),
        utilisateurs=UtilisateurApiService(client, cache, tokens, ttl_s=settings.cache_ttl_rights_s),
        divisions=DivisionApiService(client, tokens),
    )
