from __future__ import annotations

from cfiportal.domain.cfi import EtatOperation
from cfiportal.services.api.base import CachedApiService


class EtatOperationApiService(CachedApiService[EtatOperation]):
    endpoint = "/Operations/getEtatsOperations"
    cache_prefix = "cfi.etats_operations"
    record_model = EtatOperation

    async def get_etats_operations(self, tenant_id: int) -> list[EtatOperation]:
        return await self.fetch(self.cache_key(tenant_id), {})

    async def get_etat_operation_by_id(self, tenant_id: int, etat_id: int) -> EtatOperation | None:
        for etat in await self.get_etats_operations(tenant_id):
            if etat.id == etat_id:
                return etat
        return None

    async def invalidate_cache(self, tenant_id: int) -> None:
        await self.invalidate(tenant_id)
