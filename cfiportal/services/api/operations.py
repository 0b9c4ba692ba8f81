from __future__ import annotations

from datetime import date

from cfiportal.domain.cfi import LigneOperation
from cfiportal.services.api.base import CachedApiService


class OperationApiService(CachedApiService[LigneOperation]):
    endpoint = "/Campagnes/getLignesCampagnes"
    cache_prefix = "cfi.operations"
    record_model = LigneOperation

    async def get_lignes_operations(
        self,
        tenant_id: int,
        *,
        type: str | None = None,
        date_debut: date | str | None = None,
        date_fin: date | str | None = None,
        statut: str | None = None,
    ) -> list[LigneOperation]:
        body: dict[str, object] = {"idDivision": tenant_id}
        for field, value in (
            ("type", type),
            ("dateDebut", date_debut),
            ("dateFin", date_fin),
            ("statut", statut),
        ):
            if value is None or value == "":
                continue
            body[field] = value.isoformat() if isinstance(value, date) else value
        key = self.cache_key(tenant_id, type, date_debut, date_fin, statut)
        return await self.fetch(key, body)
