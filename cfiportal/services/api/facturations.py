from __future__ import annotations

import logging
from datetime import date

from pydantic import ValidationError

from cfiportal.core.errors import RemoteApiError
from cfiportal.domain.cfi import Facture
from cfiportal.services.api.base import CachedApiService


logger = logging.getLogger(__name__)


class FacturationApiService(CachedApiService[Facture]):
    endpoint = "/Facturations/getFacturations"
    detail_endpoint = "/Facturations/getFacture"
    cache_prefix = "cfi.facturations"
    record_model = Facture

    async def get_facturations(
        self,
        tenant_id: int,
        *,
        debut: date | str | None = None,
        fin: date | str | None = None,
    ) -> list[Facture]:
        # The division is implied by the token; it still scopes the cache key.
        body: dict[str, object] = {}
        if debut is not None:
            body["debut"] = debut.isoformat() if isinstance(debut, date) else debut
        if fin is not None:
            body["fin"] = fin.isoformat() if isinstance(fin, date) else fin
        return await self.fetch(self.cache_key(tenant_id, debut, fin), body)

    async def get_facture(self, facture_id: int) -> Facture | None:
        token = self._tokens.get_token()
        if token is None:
            logger.error("cfi_token_missing endpoint=%s", self.detail_endpoint)
            return None
        try:
            payload = await self._client.post(self.detail_endpoint, {"idFacture": facture_id}, token=token)
        except RemoteApiError as exc:
            logger.warning(
                "cfi_facture_fetch_failed id=%s kind=%s correlation_id=%s",
                facture_id,
                exc.kind.value,
                exc.correlation_id,
            )
            return None
        if isinstance(payload, dict) and isinstance(payload.get("data"), dict):
            payload = payload["data"]
        if not isinstance(payload, dict):
            return None
        try:
            return Facture.model_validate(payload)
        except ValidationError:
            logger.warning("cfi_facture_unmappable id=%s", facture_id)
            return None
