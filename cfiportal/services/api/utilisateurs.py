from __future__ import annotations

import logging
from typing import Any

from cfiportal.domain.cfi import DroitsUtilisateur
from cfiportal.services.api.base import CachedApiService
from cfiportal.services.telemetry import record_cache


logger = logging.getLogger(__name__)


class UtilisateurApiService(CachedApiService[DroitsUtilisateur]):
    endpoint = "/Utilisateurs/getDroitsUtilisateur"
    cache_prefix = "cfi.utilisateur.droits"
    record_model = DroitsUtilisateur

    async def get_droits_utilisateur(self, tenant_id: int, user_id: int) -> dict[str, Any]:
        # Rights are a single object, not a list; the user is identified by the token.
        key = self.cache_key(tenant_id, user_id)
        cached = await self._cache.get(key)
        if cached is not None:
            record_cache("hit")
            logger.debug("cfi_cache_hit key=%s", key)
            return dict(cached)

        record_cache("miss")
        token = self._tokens.get_token()
        if token is None:
            logger.error("cfi_token_missing endpoint=%s key=%s", self.endpoint, key)
            return {}
        payload = await self._client.post(self.endpoint, {}, token=token)
        if isinstance(payload, dict) and isinstance(payload.get("data"), dict):
            payload = payload["data"]
        droits = DroitsUtilisateur.model_validate(payload if isinstance(payload, dict) else {})
        rights = droits.model_dump(mode="json")
        await self._cache.set(key, rights, self._ttl_s)
        logger.info(
            "cfi_rights_loaded user_id=%s administrateur=%s count=%s",
            user_id,
            droits.administrateur,
            len(rights),
        )
        return rights
