from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Generic, TypeVar
from urllib.parse import quote

from pydantic import ValidationError

from cfiportal.domain.cfi import CfiRecord
from cfiportal.services.cache import CacheBackend
from cfiportal.services.cfi.client import RemoteApiClient, unwrap_list
from cfiportal.services.cfi.token_context import AsyncTokenContext
from cfiportal.services.telemetry import record_cache


logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT", bound=CfiRecord)

ALL = "all"


def key_part(value: Any) -> str:
    # Real values are always "="-prefixed and percent-encoded, so they can never
    # equal the "all" slot of a missing filter or contain the ":" separator.
    if value is None:
        return ALL
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (datetime, date)):
        value = value.isoformat()
    return "=" + quote(str(value), safe="")


def build_cache_key(prefix: str, tenant_id: int, *filters: Any) -> str:
    return ":".join([prefix, str(tenant_id), *(key_part(item) for item in filters)])


def map_records(model: type[RecordT], items: list[Any], *, endpoint: str) -> list[RecordT]:
    records: list[RecordT] = []
    for item in items:
        if not isinstance(item, dict):
            logger.warning("cfi_record_skipped endpoint=%s reason=not_an_object", endpoint)
            continue
        try:
            records.append(model.model_validate(item))
        except ValidationError as exc:
            # One bad element never fails the whole list.
            logger.warning(
                "cfi_record_skipped endpoint=%s id=%s errors=%s",
                endpoint,
                item.get("id"),
                exc.error_count(),
            )
    return records


class CachedApiService(Generic[RecordT]):
    """Read-through cache in front of one CFI list endpoint.

    Subclasses set ``endpoint``, ``cache_prefix`` and ``record_model``; the
    cache key always embeds the tenant so divisions never share entries.
    """

    endpoint: str = ""
    cache_prefix: str = ""
    record_model: type[RecordT]

    def __init__(
        self,
        client: RemoteApiClient,
        cache: CacheBackend,
        tokens: AsyncTokenContext,
        *,
        ttl_s: int,
    ) -> None:
        self._client = client
        self._cache = cache
        self._tokens = tokens
        self._ttl_s = ttl_s

    def cache_key(self, tenant_id: int, *filters: Any) -> str:
        return build_cache_key(self.cache_prefix, tenant_id, *filters)

    async def fetch(self, key: str, body: dict[str, Any]) -> list[RecordT]:
        cached = await self._cache.get(key)
        if cached is not None:
            record_cache("hit")
            logger.debug("cfi_cache_hit key=%s", key)
            return [self.record_model.model_validate(item) for item in cached]

        record_cache("miss")
        logger.debug("cfi_cache_miss key=%s", key)
        token = self._tokens.get_token()
        if token is None:
            # Missing token is not cached so the next authenticated call refills.
            logger.error("cfi_token_missing endpoint=%s key=%s", self.endpoint, key)
            return []

        payload = await self._client.post(self.endpoint, body, token=token)
        records = map_records(self.record_model, unwrap_list(payload), endpoint=self.endpoint)
        await self._cache.set(key, [record.model_dump(mode="json") for record in records], self._ttl_s)
        logger.info("cfi_cache_filled key=%s count=%s ttl_s=%s", key, len(records), self._ttl_s)
        return records

    async def invalidate(self, tenant_id: int, *filters: Any) -> None:
        await self._cache.delete(self.cache_key(tenant_id, *filters))
