from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from cfiportal.core.results import Err
from cfiportal.domain.models import Division
from cfiportal.persistence.repos import divisions as divisions_repo
from cfiportal.services.api.divisions import DivisionApiService


logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # sqlite returns naive datetimes; treat them as UTC.
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


class DivisionSyncService:
    """Mirror the divisions a user may access from CFI into the local join table.

    The remote list is authoritative; when it is unavailable the previously
    synchronised rows keep serving access checks.
    """

    def __init__(self, divisions_api: DivisionApiService) -> None:
        self._api = divisions_api

    async def sync_user_divisions(
        self,
        db: AsyncSession,
        user_id: int,
        *,
        now: datetime | None = None,
    ) -> list[Division]:
        now = now or _utc_now()
        logger.info("division_sync_started user_id=%s", user_id)
        result = await self._api.get_divisions_result()
        if isinstance(result, Err):
            logger.error(
                "division_sync_failed user_id=%s kind=%s message=%s", user_id, result.kind.value, result.message
            )
            return await divisions_repo.list_accessible_divisions(db, user_id)
        remote = result.value
        if not remote:
            logger.warning("division_sync_empty user_id=%s", user_id)
            return await divisions_repo.list_accessible_divisions(db, user_id)

        for division in remote:
            await divisions_repo.upsert_division(db, division.id, division.nom)
        count = await divisions_repo.replace_accessible_divisions(
            db, user_id, (division.id for division in remote), synced_at=now
        )
        logger.info("division_sync_completed user_id=%s count=%s", user_id, count)
        return await divisions_repo.list_accessible_divisions(db, user_id)

    async def needs_sync(
        self,
        db: AsyncSession,
        user_id: int,
        *,
        max_age_hours: int = 24,
        now: datetime | None = None,
    ) -> bool:
        last_sync = await divisions_repo.last_synced_at(db, user_id)
        if last_sync is None:
            return True
        return _as_utc(last_sync) < (now or _utc_now()) - timedelta(hours=max_age_hours)
