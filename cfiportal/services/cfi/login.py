from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from cfiportal.core.errors import RemoteApiError
from cfiportal.domain.cfi import CfiIdentity
from cfiportal.domain.models import User
from cfiportal.persistence.repos import users as users_repo
from cfiportal.services.cfi.division_sync import DivisionSyncService
from cfiportal.services.cfi.session import SessionTokenStore
from cfiportal.services.cfi.tenant import TenantContext


logger = logging.getLogger(__name__)


def user_data_from(identity: CfiIdentity) -> dict[str, object]:
    # Shape kept in the session; mirrors the CFI login payload field names.
    return {
        "id": identity.id,
        "idDivision": identity.id_division,
        "nomDivision": identity.nom_division,
        "nom": identity.nom,
        "prenom": identity.prenom,
        "email": identity.email,
    }


async def complete_login(
    db: AsyncSession,
    identity: CfiIdentity,
    *,
    store: SessionTokenStore,
    tenant: TenantContext,
    division_sync: DivisionSyncService,
    now: datetime | None = None,
) -> User:
    now = now or datetime.now(timezone.utc)
    user = await users_repo.upsert_user(db, identity)
    # Token must be in the session before division sync calls CFI with it.
    store.set_token(identity.jeton or "")
    try:
        await division_sync.sync_user_divisions(db, identity.id, now=now)
    except RemoteApiError as exc:
        # Membership sync failure never blocks login; local rows stay authoritative.
        logger.warning("login_division_sync_failed user_id=%s kind=%s", identity.id, exc.kind.value)
    tenant.initialize_from_user(identity)
    store.set_user_data(user_data_from(identity))
    await users_repo.record_login(db, user, at=now)
    await db.commit()
    logger.info("login_completed user_id=%s tenant_id=%s", identity.id, identity.id_division)
    return user
