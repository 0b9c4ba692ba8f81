from __future__ import annotations

import logging
from typing import Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from cfiportal.apps.api.deps import (
    get_db,
    get_division_sync,
    get_tenant_context,
    get_token_store,
)
from cfiportal.core.config import get_settings
from cfiportal.core.errors import InvalidCredentialsError
from cfiportal.services.cfi.auth import CfiAuthService
from cfiportal.services.cfi.client import get_remote_client
from cfiportal.services.cfi.division_sync import DivisionSyncService
from cfiportal.services.cfi.login import complete_login
from cfiportal.services.cfi.session import SessionTokenStore
from cfiportal.services.cfi.tenant import TenantContext

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["auth"])


class LoginRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # "token": single sign-on with a CFI user token; "credentials": login + SHA-512 password.
    mode: Literal["token", "credentials"] = "token"
    jeton_utilisateur: str | None = Field(default=None, alias="jetonUtilisateur")
    username: str | None = None
    password: str | None = None


@router.post("/login")
async def login(
    payload: LoginRequest,
    db: AsyncSession = Depends(get_db),
    store: SessionTokenStore = Depends(get_token_store),
    tenant: TenantContext = Depends(get_tenant_context),
    division_sync: DivisionSyncService = Depends(get_division_sync),
) -> dict:
    auth = CfiAuthService(get_remote_client())
    if payload.mode == "token":
        if not payload.jeton_utilisateur:
            raise InvalidCredentialsError("jetonUtilisateur is required")
        identity = await auth.authenticate(payload.jeton_utilisateur)
    else:
        identity = await auth.authenticate_with_credentials(payload.username or "", payload.password or "")
    # Start from a clean slate so a previous user's division never survives.
    store.clear()
    await complete_login(db, identity, store=store, tenant=tenant, division_sync=division_sync)
    return {
        "success": True,
        "user": {
            "id": identity.id,
            "nom": identity.nom,
            "prenom": identity.prenom,
            "email": identity.email,
        },
        "current_tenant_id": store.get_current_tenant(),
        "time_remaining": store.time_remaining(),
    }


@router.post("/logout")
async def logout(store: SessionTokenStore = Depends(get_token_store)) -> dict:
    store.clear()
    return {"success": True}


@router.get("/session")
async def session_status(
    store: SessionTokenStore = Depends(get_token_store),
    division_sync: DivisionSyncService = Depends(get_division_sync),
    db: AsyncSession = Depends(get_db),
) -> dict:
    token = store.get_token()
    user_data = store.get_user_data() if token else None
    divisions_stale = False
    if user_data is not None:
        # Reported only; membership is refreshed at login or through /api/tenant/sync.
        divisions_stale = await division_sync.needs_sync(
            db, int(user_data["id"]), max_age_hours=get_settings().division_sync_max_age_hours
        )
    return {
        "authenticated": token is not None,
        "time_remaining": store.time_remaining(),
        "should_refresh": store.should_refresh() if token else False,
        "current_tenant_id": store.get_current_tenant() if token else None,
        "user": user_data,
        "divisions_stale": divisions_stale,
    }
