from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from cfiportal.apps.api.deps import (
    CurrentUser,
    get_db,
    get_division_sync,
    get_tenant_context,
    require_user,
)
from cfiportal.persistence.repos import divisions as divisions_repo
from cfiportal.services.cfi.division_sync import DivisionSyncService
from cfiportal.services.cfi.tenant import TenantContext

router = APIRouter(prefix="/api/tenant", tags=["tenant"])


def _division_rows(divisions: list, current_tenant_id: int) -> list[dict[str, Any]]:
    return [
        {"id": division.id, "nom": division.nom, "current": division.id == current_tenant_id}
        for division in divisions
    ]


@router.get("/divisions")
async def list_divisions(
    user: CurrentUser = Depends(require_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    divisions = await divisions_repo.list_accessible_divisions(db, user.user_id)
    return {
        "success": True,
        "divisions": _division_rows(divisions, user.tenant_id),
        "current_tenant_id": user.tenant_id,
    }


@router.post("/switch")
async def switch_division(
    payload: dict[str, Any] = Body(...),
    user: CurrentUser = Depends(require_user),
    tenant: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
) -> dict:
    division_id = payload.get("idDivision")
    # bool is an int subclass; reject it explicitly.
    if not isinstance(division_id, int) or isinstance(division_id, bool):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "INVALID_DIVISION", "message": "idDivision must be an integer"},
        )
    new_tenant_id = await tenant.switch_tenant(db, user_id=user.user_id, tenant_id=division_id)
    return {
        "success": True,
        "message": "Division switched",
        "new_tenant_id": new_tenant_id,
    }


@router.post("/sync")
async def sync_divisions(
    user: CurrentUser = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    division_sync: DivisionSyncService = Depends(get_division_sync),
) -> dict:
    divisions = await division_sync.sync_user_divisions(db, user.user_id)
    await db.commit()
    return {
        "success": True,
        "divisions": _division_rows(divisions, user.tenant_id),
        "current_tenant_id": user.tenant_id,
    }
