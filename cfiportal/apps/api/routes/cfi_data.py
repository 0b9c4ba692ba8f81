from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from cfiportal.apps.api.deps import CurrentUser, get_api_services, require_user
from cfiportal.core.errors import NotFoundError
from cfiportal.services.api.factory import ApiServices

router = APIRouter(prefix="/api", tags=["cfi"])


def _listing(records: list[BaseModel]) -> dict:
    return {
        "success": True,
        "count": len(records),
        "data": [record.model_dump(mode="json") for record in records],
    }


@router.get("/stocks")
async def list_stocks(
    reference: str | None = None,
    en_alerte: bool | None = None,
    user: CurrentUser = Depends(require_user),
    services: ApiServices = Depends(get_api_services),
) -> dict:
    stocks = await services.stocks.get_stocks(user.tenant_id, reference=reference, en_alerte=en_alerte)
    return _listing(stocks)


@router.get("/facturations")
async def list_facturations(
    debut: date | None = None,
    fin: date | None = None,
    user: CurrentUser = Depends(require_user),
    services: ApiServices = Depends(get_api_services),
) -> dict:
    factures = await services.facturations.get_facturations(user.tenant_id, debut=debut, fin=fin)
    return _listing(factures)


@router.get("/facturations/{facture_id}")
async def get_facture(
    facture_id: int,
    user: CurrentUser = Depends(require_user),
    services: ApiServices = Depends(get_api_services),
) -> dict:
    facture = await services.facturations.get_facture(facture_id)
    if facture is None:
        raise NotFoundError(f"invoice {facture_id} not found")
    return {"success": True, "data": facture.model_dump(mode="json")}


@router.get("/operations")
async def list_operations(
    type: str | None = None,
    date_debut: date | None = None,
    date_fin: date | None = None,
    statut: str | None = None,
    user: CurrentUser = Depends(require_user),
    services: ApiServices = Depends(get_api_services),
) -> dict:
    operations = await services.operations.get_lignes_operations(
        user.tenant_id,
        type=type,
        date_debut=date_debut,
        date_fin=date_fin,
        statut=statut,
    )
    return _listing(operations)


@router.get("/etats-operations")
async def list_etats_operations(
    user: CurrentUser = Depends(require_user),
    services: ApiServices = Depends(get_api_services),
) -> dict:
    return _listing(await services.etats.get_etats_operations(user.tenant_id))


@router.get("/etats-operations/{etat_id}")
async def get_etat_operation(
    etat_id: int,
    user: CurrentUser = Depends(require_user),
    services: ApiServices = Depends(get_api_services),
) -> dict:
    etat = await services.etats.get_etat_operation_by_id(user.tenant_id, etat_id)
    if etat is None:
        raise NotFoundError(f"operation state {etat_id} not found")
    return {"success": True, "data": etat.model_dump(mode="json")}


@router.get("/droits")
async def get_droits(
    user: CurrentUser = Depends(require_user),
    services: ApiServices = Depends(get_api_services),
) -> dict:
    rights = await services.utilisateurs.get_droits_utilisateur(user.tenant_id, user.user_id)
    return {"success": True, "data": rights}
