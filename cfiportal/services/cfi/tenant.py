from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from cfiportal.core.errors import (
    ErrorKind,
    NoSessionError,
    TenantAccessDeniedError,
    TenantNotSelectedError,
)
from cfiportal.core.results import Err, Ok, Result
from cfiportal.domain.cfi import CfiIdentity, TenantInfo
from cfiportal.persistence.repos import divisions as divisions_repo
from cfiportal.services.cfi.session import SessionTokenStore


logger = logging.getLogger(__name__)


class TenantContext:
    """Current division for a request or a background job.

    Background jobs pin an explicit user and tenant via ``set_async_context``;
    web requests read the division stored in the HTTP session.
    """

    def __init__(self, store: SessionTokenStore | None = None) -> None:
        self._store = store
        self._async_user_id: int | None = None
        self._async_tenant_id: int | None = None

    def set_async_context(self, *, user_id: int, tenant_id: int) -> None:
        self._async_user_id = user_id
        self._async_tenant_id = tenant_id

    def clear_async_context(self) -> None:
        self._async_user_id = None
        self._async_tenant_id = None

    def _session_tenant(self) -> int | None:
        if self._store is None:
            return None
        try:
            return self._store.get_current_tenant()
        except NoSessionError:
            return None

    def get_current_tenant_or_none(self) -> int | None:
        if self._async_tenant_id is not None:
            return self._async_tenant_id
        return self._session_tenant()

    def get_current_tenant(self) -> int:
        tenant_id = self.get_current_tenant_or_none()
        if tenant_id is None:
            raise TenantNotSelectedError("no division selected for this session")
        return tenant_id

    def has_tenant(self) -> bool:
        return self.get_current_tenant_or_none() is not None

    def initialize_from_user(self, identity: CfiIdentity) -> int:
        # Login always starts on the user's home division.
        self._require_store().set_current_tenant(identity.id_division)
        logger.info("tenant_initialized user_id=%s tenant_id=%s", identity.id, identity.id_division)
        return identity.id_division

    async def switch_tenant(self, db: AsyncSession, *, user_id: int, tenant_id: int) -> int:
        store = self._require_store()
        previous = store.get_current_tenant()
        if not await divisions_repo.has_access(db, user_id, tenant_id):
            logger.warning(
                "tenant_switch_denied user_id=%s from=%s to=%s", user_id, previous, tenant_id
            )
            raise TenantAccessDeniedError(user_id, tenant_id)
        store.set_current_tenant(tenant_id)
        logger.info("tenant_switched user_id=%s from=%s to=%s", user_id, previous, tenant_id)
        return tenant_id

    async def switch_tenant_result(self, db: AsyncSession, *, user_id: int, tenant_id: int) -> Result:
        try:
            return Ok(await self.switch_tenant(db, user_id=user_id, tenant_id=tenant_id))
        except TenantAccessDeniedError as exc:
            return Err(kind=ErrorKind.ACCESS_DENIED, message=str(exc), status_code=403)

    def get_tenant_info(self) -> TenantInfo | None:
        tenant_id = self.get_current_tenant_or_none()
        if tenant_id is None:
            return None
        user_data = None
        if self._store is not None:
            try:
                user_data = self._store.get_user_data()
            except NoSessionError:
                user_data = None
        name = None
        if user_data and int(user_data.get("idDivision") or 0) == tenant_id:
            name = user_data.get("nomDivision")
        return TenantInfo(id_cfi=tenant_id, nom=name or divisions_repo.default_division_name(tenant_id))

    def clear(self) -> None:
        self.clear_async_context()
        if self._store is not None:
            try:
                self._store.clear_current_tenant()
            except NoSessionError:
                pass

    def _require_store(self) -> SessionTokenStore:
        if self._store is None:
            raise NoSessionError("tenant switching requires an HTTP session")
        return self._store
