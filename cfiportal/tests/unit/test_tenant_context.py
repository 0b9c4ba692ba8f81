from __future__ import annotations

import pytest

from cfiportal.core.errors import ErrorKind, TenantAccessDeniedError, TenantNotSelectedError
from cfiportal.domain.cfi import CfiIdentity
from cfiportal.persistence.db import SessionLocal
from cfiportal.services.cfi.session import SessionTokenStore
from cfiportal.services.cfi.tenant import TenantContext
from cfiportal.tests.utils.db import seed_user


def _identity() -> CfiIdentity:
    return CfiIdentity.model_validate({"id": 42, "idDivision": 10, "nomDivision": "Paris"})


@pytest.mark.asyncio
async def test_switch_to_inaccessible_division_is_denied_and_keeps_current() -> None:
    await seed_user(accessible=(10, 20))
    store = SessionTokenStore({})
    tenant = TenantContext(store)
    tenant.initialize_from_user(_identity())

    async with SessionLocal() as session:
        with pytest.raises(TenantAccessDeniedError):
            await tenant.switch_tenant(session, user_id=42, tenant_id=30)

    assert tenant.get_current_tenant() == 10


@pytest.mark.asyncio
async def test_switch_to_accessible_division_updates_session() -> None:
    await seed_user(accessible=(10, 20))
    store = SessionTokenStore({})
    tenant = TenantContext(store)
    tenant.initialize_from_user(_identity())

    async with SessionLocal() as session:
        assert await tenant.switch_tenant(session, user_id=42, tenant_id=20) == 20

    assert store.get_current_tenant() == 20


@pytest.mark.asyncio
async def test_switch_result_reports_access_denied() -> None:
    await seed_user(accessible=(10,))
    tenant = TenantContext(SessionTokenStore({}))

    async with SessionLocal() as session:
        result = await tenant.switch_tenant_result(session, user_id=42, tenant_id=30)

    assert result.ok is False
    assert result.kind is ErrorKind.ACCESS_DENIED
    assert result.status_code == 403


def test_job_context_overrides_session_tenant() -> None:
    store = SessionTokenStore({})
    store.set_current_tenant(10)
    tenant = TenantContext(store)

    tenant.set_async_context(user_id=42, tenant_id=20)
    assert tenant.get_current_tenant() == 20

    tenant.clear_async_context()
    assert tenant.get_current_tenant() == 10


def test_missing_tenant_raises() -> None:
    tenant = TenantContext()

    assert tenant.has_tenant() is False
    with pytest.raises(TenantNotSelectedError):
        tenant.get_current_tenant()


def test_tenant_info_uses_home_division_name() -> None:
    store = SessionTokenStore({})
    store.set_user_data({"id": 42, "idDivision": 10, "nomDivision": "Paris"})
    store.set_current_tenant(10)

    info = TenantContext(store).get_tenant_info()

    assert info is not None
    assert info.id_cfi == 10
    assert info.nom == "Paris"
