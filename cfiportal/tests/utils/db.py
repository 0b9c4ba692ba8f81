from __future__ import annotations

from datetime import datetime, timezone

from cfiportal.domain.cfi import CfiIdentity
from cfiportal.persistence.db import SessionLocal
from cfiportal.persistence.repos import divisions as divisions_repo
from cfiportal.persistence.repos import projects as projects_repo
from cfiportal.persistence.repos import users as users_repo
from cfiportal.tests.utils.cfi import HOME_DIVISION, USER_ID, identity_payload


async def seed_user(
    *,
    user_id: int = USER_ID,
    home_division: int = HOME_DIVISION,
    accessible: tuple[int, ...] = (),
) -> None:
    # Provision a user row plus its mirrored division memberships.
    identity = CfiIdentity.model_validate(identity_payload(id=user_id, idDivision=home_division))
    async with SessionLocal() as session:
        await users_repo.upsert_user(session, identity)
        for division_id in accessible:
            await divisions_repo.upsert_division(session, division_id, f"Division {division_id}")
        if accessible:
            await divisions_repo.replace_accessible_divisions(
                session, user_id, accessible, synced_at=datetime.now(timezone.utc)
            )
        await session.commit()


async def seed_project(*, tenant_id: int = HOME_DIVISION, user_id: int = USER_ID, name: str = "Rentree") -> str:
    async with SessionLocal() as session:
        project = await projects_repo.create_project(
            session,
            tenant_id=tenant_id,
            user_id=user_id,
            name=name,
            company_name="Boulangerie Martin",
            sector="retail",
        )
        await session.commit()
        return project.id
