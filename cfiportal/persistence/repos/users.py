from __future__ import annotations

from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from cfiportal.domain.cfi import CfiIdentity
from cfiportal.domain.models import User
from cfiportal.persistence.repos import divisions as divisions_repo


async def get_user(session: AsyncSession, user_id: int) -> User | None:
    return await session.get(User, user_id)


async def upsert_user(session: AsyncSession, identity: CfiIdentity) -> User:
    # The home division must exist before the user row references it.
    await divisions_repo.upsert_division(session, identity.id_division, identity.nom_division)
    user = await get_user(session, identity.id)
    if user is None:
        user = User(id=identity.id, login_count=0)
        session.add(user)
    user.division_id = identity.id_division
    user.email = identity.email
    user.nom = identity.nom
    user.prenom = identity.prenom
    user.type_option_ga = identity.type_option_ga
    await session.flush()
    return user


async def record_login(session: AsyncSession, user: User, *, at: datetime) -> None:
    user.login_count = (user.login_count or 0) + 1
    user.last_login_at = at
    await session.flush()
