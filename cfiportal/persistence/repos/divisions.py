from __future__ import annotations

from datetime import datetime
from typing import Iterable

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from cfiportal.domain.models import Division, UserAccessibleDivision


def default_division_name(division_id: int) -> str:
    return f"Division #{division_id}"


async def get_division(session: AsyncSession, division_id: int) -> Division | None:
    return await session.get(Division, division_id)


async def upsert_division(session: AsyncSession, division_id: int, nom: str | None) -> Division:
    existing = await get_division(session, division_id)
    name = nom or default_division_name(division_id)
    if existing is not None:
        # Never overwrite a known name with the placeholder.
        if nom:
            existing.nom = name
        return existing
    division = Division(id=division_id, nom=name)
    session.add(division)
    await session.flush()
    return division


async def list_accessible_divisions(session: AsyncSession, user_id: int) -> list[Division]:
    result = await session.execute(
        select(Division)
        .join(UserAccessibleDivision, UserAccessibleDivision.division_id == Division.id)
        .where(UserAccessibleDivision.user_id == user_id)
        .order_by(Division.nom)
    )
    return list(result.scalars().all())


async def has_access(session: AsyncSession, user_id: int, division_id: int) -> bool:
    result = await session.execute(
        select(func.count())
        .select_from(UserAccessibleDivision)
        .where(
            UserAccessibleDivision.user_id == user_id,
            UserAccessibleDivision.division_id == division_id,
        )
    )
    return int(result.scalar_one()) > 0


async def replace_accessible_divisions(
    session: AsyncSession,
    user_id: int,
    division_ids: Iterable[int],
    *,
    synced_at: datetime,
) -> int:
    # Full replacement keeps the mirror identical to the remote membership list.
    await session.execute(
        delete(UserAccessibleDivision).where(UserAccessibleDivision.user_id == user_id)
    )
    count = 0
    for division_id in dict.fromkeys(division_ids):
        session.add(
            UserAccessibleDivision(user_id=user_id, division_id=division_id, synced_at=synced_at)
        )
        count += 1
    await session.flush()
    return count


async def last_synced_at(session: AsyncSession, user_id: int) -> datetime | None:
    result = await session.execute(
        select(func.max(UserAccessibleDivision.synced_at)).where(
            UserAccessibleDivision.user_id == user_id
        )
    )
    return result.scalar_one_or_none()
