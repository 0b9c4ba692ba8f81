from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cfiportal.domain.models import Asset, Competitor, Persona, Project, Strategy


async def create_project(
    session: AsyncSession,
    *,
    tenant_id: int,
    user_id: int,
    name: str,
    **fields: Any,
) -> Project:
    project = Project(tenant_id=tenant_id, user_id=user_id, name=name, **fields)
    session.add(project)
    await session.flush()
    return project


async def get_project(session: AsyncSession, project_id: str, *, tenant_id: int) -> Project | None:
    # Tenant predicate is mandatory: projects never leak across divisions.
    result = await session.execute(
        select(Project).where(Project.id == project_id, Project.tenant_id == tenant_id)
    )
    return result.scalar_one_or_none()


async def add_persona(session: AsyncSession, project: Project, data: dict[str, Any], *, quality_score: int) -> Persona:
    persona = Persona(
        project_id=project.id,
        tenant_id=project.tenant_id,
        name=str(data.get("name") or "Persona"),
        age=data.get("age") if isinstance(data.get("age"), int) else None,
        job=data.get("job"),
        description=data.get("description"),
        attributes_json={k: v for k, v in data.items() if k not in {"name", "age", "job", "description"}},
        quality_score=quality_score,
    )
    session.add(persona)
    await session.flush()
    return persona


async def list_personas(session: AsyncSession, project_id: str) -> list[Persona]:
    result = await session.execute(
        select(Persona).where(Persona.project_id == project_id).order_by(Persona.created_at)
    )
    return list(result.scalars().all())


async def add_competitor(session: AsyncSession, project: Project, data: dict[str, Any]) -> Competitor:
    competitor = Competitor(
        project_id=project.id,
        name=str(data.get("name") or "Competitor"),
        website=data.get("website"),
        strengths_json=list(data.get("strengths") or []),
        weaknesses_json=list(data.get("weaknesses") or []),
    )
    session.add(competitor)
    await session.flush()
    return competitor


async def list_competitors(session: AsyncSession, project_id: str) -> list[Competitor]:
    result = await session.execute(select(Competitor).where(Competitor.project_id == project_id))
    return list(result.scalars().all())


async def add_strategy(session: AsyncSession, project: Project, data: dict[str, Any], *, quality_score: int) -> Strategy:
    strategy = Strategy(
        project_id=project.id,
        tenant_id=project.tenant_id,
        positioning=data.get("positioning"),
        content_json=data,
        quality_score=quality_score,
    )
    session.add(strategy)
    await session.flush()
    return strategy


async def latest_strategy(session: AsyncSession, project_id: str) -> Strategy | None:
    result = await session.execute(
        select(Strategy)
        .where(Strategy.project_id == project_id)
        .order_by(Strategy.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def add_asset(
    session: AsyncSession,
    project: Project,
    *,
    asset_type: str,
    variation: int,
    content: dict[str, Any],
    quality_score: int,
) -> Asset:
    asset = Asset(
        project_id=project.id,
        tenant_id=project.tenant_id,
        asset_type=asset_type,
        variation=variation,
        content_json=content,
        quality_score=quality_score,
    )
    session.add(asset)
    await session.flush()
    return asset


async def list_assets(session: AsyncSession, project_id: str) -> list[Asset]:
    result = await session.execute(
        select(Asset).where(Asset.project_id == project_id).order_by(Asset.asset_type, Asset.variation)
    )
    return list(result.scalars().all())
