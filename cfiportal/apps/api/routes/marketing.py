from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from cfiportal.apps.api.deps import CurrentUser, get_db, require_user
from cfiportal.core.errors import NotFoundError
from cfiportal.domain.models import GenerationTask, Project
from cfiportal.persistence.repos import projects as projects_repo
from cfiportal.persistence.repos import tasks as tasks_repo
from cfiportal.services.generation.queue import dispatch_generation

router = APIRouter(prefix="/marketing", tags=["marketing"])


class ProjectCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    company_name: str | None = None
    sector: str | None = None
    description: str | None = None
    goal_type: str | None = None
    target_audience: str | None = None
    budget: float | None = Field(default=None, ge=0)
    website_url: str | None = None


class PersonasRequest(BaseModel):
    number_of_personas: int = Field(default=3, ge=1, le=10)
    additional_context: str | None = None


class StrategyRequest(BaseModel):
    include_competitor_analysis: bool = True
    focus_channels: list[str] = Field(default_factory=list)
    additional_context: str | None = None


class AssetsRequest(BaseModel):
    asset_types: list[str] = Field(min_length=1)
    number_of_variations: int = Field(default=1, ge=1, le=5)
    tone_of_voice: str | None = None
    image_options: dict[str, Any] = Field(default_factory=dict)
    additional_context: str | None = None


def _project_payload(project: Project) -> dict[str, Any]:
    return {
        "id": project.id,
        "name": project.name,
        "company_name": project.company_name,
        "sector": project.sector,
        "description": project.description,
        "goal_type": project.goal_type,
        "target_audience": project.target_audience,
        "budget": project.budget,
        "website_url": project.website_url,
        "status": project.status,
    }


def _task_payload(task: GenerationTask) -> dict[str, Any]:
    return {
        "id": task.id,
        "name": task.name,
        "type": task.type,
        "status": task.status,
        "topic": task.topic,
        "subject_id": task.subject_id,
        "result": task.result_json,
        "error_message": task.error_message,
        "tokens_total": task.tokens_total,
        "cost": task.cost,
        "duration_ms": task.duration_ms,
        "model_used": task.model_used,
        "started_at": task.started_at.isoformat() if task.started_at else None,
        "completed_at": task.completed_at.isoformat() if task.completed_at else None,
    }


async def _require_project(db: AsyncSession, project_id: str, user: CurrentUser) -> Project:
    project = await projects_repo.get_project(db, project_id, tenant_id=user.tenant_id)
    if project is None:
        raise NotFoundError(f"project {project_id} not found")
    return project


async def _dispatch(
    db: AsyncSession,
    user: CurrentUser,
    task_type: str,
    project: Project,
    params: dict[str, Any],
) -> dict[str, Any]:
    dispatched = await dispatch_generation(
        db,
        task_type,
        user_id=user.user_id,
        tenant_id=user.tenant_id,
        cfi_token=user.token,
        params={**params, "project_id": project.id},
        name=f"{task_type} for {project.name}",
    )
    return {"success": True, "task_id": dispatched.task_id, "topic": dispatched.topic}


@router.post("/projects", status_code=status.HTTP_201_CREATED)
async def create_project(
    payload: ProjectCreateRequest,
    user: CurrentUser = Depends(require_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    fields = payload.model_dump(exclude={"name"})
    project = await projects_repo.create_project(
        db,
        tenant_id=user.tenant_id,
        user_id=user.user_id,
        name=payload.name,
        **fields,
    )
    await db.commit()
    return {"success": True, "project": _project_payload(project)}


@router.get("/projects/{project_id}")
async def get_project(
    project_id: str,
    user: CurrentUser = Depends(require_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    project = await _require_project(db, project_id, user)
    personas = await projects_repo.list_personas(db, project.id)
    competitors = await projects_repo.list_competitors(db, project.id)
    strategy = await projects_repo.latest_strategy(db, project.id)
    assets = await projects_repo.list_assets(db, project.id)
    return {
        "success": True,
        "project": _project_payload(project),
        "personas": [
            {
                "id": persona.id,
                "name": persona.name,
                "age": persona.age,
                "job": persona.job,
                "description": persona.description,
                "quality_score": persona.quality_score,
            }
            for persona in personas
        ],
        "competitors": [
            {
                "id": competitor.id,
                "name": competitor.name,
                "website": competitor.website,
                "strengths": competitor.strengths_json,
                "weaknesses": competitor.weaknesses_json,
            }
            for competitor in competitors
        ],
        "strategy": (
            {"id": strategy.id, "content": strategy.content_json, "quality_score": strategy.quality_score}
            if strategy is not None
            else None
        ),
        "assets": [
            {
                "id": asset.id,
                "asset_type": asset.asset_type,
                "variation": asset.variation,
                "content": asset.content_json,
                "quality_score": asset.quality_score,
            }
            for asset in assets
        ],
    }


@router.post("/projects/{project_id}/personas/generate", status_code=status.HTTP_202_ACCEPTED)
async def generate_personas(
    project_id: str,
    payload: PersonasRequest,
    user: CurrentUser = Depends(require_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    project = await _require_project(db, project_id, user)
    return await _dispatch(db, user, "personas", project, payload.model_dump())


@router.post("/projects/{project_id}/strategy/generate", status_code=status.HTTP_202_ACCEPTED)
async def generate_strategy(
    project_id: str,
    payload: StrategyRequest,
    user: CurrentUser = Depends(require_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    project = await _require_project(db, project_id, user)
    return await _dispatch(db, user, "strategy", project, payload.model_dump())


@router.post("/projects/{project_id}/assets/generate", status_code=status.HTTP_202_ACCEPTED)
async def generate_assets(
    project_id: str,
    payload: AssetsRequest,
    user: CurrentUser = Depends(require_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    project = await _require_project(db, project_id, user)
    return await _dispatch(db, user, "assets", project, payload.model_dump())


# Declared before /tasks/{task_id} so "stats" is not captured as an id.
@router.get("/tasks/stats")
async def get_task_stats(
    days: int = Query(default=7, ge=1, le=90),
    user: CurrentUser = Depends(require_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    since = datetime.now(timezone.utc) - timedelta(days=days)
    stats = await tasks_repo.task_stats(db, tenant_id=user.tenant_id, since=since)
    return {"success": True, "days": days, **stats}


@router.get("/tasks/{task_id}")
async def get_task(
    task_id: str,
    user: CurrentUser = Depends(require_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    task = await tasks_repo.get_task(db, task_id)
    if task is None or task.user_id != user.user_id or task.tenant_id != user.tenant_id:
        raise NotFoundError(f"task {task_id} not found")
    return {"success": True, "task": _task_payload(task)}
