from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from cfiportal.domain.models import GenerationTask


PENDING = "pending"
PROCESSING = "processing"
COMPLETED = "completed"
FAILED = "failed"
TERMINAL_STATUSES = frozenset({COMPLETED, FAILED})


async def create_task(
    session: AsyncSession,
    *,
    task_id: str,
    name: str,
    task_type: str,
    user_id: int,
    tenant_id: int,
    topic: str,
    subject_id: str | None = None,
    agent_class: str | None = None,
    method_name: str | None = None,
    arguments: dict[str, Any] | None = None,
) -> GenerationTask:
    task = GenerationTask(
        id=task_id,
        name=name,
        type=task_type,
        status=PENDING,
        subject_id=subject_id,
        user_id=user_id,
        tenant_id=tenant_id,
        topic=topic,
        agent_class=agent_class,
        method_name=method_name,
        arguments_json=arguments or {},
    )
    session.add(task)
    await session.flush()
    return task


async def get_task(session: AsyncSession, task_id: str) -> GenerationTask | None:
    result = await session.execute(select(GenerationTask).where(GenerationTask.id == task_id))
    return result.scalar_one_or_none()


async def transition_status(
    session: AsyncSession,
    task_id: str,
    *,
    from_status: str,
    to_status: str,
    values: dict[str, Any] | None = None,
) -> bool:
    # Conditional update: only one caller can win a given transition.
    result = await session.execute(
        update(GenerationTask)
        .where(GenerationTask.id == task_id, GenerationTask.status == from_status)
        .values(status=to_status, **(values or {}))
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def find_stuck_tasks(
    session: AsyncSession,
    *,
    older_than: datetime,
    limit: int = 100,
) -> list[GenerationTask]:
    result = await session.execute(
        select(GenerationTask)
        .where(GenerationTask.status == PROCESSING, GenerationTask.started_at < older_than)
        .order_by(GenerationTask.started_at)
        .limit(limit)
    )
    return list(result.scalars().all())


async def purge_old_tasks(session: AsyncSession, *, now: datetime, days: int) -> int:
    # Only terminal tasks are purged; in-flight rows stay for the reaper.
    cutoff = now - timedelta(days=days)
    result = await session.execute(
        delete(GenerationTask).where(
            GenerationTask.status.in_(tuple(TERMINAL_STATUSES)),
            GenerationTask.completed_at < cutoff,
        )
    )
    return int(result.rowcount or 0)


async def task_stats(session: AsyncSession, *, tenant_id: int, since: datetime) -> dict[str, Any]:
    result = await session.execute(
        select(
            GenerationTask.status,
            func.count(),
            func.coalesce(func.sum(GenerationTask.cost), 0.0),
            func.coalesce(func.sum(GenerationTask.tokens_total), 0),
            func.avg(GenerationTask.duration_ms),
        )
        .where(GenerationTask.tenant_id == tenant_id, GenerationTask.created_at >= since)
        .group_by(GenerationTask.status)
    )
    by_status: dict[str, int] = {}
    total_cost = 0.0
    total_tokens = 0
    durations: list[float] = []
    for status, count, cost, tokens, avg_duration in result.all():
        by_status[status] = int(count)
        total_cost += float(cost or 0.0)
        total_tokens += int(tokens or 0)
        if avg_duration is not None and status in TERMINAL_STATUSES:
            durations.append(float(avg_duration))
    finished = by_status.get(COMPLETED, 0) + by_status.get(FAILED, 0)
    return {
        "by_status": by_status,
        "total_cost": round(total_cost, 6),
        "total_tokens": total_tokens,
        "error_rate": round(by_status.get(FAILED, 0) / finished, 4) if finished else 0.0,
        "avg_duration_ms": round(sum(durations) / len(durations), 1) if durations else None,
    }


async def latest_task_for_topic(
    session: AsyncSession,
    topic: str,
    *,
    user_id: int,
    tenant_id: int,
) -> GenerationTask | None:
    # Every progress topic is recorded on the task that publishes to it.
    result = await session.execute(
        select(GenerationTask)
        .where(
            GenerationTask.topic == topic,
            GenerationTask.user_id == user_id,
            GenerationTask.tenant_id == tenant_id,
        )
        .order_by(GenerationTask.created_at.desc())
        .limit(1)
    )
    return result.scalars().first()
