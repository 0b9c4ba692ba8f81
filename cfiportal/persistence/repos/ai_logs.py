from __future__ import annotations

from typing import Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cfiportal.domain.models import AiCallLog
from cfiportal.services.agents.common import AiCall


TEXT_MAX_CHARS = 4000


def _clip(text: str | None) -> str | None:
    if text is None or len(text) <= TEXT_MAX_CHARS:
        return text
    return text[:TEXT_MAX_CHARS]


async def record_calls(
    session: AsyncSession,
    calls: Iterable[AiCall],
    *,
    task_id: str,
    user_id: int,
    tenant_id: int,
) -> int:
    # Rows join the caller's transaction; the caller commits.
    count = 0
    for call in calls:
        session.add(
            AiCallLog(
                task_id=task_id,
                user_id=user_id,
                tenant_id=tenant_id,
                agent=call.agent,
                action=call.action,
                input=_clip(call.input) or "",
                output=_clip(call.output),
                model=call.model,
                prompt_tokens=call.prompt_tokens,
                completion_tokens=call.completion_tokens,
                duration_ms=call.duration_ms,
            )
        )
        count += 1
    return count


async def list_for_task(session: AsyncSession, task_id: str) -> list[AiCallLog]:
    result = await session.execute(
        select(AiCallLog).where(AiCallLog.task_id == task_id).order_by(AiCallLog.created_at, AiCallLog.id)
    )
    return list(result.scalars().all())
