from __future__ import annotations

import json
import logging
from typing import AsyncIterator

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from cfiportal.apps.api.deps import CurrentUser, get_db, require_user
from cfiportal.core.config import get_settings
from cfiportal.core.errors import NotFoundError
from cfiportal.domain.models import GenerationTask
from cfiportal.persistence.db import SessionLocal
from cfiportal.persistence.repos import tasks as tasks_repo
from cfiportal.services.generation.listener import listen_progress
from cfiportal.services.pubsub import get_pubsub

logger = logging.getLogger(__name__)
router = APIRouter(tags=["events"])


def _sse_message(payload: dict) -> str:
    # SSE framing: event name is always "message" and data is one compact JSON line.
    data = json.dumps(payload, ensure_ascii=False, separators=(",", ":"), default=str)
    return f"event: message\ndata: {data}\n\n"


def _final_snapshot(task: GenerationTask) -> dict:
    return {
        "status": task.status,
        "completed": None,
        "total": None,
        "progress": 100 if task.status == tasks_repo.COMPLETED else 0,
        "message": "Generation failed, see the task for details." if task.status == tasks_repo.FAILED else None,
        "event": task.status,
        "task_id": task.id,
    }


@router.get("/events/{topic:path}")
async def stream_events(
    topic: str,
    user: CurrentUser = Depends(require_user),
    db: AsyncSession = Depends(get_db),
) -> StreamingResponse:
    task = await tasks_repo.latest_task_for_topic(db, topic, user_id=user.user_id, tenant_id=user.tenant_id)
    if task is None:
        # Unknown and foreign topics look the same to the caller.
        raise NotFoundError(f"topic {topic} not found")
    already_final = task.status in tasks_repo.TERMINAL_STATUSES
    final_snapshot = _final_snapshot(task) if already_final else None
    timeout_s = get_settings().generation_listener_timeout_s
    task_id = task.id

    async def stored_final() -> dict | None:
        # Re-read after subscribing: the job may have finished in between.
        async with SessionLocal() as session:
            current = await tasks_repo.get_task(session, task_id)
        if current is None or current.status not in tasks_repo.TERMINAL_STATUSES:
            return None
        return _final_snapshot(current)

    async def event_stream() -> AsyncIterator[str]:
        if final_snapshot is not None:
            yield _sse_message(final_snapshot)
            return
        async for snapshot in listen_progress(
            get_pubsub(), topic, timeout_s=timeout_s, stored_final=stored_final
        ):
            yield _sse_message(snapshot)
        logger.info("event_stream_closed topic=%s user_id=%s", topic, user.user_id)

    headers = {
        "Cache-Control": "no-cache",
        "Content-Type": "text/event-stream",
        "Connection": "keep-alive",
    }
    return StreamingResponse(event_stream(), headers=headers, media_type="text/event-stream")
