from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from arq import create_pool
from arq.connections import RedisSettings
from sqlalchemy.ext.asyncio import AsyncSession

from cfiportal.core.config import get_settings
from cfiportal.core.errors import GenerationError
from cfiportal.persistence.repos import tasks as tasks_repo
from cfiportal.services.generation.handlers import HANDLERS, run_generation_job
from cfiportal.services.generation.progress import FAILED, chat_topic, task_topic
from cfiportal.services.pubsub import get_pubsub


logger = logging.getLogger(__name__)

# arq function name per task type; must match WorkerSettings.functions.
JOB_FUNCTIONS = {
    "personas": "generate_personas",
    "strategy": "generate_strategy",
    "assets": "generate_assets",
    "chat": "chat_stream",
}

_redis_pool = None
_redis_pool_loop = None
_redis_lock = asyncio.Lock()


@dataclass(frozen=True)
class DispatchResult:
    task_id: str
    topic: str


async def get_redis_pool():
    # Cache the arq pool to avoid reconnecting on every enqueue.
    global _redis_pool, _redis_pool_loop
    current_loop = asyncio.get_running_loop()
    if _redis_pool is not None and _redis_pool_loop == current_loop:
        return _redis_pool
    if _redis_pool is not None and _redis_pool_loop != current_loop:
        # Drop loop-bound pools to avoid cross-loop errors in tests.
        _redis_pool = None
    async with _redis_lock:
        if _redis_pool is None:
            settings = get_settings()
            _redis_pool = await create_pool(
                RedisSettings.from_dsn(settings.redis_url),
                default_queue_name=settings.generation_queue_name,
            )
            _redis_pool_loop = current_loop
    return _redis_pool


async def dispatch_generation(
    db: AsyncSession,
    task_type: str,
    *,
    user_id: int,
    tenant_id: int,
    cfi_token: str | None,
    params: dict[str, Any],
    name: str | None = None,
) -> DispatchResult:
    """Persist a pending task, then hand its message to the worker.

    The task row is committed before enqueueing so a fast worker always finds it.
    """
    message_cls, handler_cls = HANDLERS[task_type]
    task_id = str(uuid4())
    message = message_cls.model_validate(
        {
            **params,
            "task_id": task_id,
            "user_id": user_id,
            "tenant_id": tenant_id,
            "cfi_token": cfi_token,
        }
    )
    topic = chat_topic(params["conversation_id"]) if task_type == "chat" else task_topic(task_id)
    arguments = message.model_dump(mode="json", exclude={"cfi_token"})
    await tasks_repo.create_task(
        db,
        task_id=task_id,
        name=name or f"{task_type} generation",
        task_type=task_type,
        user_id=user_id,
        tenant_id=tenant_id,
        topic=topic,
        subject_id=params.get("project_id") or params.get("conversation_id"),
        agent_class=handler_cls.agent_class,
        method_name=JOB_FUNCTIONS[task_type],
        arguments=arguments,
    )
    await db.commit()
    await enqueue_generation_job(db, task_type, message.model_dump(mode="json"), task_id=task_id, topic=topic)
    logger.info("generation_dispatched task_id=%s type=%s tenant_id=%s", task_id, task_type, tenant_id)
    return DispatchResult(task_id=task_id, topic=topic)


async def enqueue_generation_job(
    db: AsyncSession,
    task_type: str,
    payload: dict[str, Any],
    *,
    task_id: str,
    topic: str,
) -> None:
    settings = get_settings()
    if settings.generation_execution_mode.lower() == "inline":
        await run_generation_job(task_type, payload)
        return
    try:
        redis = await get_redis_pool()
        await redis.enqueue_job(JOB_FUNCTIONS[task_type], payload, _job_id=task_id)
    except Exception as exc:  # noqa: BLE001 - queue outage fails the task, not the process
        logger.exception("generation_enqueue_failed task_id=%s type=%s", task_id, task_type)
        won = await tasks_repo.transition_status(
            db,
            task_id,
            from_status=tasks_repo.PENDING,
            to_status=tasks_repo.FAILED,
            values={"error_message": f"enqueue failed: {exc}", "completed_at": datetime.now(timezone.utc)},
        )
        await db.commit()
        if won:
            await get_pubsub().publish(
                topic,
                FAILED,
                {"task_id": task_id, "message": "The generation queue is unavailable, please try again later."},
            )
        raise GenerationError("generation queue unavailable") from exc
