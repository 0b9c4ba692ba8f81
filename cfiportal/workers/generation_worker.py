from __future__ import annotations

import logging

from arq import cron
from arq.connections import RedisSettings

from cfiportal.core.config import get_settings
from cfiportal.core.logging import configure_logging
from cfiportal.persistence.db import SessionLocal
from cfiportal.services.generation.handlers import run_generation_job
from cfiportal.services.generation.reaper import purge_old_tasks, reap_stuck_tasks
from cfiportal.services.pubsub import get_pubsub


logger = logging.getLogger(__name__)


async def generate_personas(ctx, payload: dict) -> str:
    return await run_generation_job("personas", payload)


async def generate_strategy(ctx, payload: dict) -> str:
    return await run_generation_job("strategy", payload)


async def generate_assets(ctx, payload: dict) -> str:
    return await run_generation_job("assets", payload)


async def chat_stream(ctx, payload: dict) -> str:
    return await run_generation_job("chat", payload)


async def reap_stuck(ctx) -> int:
    settings = get_settings()
    if not settings.generation_reaper_enabled:
        return 0
    return await reap_stuck_tasks(
        SessionLocal,
        get_pubsub(),
        stuck_after_minutes=settings.generation_stuck_after_minutes,
    )


async def purge_tasks(ctx) -> int:
    return await purge_old_tasks(SessionLocal, days=get_settings().generation_task_retention_days)


async def _startup(ctx) -> None:
    configure_logging()
    logger.info("generation_worker_started queue=%s", get_settings().generation_queue_name)


async def _shutdown(ctx) -> None:
    logger.info("generation_worker_stopped")


class WorkerSettings:
    # Keep worker configuration as class attributes for arq CLI compatibility.
    settings = get_settings()
    redis_settings = RedisSettings.from_dsn(settings.redis_url)
    queue_name = settings.generation_queue_name
    # Handlers own their terminal state; a retry would replay a claimed task.
    max_tries = 1
    job_timeout = settings.generation_listener_timeout_s * 2
    functions = [generate_personas, generate_strategy, generate_assets, chat_stream]
    cron_jobs = [
        cron(reap_stuck, minute=set(range(0, 60, 5)), run_at_startup=True),
        cron(purge_tasks, hour={3}, minute={15}),
    ]
    on_startup = _startup
    on_shutdown = _shutdown
