from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cfiportal.persistence.repos import tasks as tasks_repo
from cfiportal.services.generation.progress import FAILED
from cfiportal.services.pubsub import PubSub
from cfiportal.services.telemetry import record_task_terminal


logger = logging.getLogger(__name__)

STUCK_MESSAGE = "Generation did not finish in time and was stopped."


async def reap_stuck_tasks(
    session_factory: async_sessionmaker[AsyncSession],
    pubsub: PubSub,
    *,
    stuck_after_minutes: int,
    now: datetime | None = None,
) -> int:
    """Fail tasks left in ``processing`` by a crashed or hung worker."""
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(minutes=stuck_after_minutes)
    reaped = 0
    async with session_factory() as db:
        stuck = await tasks_repo.find_stuck_tasks(db, older_than=cutoff)
        for task in stuck:
            # Same conditional transition as the handler: a late finisher loses.
            won = await tasks_repo.transition_status(
                db,
                task.id,
                from_status=tasks_repo.PROCESSING,
                to_status=tasks_repo.FAILED,
                values={"error_message": "stuck in processing", "completed_at": now},
            )
            await db.commit()
            if not won:
                continue
            reaped += 1
            record_task_terminal(task_type=task.type, status=FAILED)
            await pubsub.publish(
                task.topic,
                FAILED,
                {"task_id": task.id, "tenant_id": task.tenant_id, "message": STUCK_MESSAGE, "error_kind": "stuck"},
            )
            logger.warning("generation_reaped task_id=%s type=%s started_at=%s", task.id, task.type, task.started_at)
    return reaped


async def purge_old_tasks(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    days: int,
    now: datetime | None = None,
) -> int:
    async with session_factory() as db:
        deleted = await tasks_repo.purge_old_tasks(db, now=now or datetime.now(timezone.utc), days=days)
        await db.commit()
    if deleted:
        logger.info("generation_tasks_purged count=%s days=%s", deleted, days)
    return deleted
