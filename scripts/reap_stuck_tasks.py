from __future__ import annotations

import asyncio

from cfiportal.core.config import get_settings
from cfiportal.core.logging import configure_logging
from cfiportal.persistence.db import SessionLocal
from cfiportal.services.generation.reaper import reap_stuck_tasks
from cfiportal.services.pubsub import get_pubsub


async def reap() -> None:
    # Same pass as the worker cron, for when no worker is running.
    settings = get_settings()
    reaped = await reap_stuck_tasks(
        SessionLocal,
        get_pubsub(),
        stuck_after_minutes=settings.generation_stuck_after_minutes,
    )
    print(f"reaped_generation_tasks={reaped}")


if __name__ == "__main__":
    configure_logging()
    asyncio.run(reap())
