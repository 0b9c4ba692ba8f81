from __future__ import annotations

import argparse
import asyncio

from cfiportal.core.config import get_settings
from cfiportal.persistence.db import SessionLocal
from cfiportal.services.generation.reaper import purge_old_tasks


async def prune(days: int) -> None:
    deleted = await purge_old_tasks(SessionLocal, days=days)
    print(f"pruned_generation_tasks={deleted} days={days}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Delete finished generation tasks older than N days.")
    parser.add_argument("--days", type=int, default=get_settings().generation_task_retention_days)
    args = parser.parse_args()
    asyncio.run(prune(args.days))
