from __future__ import annotations

import asyncio

import pytest

from cfiportal.services.generation.listener import TIMEOUT_MESSAGE, listen_progress
from cfiportal.services.generation.progress import (
    COMPLETED,
    FAILED,
    ITEM_COMPLETED,
    STARTED,
    ProgressTracker,
    progress_percent,
)
from cfiportal.services.pubsub import MemoryPubSub


def test_progress_percent_floors() -> None:
    assert progress_percent(1, 3) == 33
    assert progress_percent(2, 3) == 66
    assert progress_percent(3, 3) == 100
    assert progress_percent(0, 0) == 100
    assert progress_percent(5, 3) == 100


def test_tracker_counts_each_item_once_under_replay() -> None:
    tracker = ProgressTracker()
    tracker.apply({"type": STARTED, "total": 3})
    tracker.apply({"type": ITEM_COMPLETED, "item_key": "persona-1", "total": 3})
    tracker.apply({"type": ITEM_COMPLETED, "item_key": "persona-1", "total": 3})
    snapshot = tracker.apply({"type": ITEM_COMPLETED, "item_key": "persona-2", "total": 3})

    assert snapshot["completed"] == 2
    assert snapshot["progress"] == 66
    assert snapshot["status"] == "processing"


def test_tracker_keeps_first_terminal_event() -> None:
    tracker = ProgressTracker(total=2)
    tracker.apply({"type": COMPLETED})
    snapshot = tracker.apply({"type": FAILED, "message": "late"})

    assert snapshot["status"] == COMPLETED
    assert snapshot["progress"] == 100
    assert snapshot["message"] is None


@pytest.mark.asyncio
async def test_listener_stops_on_terminal_event() -> None:
    pubsub = MemoryPubSub()

    async def publish_later() -> None:
        await asyncio.sleep(0.05)
        await pubsub.publish("tasks/t1", STARTED, {"total": 2})
        await pubsub.publish("tasks/t1", ITEM_COMPLETED, {"item_key": "a", "total": 2})
        await pubsub.publish("tasks/t1", ITEM_COMPLETED, {"item_key": "b", "total": 2})
        await pubsub.publish("tasks/t1", COMPLETED, {})

    publisher = asyncio.create_task(publish_later())
    snapshots = [item async for item in listen_progress(pubsub, "tasks/t1", timeout_s=5, poll_s=0.05)]
    await publisher

    assert [item["event"] for item in snapshots] == [STARTED, ITEM_COMPLETED, ITEM_COMPLETED, COMPLETED]
    assert [item["progress"] for item in snapshots] == [0, 50, 100, 100]


@pytest.mark.asyncio
async def test_listener_times_out_without_failing_the_job() -> None:
    pubsub = MemoryPubSub()

    snapshots = [item async for item in listen_progress(pubsub, "tasks/t2", timeout_s=0.1, poll_s=0.02)]

    assert len(snapshots) == 1
    assert snapshots[0]["status"] == "timeout"
    assert snapshots[0]["message"] == TIMEOUT_MESSAGE


@pytest.mark.asyncio
async def test_listener_returns_stored_final_state_once_subscribed() -> None:
    pubsub = MemoryPubSub()
    subscribed_during_check: list[bool] = []

    async def stored_final() -> dict:
        subscribed_during_check.append(bool(pubsub._subscribers.get("tasks/t3")))
        return {"status": "completed", "progress": 100, "event": "completed"}

    snapshots = [
        item
        async for item in listen_progress(pubsub, "tasks/t3", timeout_s=5, poll_s=0.02, stored_final=stored_final)
    ]

    assert snapshots == [{"status": "completed", "progress": 100, "event": "completed"}]
    assert subscribed_during_check == [True]


@pytest.mark.asyncio
async def test_listener_keeps_listening_when_stored_state_is_not_final() -> None:
    pubsub = MemoryPubSub()

    async def stored_final() -> None:
        await pubsub.publish("tasks/t4", COMPLETED, {})
        return None

    snapshots = [
        item
        async for item in listen_progress(pubsub, "tasks/t4", timeout_s=5, poll_s=0.02, stored_final=stored_final)
    ]

    assert [item["event"] for item in snapshots] == [COMPLETED]
