from __future__ import annotations

import asyncio
import json
from types import SimpleNamespace

import pytest
from httpx import AsyncClient

from cfiportal.persistence.db import SessionLocal
from cfiportal.persistence.repos import tasks as tasks_repo
from cfiportal.services.generation.progress import COMPLETED, ITEM_COMPLETED, STARTED, task_topic
from cfiportal.services.pubsub import MemoryPubSub
from cfiportal.tests.utils.cfi import HOME_DIVISION, USER_ID, login
from cfiportal.tests.utils.db import seed_project


def _sse_payloads(body: str) -> list[dict]:
    frames = [frame for frame in body.split("\n\n") if frame.strip()]
    payloads = []
    for frame in frames:
        lines = frame.split("\n")
        assert lines[0] == "event: message"
        assert lines[1].startswith("data: ")
        payloads.append(json.loads(lines[1][len("data: ") :]))
    return payloads


@pytest.mark.asyncio
async def test_finished_task_replays_a_single_final_snapshot(client: AsyncClient) -> None:
    await login(client)
    project_id = await seed_project()
    accepted = (await client.post(f"/marketing/projects/{project_id}/personas/generate", json={})).json()

    response = await client.get(f"/events/{accepted['topic']}")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    payloads = _sse_payloads(response.text)
    assert len(payloads) == 1
    assert payloads[0]["status"] == "completed"
    assert payloads[0]["progress"] == 100
    assert payloads[0]["task_id"] == accepted["task_id"]


@pytest.mark.asyncio
async def test_running_task_streams_progress_until_terminal_event(
    client: AsyncClient, pubsub: MemoryPubSub
) -> None:
    await login(client)
    topic = task_topic("live-task")
    async with SessionLocal() as session:
        await tasks_repo.create_task(
            session,
            task_id="live-task",
            name="personas for Rentree",
            task_type="personas",
            user_id=USER_ID,
            tenant_id=HOME_DIVISION,
            topic=topic,
        )
        await session.commit()

    request = asyncio.create_task(client.get(f"/events/{topic}"))
    for _ in range(100):
        if pubsub._subscribers.get(topic):
            break
        await asyncio.sleep(0.01)
    await pubsub.publish(topic, STARTED, {"task_id": "live-task", "total": 2})
    await pubsub.publish(topic, ITEM_COMPLETED, {"task_id": "live-task", "item_key": "persona-1", "total": 2})
    await pubsub.publish(topic, ITEM_COMPLETED, {"task_id": "live-task", "item_key": "persona-1", "total": 2})
    await pubsub.publish(topic, COMPLETED, {"task_id": "live-task"})
    response = await asyncio.wait_for(request, timeout=5)

    payloads = _sse_payloads(response.text)
    assert [payload["event"] for payload in payloads] == [STARTED, ITEM_COMPLETED, ITEM_COMPLETED, COMPLETED]
    assert [payload["progress"] for payload in payloads[:3]] == [0, 50, 50]
    assert payloads[-1]["status"] == "completed"


@pytest.mark.asyncio
async def test_unknown_topic_is_not_found(client: AsyncClient) -> None:
    await login(client)

    response = await client.get("/events/tasks/nope")

    assert response.status_code == 404
    assert response.json()["code"] == "NOT_FOUND"


@pytest.mark.asyncio
async def test_events_require_login(client: AsyncClient) -> None:
    response = await client.get("/events/tasks/nope")

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_task_finishing_before_subscription_still_ends_the_stream(
    client: AsyncClient, monkeypatch
) -> None:
    await login(client)
    topic = task_topic("race-task")
    async with SessionLocal() as session:
        await tasks_repo.create_task(
            session,
            task_id="race-task",
            name="personas for Rentree",
            task_type="personas",
            user_id=USER_ID,
            tenant_id=HOME_DIVISION,
            topic=topic,
        )
        await tasks_repo.transition_status(
            session, "race-task", from_status=tasks_repo.PENDING, to_status=tasks_repo.COMPLETED
        )
        await session.commit()

    async def _seen_while_processing(session, topic, *, user_id, tenant_id):
        # The lookup ran just before the job committed its terminal state.
        return SimpleNamespace(id="race-task", status=tasks_repo.PROCESSING)

    monkeypatch.setattr(tasks_repo, "latest_task_for_topic", _seen_while_processing)

    response = await asyncio.wait_for(client.get(f"/events/{topic}"), timeout=5)

    payloads = _sse_payloads(response.text)
    assert len(payloads) == 1
    assert payloads[0]["status"] == "completed"
    assert payloads[0]["task_id"] == "race-task"
