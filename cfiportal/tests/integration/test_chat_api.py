from __future__ import annotations

from uuid import uuid4

import pytest
from httpx import AsyncClient

from cfiportal.persistence.db import SessionLocal
from cfiportal.persistence.repos import chat as chat_repo
from cfiportal.services.pubsub import MemoryPubSub
from cfiportal.tests.utils.cfi import login
from cfiportal.tests.utils.db import seed_user


async def _ask(client: AsyncClient, conversation_id: str, question: str, context: str = "stocks"):
    return await client.post(
        f"/chat/{context}/stream",
        json={"question": question, "conversationId": conversation_id},
    )


@pytest.mark.asyncio
async def test_question_is_answered_and_conversation_recorded(client: AsyncClient, pubsub: MemoryPubSub) -> None:
    await login(client)
    conversation_id = str(uuid4())

    response = await _ask(client, conversation_id, "Quels articles sont en alerte ?")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "streaming_started"
    assert body["conversationId"] == conversation_id
    assert body["topic"] == f"chat/{conversation_id}"
    event_types = [event["type"] for event in pubsub.events(body["topic"])]
    assert event_types[0] == "started"
    assert "chunk" in event_types
    assert event_types[-1] == "completed"

    listed = (await client.get("/chat/conversations", params={"context": "stocks"})).json()
    assert [item["id"] for item in listed["conversations"]] == [conversation_id]
    assert listed["conversations"][0]["title"] == "Quels articles sont en alerte ?"

    messages = (await client.get(f"/chat/conversations/{conversation_id}/messages")).json()["messages"]
    assert [message["role"] for message in messages] == ["user", "assistant"]
    assert messages[0]["id"] == body["messageId"]


@pytest.mark.asyncio
async def test_follow_up_questions_extend_the_same_conversation(client: AsyncClient) -> None:
    await login(client)
    conversation_id = str(uuid4())

    await _ask(client, conversation_id, "Bonjour")
    await _ask(client, conversation_id, "Et les factures ?")

    messages = (await client.get(f"/chat/conversations/{conversation_id}/messages")).json()["messages"]
    assert [message["role"] for message in messages] == ["user", "assistant", "user", "assistant"]
    listed = (await client.get("/chat/conversations")).json()["conversations"]
    assert len(listed) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [{"conversationId": "c-1"}, {"question": "   ", "conversationId": "c-1"}, {"question": "Bonjour"}],
)
async def test_question_and_conversation_are_required(client: AsyncClient, payload: dict) -> None:
    await login(client)

    response = await client.post("/chat/stocks/stream", json=payload)

    assert response.status_code == 400
    assert response.json()["code"] == "BAD_REQUEST"


@pytest.mark.asyncio
async def test_unknown_chat_context_is_rejected(client: AsyncClient) -> None:
    await login(client)

    response = await _ask(client, "c-1", "Bonjour", context="meteo")

    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_CHAT_CONTEXT"


@pytest.mark.asyncio
async def test_conversation_owned_by_someone_else_is_not_found(client: AsyncClient) -> None:
    await login(client)
    await seed_user(user_id=99, home_division=10)
    async with SessionLocal() as session:
        await chat_repo.get_or_create_conversation(
            session, "shared-id", user_id=99, tenant_id=10, context="general", question="Secret"
        )
        await session.commit()

    response = await _ask(client, "shared-id", "Bonjour", context="general")
    messages = await client.get("/chat/conversations/shared-id/messages")

    assert response.status_code == 404
    assert messages.status_code == 404


@pytest.mark.asyncio
async def test_favorite_toggle_and_soft_delete(client: AsyncClient) -> None:
    await login(client)
    conversation_id = str(uuid4())
    await _ask(client, conversation_id, "Bonjour", context="general")

    first = (await client.post(f"/chat/conversations/{conversation_id}/favorite")).json()
    second = (await client.post(f"/chat/conversations/{conversation_id}/favorite")).json()
    deleted = await client.delete(f"/chat/conversations/{conversation_id}")

    assert (first["is_favorite"], second["is_favorite"]) == (True, False)
    assert deleted.json() == {"success": True}
    assert (await client.get("/chat/conversations")).json()["conversations"] == []
    assert (await client.get(f"/chat/conversations/{conversation_id}/messages")).status_code == 404
