from __future__ import annotations

from typing import Any
from uuid import uuid4

from fastapi import APIRouter, Body, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from cfiportal.apps.api.deps import CurrentUser, get_db, require_user
from cfiportal.core.errors import NotFoundError
from cfiportal.domain.models import ChatConversation
from cfiportal.persistence.repos import chat as chat_repo
from cfiportal.services.agents.chat import CHAT_REGISTRY
from cfiportal.services.generation.queue import dispatch_generation

router = APIRouter(prefix="/chat", tags=["chat"])


def _bad_request(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail={"code": "BAD_REQUEST", "message": message},
    )


def _conversation_payload(conversation: ChatConversation) -> dict[str, Any]:
    return {
        "id": conversation.id,
        "context": conversation.context,
        "title": conversation.title,
        "is_favorite": conversation.is_favorite,
        "updated_at": conversation.updated_at.isoformat() if conversation.updated_at else None,
    }


async def _owned_conversation(db: AsyncSession, conversation_id: str, user: CurrentUser) -> ChatConversation:
    conversation = await chat_repo.get_conversation(
        db, conversation_id, user_id=user.user_id, tenant_id=user.tenant_id
    )
    if conversation is None:
        raise NotFoundError(f"conversation {conversation_id} not found")
    return conversation


@router.post("/{context}/stream")
async def stream_answer(
    context: str,
    payload: dict[str, Any] = Body(...),
    user: CurrentUser = Depends(require_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    CHAT_REGISTRY.get(context)
    question = payload.get("question")
    conversation_id = payload.get("conversationId")
    if not isinstance(question, str) or not question.strip():
        raise _bad_request("question is required")
    if not isinstance(conversation_id, str) or not conversation_id.strip():
        raise _bad_request("conversationId is required")

    existing = await chat_repo.get_conversation(
        db, conversation_id, user_id=user.user_id, tenant_id=user.tenant_id
    )
    if existing is None and await chat_repo.conversation_id_taken(db, conversation_id):
        raise NotFoundError(f"conversation {conversation_id} not found")

    message_id = str(uuid4())
    dispatched = await dispatch_generation(
        db,
        "chat",
        user_id=user.user_id,
        tenant_id=user.tenant_id,
        cfi_token=user.token,
        params={
            "question": question.strip(),
            "context": context,
            "conversation_id": conversation_id,
            "message_id": message_id,
        },
        name=f"chat {context}",
    )
    return {
        "success": True,
        "status": "streaming_started",
        "messageId": message_id,
        "conversationId": conversation_id,
        "task_id": dispatched.task_id,
        "topic": dispatched.topic,
    }


@router.get("/conversations")
async def list_conversations(
    context: str | None = None,
    user: CurrentUser = Depends(require_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    conversations = await chat_repo.list_conversations(
        db, user_id=user.user_id, tenant_id=user.tenant_id, context=context
    )
    return {"success": True, "conversations": [_conversation_payload(item) for item in conversations]}


@router.get("/conversations/{conversation_id}/messages")
async def list_messages(
    conversation_id: str,
    user: CurrentUser = Depends(require_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    conversation = await _owned_conversation(db, conversation_id, user)
    messages = await chat_repo.list_messages(db, conversation.id, limit=200)
    return {
        "success": True,
        "conversation": _conversation_payload(conversation),
        "messages": [
            {"id": message.id, "role": message.role, "content": message.content, "metadata": message.metadata_json}
            for message in messages
        ],
    }


@router.post("/conversations/{conversation_id}/favorite")
async def toggle_favorite(
    conversation_id: str,
    user: CurrentUser = Depends(require_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    conversation = await _owned_conversation(db, conversation_id, user)
    is_favorite = await chat_repo.toggle_favorite(db, conversation)
    await db.commit()
    return {"success": True, "is_favorite": is_favorite}


@router.delete("/conversations/{conversation_id}")
async def delete_conversation(
    conversation_id: str,
    user: CurrentUser = Depends(require_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    conversation = await _owned_conversation(db, conversation_id, user)
    await chat_repo.soft_delete(db, conversation)
    await db.commit()
    return {"success": True}
