from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cfiportal.domain.models import ChatConversation, ChatMessage


TITLE_MAX_CHARS = 50


def title_from_question(question: str) -> str:
    text = " ".join(question.split())
    if len(text) > TITLE_MAX_CHARS:
        return text[: TITLE_MAX_CHARS - 3] + "..."
    return text


async def get_conversation(
    session: AsyncSession,
    conversation_id: str,
    *,
    user_id: int,
    tenant_id: int,
) -> ChatConversation | None:
    result = await session.execute(
        select(ChatConversation).where(
            ChatConversation.id == conversation_id,
            ChatConversation.user_id == user_id,
            ChatConversation.tenant_id == tenant_id,
            ChatConversation.is_deleted.is_(False),
        )
    )
    return result.scalar_one_or_none()


async def get_or_create_conversation(
    session: AsyncSession,
    conversation_id: str,
    *,
    user_id: int,
    tenant_id: int,
    context: str,
    question: str,
) -> ChatConversation:
    existing = await get_conversation(session, conversation_id, user_id=user_id, tenant_id=tenant_id)
    if existing is not None:
        return existing
    conversation = ChatConversation(
        id=conversation_id,
        user_id=user_id,
        tenant_id=tenant_id,
        context=context,
        title=title_from_question(question),
    )
    session.add(conversation)
    await session.flush()
    return conversation


async def add_message(
    session: AsyncSession,
    conversation_id: str,
    role: str,
    content: str,
    *,
    message_id: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> ChatMessage:
    message = ChatMessage(
        conversation_id=conversation_id,
        role=role,
        content=content,
        metadata_json=metadata or {},
    )
    if message_id:
        message.id = message_id
    session.add(message)
    await session.flush()
    return message


async def list_messages(session: AsyncSession, conversation_id: str, *, limit: int = 20) -> list[ChatMessage]:
    result = await session.execute(
        select(ChatMessage)
        .where(ChatMessage.conversation_id == conversation_id)
        .order_by(ChatMessage.created_at.desc())
        .limit(limit)
    )
    return list(reversed(result.scalars().all()))


async def list_conversations(
    session: AsyncSession,
    *,
    user_id: int,
    tenant_id: int,
    context: str | None = None,
    limit: int = 50,
) -> list[ChatConversation]:
    stmt = select(ChatConversation).where(
        ChatConversation.user_id == user_id,
        ChatConversation.tenant_id == tenant_id,
        ChatConversation.is_deleted.is_(False),
    )
    if context:
        stmt = stmt.where(ChatConversation.context == context)
    stmt = stmt.order_by(ChatConversation.is_favorite.desc(), ChatConversation.updated_at.desc()).limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def toggle_favorite(session: AsyncSession, conversation: ChatConversation) -> bool:
    conversation.is_favorite = not conversation.is_favorite
    await session.flush()
    return conversation.is_favorite


async def soft_delete(session: AsyncSession, conversation: ChatConversation) -> None:
    conversation.is_deleted = True
    await session.flush()


async def conversation_id_taken(session: AsyncSession, conversation_id: str) -> bool:
    # Ids are client-chosen; a row owned by anyone else must not be reused.
    result = await session.execute(select(ChatConversation.id).where(ChatConversation.id == conversation_id))
    return result.scalar_one_or_none() is not None
