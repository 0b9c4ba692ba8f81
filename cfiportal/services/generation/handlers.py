from __future__ import annotations

import logging
import time
import traceback
from datetime import datetime, timezone
from typing import Any, Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cfiportal.core.config import get_settings
from cfiportal.core.errors import (
    ChatContextError,
    ErrorKind,
    LLMProviderError,
    NotFoundError,
    RemoteApiError,
)
from cfiportal.domain.models import Project
from cfiportal.persistence.db import SessionLocal
from cfiportal.persistence.repos import ai_logs as ai_logs_repo
from cfiportal.persistence.repos import chat as chat_repo
from cfiportal.persistence.repos import projects as projects_repo
from cfiportal.persistence.repos import tasks as tasks_repo
from cfiportal.providers.llm.base import LLMProvider
from cfiportal.providers.llm.factory import get_llm_provider
from cfiportal.services.agents.chat import CHAT_REGISTRY, ChatAgent, ChatAgentRegistry, ChatDataServices
from cfiportal.services.agents.common import AiCall, UsageTotals
from cfiportal.services.agents.marketing import (
    ContentCreatorAgent,
    PersonaGeneratorAgent,
    StrategyAnalystAgent,
)
from cfiportal.services.api.factory import build_api_services
from cfiportal.services.cache import CacheBackend
from cfiportal.services.cfi.client import RemoteApiClient
from cfiportal.services.cfi.tenant import TenantContext
from cfiportal.services.cfi.token_context import AsyncTokenContext
from cfiportal.services.generation.messages import (
    ChatStreamMessage,
    GenerateAssetsMessage,
    GeneratePersonasMessage,
    GenerateStrategyMessage,
    GenerationMessage,
)
from cfiportal.services.generation.progress import (
    COMPLETED,
    FAILED,
    ITEM_COMPLETED,
    STARTED,
    chat_topic,
    progress_percent,
    task_topic,
)
from cfiportal.services.pubsub import PubSub, get_pubsub
from cfiportal.services.telemetry import record_task_terminal


logger = logging.getLogger(__name__)

SKIPPED = "skipped"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def user_message_for(exc: Exception) -> str:
    # Client-facing text only; the raw error is stored on the task row.
    if isinstance(exc, RemoteApiError):
        if exc.kind is ErrorKind.AUTH_REQUIRED:
            return "Your CFI session has expired, please log in again."
        if exc.kind is ErrorKind.ACCESS_DENIED:
            return "You do not have access to this data."
        return "The CFI service is unavailable, please try again later."
    if isinstance(exc, (ChatContextError, NotFoundError)):
        return str(exc)
    if isinstance(exc, LLMProviderError):
        return "The AI service is unavailable, please try again later."
    return "Generation failed, please try again."


def estimate_cost(usage: UsageTotals) -> float:
    settings = get_settings()
    return round(
        usage.prompt_tokens / 1000 * settings.llm_cost_per_1k_input
        + usage.completion_tokens / 1000 * settings.llm_cost_per_1k_output,
        6,
    )


class JobContext:
    """Per-job state: a fresh token context, tenant override and progress publisher."""

    def __init__(self, message: GenerationMessage, topic: str, pubsub: PubSub, total: int) -> None:
        self.message = message
        self.topic = topic
        self.total = total
        self.completed = 0
        self.tokens = AsyncTokenContext()
        self.tenant = TenantContext()
        self.ai_calls: list[AiCall] = []
        self._pubsub = pubsub

    @property
    def tenant_id(self) -> int:
        return self.tenant.get_current_tenant()

    def base_payload(self) -> dict[str, Any]:
        return {"task_id": self.message.task_id, "tenant_id": self.tenant_id}

    async def publish(self, event_type: str, payload: dict[str, Any]) -> None:
        await self._pubsub.publish(self.topic, event_type, {**self.base_payload(), **payload})

    async def item_completed(self, item_key: str, data: dict[str, Any] | None = None) -> None:
        self.completed += 1
        await self.publish(
            ITEM_COMPLETED,
            {
                "item_key": item_key,
                "completed": self.completed,
                "total": self.total,
                "progress": progress_percent(self.completed, self.total),
                "data": data or {},
            },
        )


class GenerationHandler:
    """Shared lifecycle: claim, execute, then exactly one terminal transition.

    Both terminal transitions are conditional on ``processing`` so the reaper
    and the handler can race without ever publishing two terminal events.
    """

    task_type = ""
    agent_class = ""

    def __init__(
        self,
        *,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        pubsub: PubSub | None = None,
        llm: LLMProvider | None = None,
        client: RemoteApiClient | None = None,
        cache: CacheBackend | None = None,
        time_source: Callable[[], float] = time.monotonic,
    ) -> None:
        self._session_factory = session_factory or SessionLocal
        self._pubsub = pubsub or get_pubsub()
        self._llm = llm or get_llm_provider()
        self._client = client
        self._cache = cache
        self._time = time_source

    def topic_for(self, message: GenerationMessage) -> str:
        return task_topic(message.task_id)

    def total_items(self, message: GenerationMessage) -> int:
        return 1

    def started_payload(self, message: GenerationMessage) -> dict[str, Any]:
        return {}

    async def execute(self, db: AsyncSession, job: JobContext) -> tuple[dict[str, Any], UsageTotals]:
        raise NotImplementedError

    async def handle(self, message: GenerationMessage) -> str:
        job = JobContext(message, self.topic_for(message), self._pubsub, self.total_items(message))
        # The token snapshot travels with the message; it is never read from a shared context.
        job.tokens.set_token(message.cfi_token)
        job.tenant.set_async_context(user_id=message.user_id, tenant_id=message.tenant_id)
        start = self._time()
        try:
            async with self._session_factory() as db:
                claimed = await tasks_repo.transition_status(
                    db,
                    message.task_id,
                    from_status=tasks_repo.PENDING,
                    to_status=tasks_repo.PROCESSING,
                    values={"started_at": _utc_now()},
                )
                await db.commit()
                if not claimed:
                    # Replayed or already reaped: nothing left to do.
                    logger.info("generation_skipped task_id=%s type=%s", message.task_id, self.task_type)
                    return SKIPPED
                logger.info("generation_started task_id=%s type=%s", message.task_id, self.task_type)
                await job.publish(
                    STARTED,
                    {"total": job.total, "stage": self.task_type, **self.started_payload(message)},
                )
                try:
                    result, usage = await self.execute(db, job)
                except Exception as exc:  # noqa: BLE001 - every failure becomes a terminal event
                    await db.rollback()
                    logger.exception("generation_failed task_id=%s type=%s", message.task_id, self.task_type)
                    return await self._finish_failed(db, job, exc, start)
                return await self._finish_completed(db, job, result, usage, start)
        finally:
            job.tokens.clear_token()
            job.tenant.clear()

    async def _finish_completed(
        self,
        db: AsyncSession,
        job: JobContext,
        result: dict[str, Any],
        usage: UsageTotals,
        start: float,
    ) -> str:
        duration_ms = int((self._time() - start) * 1000)
        won = await tasks_repo.transition_status(
            db,
            job.message.task_id,
            from_status=tasks_repo.PROCESSING,
            to_status=tasks_repo.COMPLETED,
            values={
                "result_json": result,
                "tokens_input": usage.prompt_tokens,
                "tokens_output": usage.completion_tokens,
                "tokens_total": usage.total_tokens,
                "cost": estimate_cost(usage),
                "model_used": usage.model,
                "duration_ms": duration_ms,
                "completed_at": _utc_now(),
            },
        )
        await self._record_ai_calls(db, job)
        await db.commit()
        if not won:
            logger.warning("generation_terminal_lost task_id=%s status=completed", job.message.task_id)
            return SKIPPED
        record_task_terminal(task_type=self.task_type, status=COMPLETED)
        await job.publish(
            COMPLETED,
            {"result": result, "count": job.completed, "duration_ms": duration_ms, "model": usage.model},
        )
        logger.info(
            "generation_completed task_id=%s type=%s duration_ms=%s tokens=%s",
            job.message.task_id,
            self.task_type,
            duration_ms,
            usage.total_tokens,
        )
        return COMPLETED

    async def _finish_failed(self, db: AsyncSession, job: JobContext, exc: Exception, start: float) -> str:
        won = await tasks_repo.transition_status(
            db,
            job.message.task_id,
            from_status=tasks_repo.PROCESSING,
            to_status=tasks_repo.FAILED,
            values={
                "error_message": str(exc) or type(exc).__name__,
                "error_trace": "".join(traceback.format_exception(exc))[-8000:],
                "duration_ms": int((self._time() - start) * 1000),
                "completed_at": _utc_now(),
            },
        )
        await self._record_ai_calls(db, job)
        await db.commit()
        if not won:
            logger.warning("generation_terminal_lost task_id=%s status=failed", job.message.task_id)
            return SKIPPED
        record_task_terminal(task_type=self.task_type, status=FAILED)
        kind = exc.kind.value if isinstance(exc, RemoteApiError) else type(exc).__name__
        await job.publish(FAILED, {"message": user_message_for(exc), "error_kind": kind})
        return FAILED

    async def _record_ai_calls(self, db: AsyncSession, job: JobContext) -> None:
        # Recorded whichever side wins the terminal transition.
        count = await ai_logs_repo.record_calls(
            db,
            job.ai_calls,
            task_id=job.message.task_id,
            user_id=job.message.user_id,
            tenant_id=job.tenant_id,
        )
        if count:
            logger.debug("ai_calls_recorded task_id=%s count=%s", job.message.task_id, count)

    async def _load_project(self, db: AsyncSession, job: JobContext, project_id: str) -> Project:
        project = await projects_repo.get_project(db, project_id, tenant_id=job.tenant_id)
        if project is None:
            raise NotFoundError(f"project {project_id} not found")
        return project


class GeneratePersonasHandler(GenerationHandler):
    task_type = "personas"
    agent_class = "PersonaGeneratorAgent"

    def total_items(self, message: GeneratePersonasMessage) -> int:
        return message.number_of_personas

    def started_payload(self, message: GeneratePersonasMessage) -> dict[str, Any]:
        return {"project_id": message.project_id}

    async def execute(self, db: AsyncSession, job: JobContext) -> tuple[dict[str, Any], UsageTotals]:
        message: GeneratePersonasMessage = job.message  # type: ignore[assignment]
        project = await self._load_project(db, job, message.project_id)
        agent = PersonaGeneratorAgent(self._llm, tenant_id=job.tenant_id, call_log=job.ai_calls)
        persona_ids: list[str] = []
        for index in range(1, message.number_of_personas + 1):
            output = await agent.generate_persona(
                project,
                index=index,
                total=message.number_of_personas,
                additional_context=message.additional_context,
            )
            persona = await projects_repo.add_persona(db, project, output.data, quality_score=output.quality_score)
            await db.commit()
            persona_ids.append(persona.id)
            await job.item_completed(f"persona-{index}", {"persona_id": persona.id, "name": persona.name})
        return {"project_id": project.id, "persona_ids": persona_ids}, agent.usage


class GenerateStrategyHandler(GenerationHandler):
    task_type = "strategy"
    agent_class = "StrategyAnalystAgent"

    def total_items(self, message: GenerateStrategyMessage) -> int:
        return 2 if message.include_competitor_analysis else 1

    def started_payload(self, message: GenerateStrategyMessage) -> dict[str, Any]:
        return {"project_id": message.project_id}

    async def execute(self, db: AsyncSession, job: JobContext) -> tuple[dict[str, Any], UsageTotals]:
        message: GenerateStrategyMessage = job.message  # type: ignore[assignment]
        project = await self._load_project(db, job, message.project_id)
        agent = StrategyAnalystAgent(self._llm, tenant_id=job.tenant_id, call_log=job.ai_calls)
        competitors: list[dict[str, Any]] = []
        if message.include_competitor_analysis:
            competitors = await agent.detect_competitors(project)
            for competitor in competitors:
                await projects_repo.add_competitor(db, project, competitor)
            await db.commit()
            await job.item_completed("competitors", {"count": len(competitors)})
        personas = [
            {"name": persona.name, "job": persona.job}
            for persona in await projects_repo.list_personas(db, project.id)
        ]
        output = await agent.generate_strategy(
            project,
            personas=personas,
            competitors=competitors,
            focus_channels=message.focus_channels,
            additional_context=message.additional_context,
        )
        strategy = await projects_repo.add_strategy(db, project, output.data, quality_score=output.quality_score)
        await db.commit()
        await job.item_completed("strategy", {"strategy_id": strategy.id, "quality_score": strategy.quality_score})
        return {"project_id": project.id, "strategy_id": strategy.id, "competitors": len(competitors)}, agent.usage


class GenerateAssetsHandler(GenerationHandler):
    task_type = "assets"
    agent_class = "ContentCreatorAgent"

    def total_items(self, message: GenerateAssetsMessage) -> int:
        return len(message.asset_types) * message.number_of_variations

    def started_payload(self, message: GenerateAssetsMessage) -> dict[str, Any]:
        return {"project_id": message.project_id, "asset_types": message.asset_types}

    async def execute(self, db: AsyncSession, job: JobContext) -> tuple[dict[str, Any], UsageTotals]:
        message: GenerateAssetsMessage = job.message  # type: ignore[assignment]
        project = await self._load_project(db, job, message.project_id)
        strategy_row = await projects_repo.latest_strategy(db, project.id)
        strategy = strategy_row.content_json if strategy_row is not None else None
        agent = ContentCreatorAgent(self._llm, tenant_id=job.tenant_id, call_log=job.ai_calls)
        asset_ids: list[str] = []
        for asset_type in message.asset_types:
            for variation in range(1, message.number_of_variations + 1):
                output = await agent.create_content(
                    project,
                    strategy=strategy,
                    asset_type=asset_type,
                    variation=variation,
                    tone_of_voice=message.tone_of_voice,
                    additional_context=message.additional_context,
                )
                content = dict(output.data)
                if message.image_options:
                    content["image_options"] = message.image_options
                asset = await projects_repo.add_asset(
                    db,
                    project,
                    asset_type=asset_type,
                    variation=variation,
                    content=content,
                    quality_score=output.quality_score,
                )
                await db.commit()
                asset_ids.append(asset.id)
                await job.item_completed(
                    f"{asset_type}-{variation}",
                    {"asset_id": asset.id, "current_type": asset_type, "current_variation": variation},
                )
        return {"project_id": project.id, "asset_ids": asset_ids}, agent.usage


class ChatStreamHandler(GenerationHandler):
    task_type = "chat"
    agent_class = "ChatAgent"

    def __init__(self, *, registry: ChatAgentRegistry = CHAT_REGISTRY, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._registry = registry

    def topic_for(self, message: ChatStreamMessage) -> str:
        return chat_topic(message.conversation_id)

    def started_payload(self, message: ChatStreamMessage) -> dict[str, Any]:
        return {"conversation_id": message.conversation_id, "message_id": message.message_id}

    async def execute(self, db: AsyncSession, job: JobContext) -> tuple[dict[str, Any], UsageTotals]:
        message: ChatStreamMessage = job.message  # type: ignore[assignment]
        profile = self._registry.get(message.context)
        conversation = await chat_repo.get_or_create_conversation(
            db,
            message.conversation_id,
            user_id=message.user_id,
            tenant_id=job.tenant_id,
            context=message.context,
            question=message.question,
        )
        history = await chat_repo.list_messages(db, conversation.id)
        await chat_repo.add_message(db, conversation.id, "user", message.question, message_id=message.message_id)
        await db.commit()

        services = build_api_services(job.tokens, client=self._client, cache=self._cache)
        agent = ChatAgent(self._llm, tenant_id=job.tenant_id, call_log=job.ai_calls)
        answer = await agent.answer(
            profile,
            message.question,
            history=history,
            services=ChatDataServices(
                stocks=services.stocks,
                facturations=services.facturations,
                operations=services.operations,
            ),
            tenant_id=job.tenant_id,
        )
        chunk_size = max(1, get_settings().chat_chunk_size)
        for offset in range(0, len(answer.text), chunk_size):
            await job.publish(
                "chunk",
                {"message_id": message.message_id, "offset": offset, "content": answer.text[offset : offset + chunk_size]},
            )
        assistant = await chat_repo.add_message(
            db,
            conversation.id,
            "assistant",
            answer.text,
            metadata={
                "tools": answer.tools_used,
                "model": answer.llm.model,
                "token_usage": {
                    "prompt": answer.llm.prompt_tokens,
                    "completion": answer.llm.completion_tokens,
                    "total": answer.llm.total_tokens,
                },
            },
        )
        await db.commit()
        await job.item_completed("answer", {"message_id": assistant.id})
        return (
            {
                "conversation_id": conversation.id,
                "message_id": assistant.id,
                "tools": answer.tools_used,
                "is_favorite": conversation.is_favorite,
            },
            agent.usage,
        )


HANDLERS: dict[str, tuple[type[GenerationMessage], type[GenerationHandler]]] = {
    "personas": (GeneratePersonasMessage, GeneratePersonasHandler),
    "strategy": (GenerateStrategyMessage, GenerateStrategyHandler),
    "assets": (GenerateAssetsMessage, GenerateAssetsHandler),
    "chat": (ChatStreamMessage, ChatStreamHandler),
}


async def run_generation_job(task_type: str, payload: dict[str, Any], **handler_kwargs: Any) -> str:
    message_cls, handler_cls = HANDLERS[task_type]
    message = message_cls.model_validate(payload)
    return await handler_cls(**handler_kwargs).handle(message)
