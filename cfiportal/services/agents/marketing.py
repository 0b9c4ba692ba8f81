from __future__ import annotations

import logging
from typing import Any

from cfiportal.core.errors import LLMProviderError
from cfiportal.domain.models import Project
from cfiportal.services.agents import prompts
from cfiportal.services.agents.common import AgentOutput, BaseAgent, quality_score


logger = logging.getLogger(__name__)

PERSONA_KEYS = ("name", "age", "job", "description", "goals", "pain_points", "channels")
STRATEGY_KEYS = ("positioning", "key_messages", "channels", "timeline", "budget_allocation", "kpis")
CONTENT_KEYS = ("title", "body", "call_to_action")


class PersonaGeneratorAgent(BaseAgent):
    name = "persona_generator"

    async def generate_persona(
        self,
        project: Project,
        *,
        index: int,
        total: int,
        additional_context: str | None = None,
    ) -> AgentOutput:
        data, result = await self.ask_json(
            prompts.PERSONA_SYSTEM,
            prompts.persona_prompt(project, index, total, additional_context),
            temperature=0.9,
        )
        return AgentOutput(data=data, quality_score=quality_score(data, PERSONA_KEYS), llm=result)


class StrategyAnalystAgent(BaseAgent):
    name = "strategy_analyst"

    async def detect_competitors(self, project: Project) -> list[dict[str, Any]]:
        try:
            data, _result = await self.ask_json(prompts.COMPETITOR_SYSTEM, prompts.competitor_prompt(project), temperature=0.3)
        except LLMProviderError as exc:
            # Competitor analysis is optional input to the strategy.
            logger.warning("competitor_detection_failed project_id=%s error=%s", project.id, exc)
            return []
        competitors = data.get("competitors")
        if not isinstance(competitors, list):
            return []
        return [item for item in competitors if isinstance(item, dict) and item.get("name")][:5]

    async def generate_strategy(
        self,
        project: Project,
        *,
        personas: list[dict[str, Any]],
        competitors: list[dict[str, Any]],
        focus_channels: list[str],
        additional_context: str | None = None,
    ) -> AgentOutput:
        data, result = await self.ask_json(
            prompts.STRATEGY_SYSTEM,
            prompts.strategy_prompt(project, personas, competitors, focus_channels, additional_context),
            temperature=0.5,
        )
        return AgentOutput(data=data, quality_score=quality_score(data, STRATEGY_KEYS), llm=result)


class ContentCreatorAgent(BaseAgent):
    name = "content_creator"

    async def create_content(
        self,
        project: Project,
        *,
        strategy: dict[str, Any] | None,
        asset_type: str,
        variation: int,
        tone_of_voice: str | None = None,
        additional_context: str | None = None,
    ) -> AgentOutput:
        data, result = await self.ask_json(
            prompts.CONTENT_SYSTEM,
            prompts.content_prompt(project, strategy, asset_type, variation, tone_of_voice, additional_context),
            temperature=0.8,
        )
        return AgentOutput(data=data, quality_score=quality_score(data, CONTENT_KEYS), llm=result)
