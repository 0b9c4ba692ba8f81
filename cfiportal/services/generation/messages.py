from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class GenerationMessage(BaseModel):
    # Immutable job payload; the token is a snapshot taken at dispatch time.
    task_id: str
    user_id: int
    tenant_id: int
    cfi_token: str | None = None
    additional_context: str | None = None


class GeneratePersonasMessage(GenerationMessage):
    project_id: str
    number_of_personas: int = Field(default=3, ge=1, le=10)


class GenerateStrategyMessage(GenerationMessage):
    project_id: str
    include_competitor_analysis: bool = True
    focus_channels: list[str] = Field(default_factory=list)


class GenerateAssetsMessage(GenerationMessage):
    project_id: str
    asset_types: list[str] = Field(min_length=1)
    number_of_variations: int = Field(default=1, ge=1, le=5)
    tone_of_voice: str | None = None
    image_options: dict[str, Any] = Field(default_factory=dict)


class ChatStreamMessage(GenerationMessage):
    question: str = Field(min_length=1)
    context: str
    conversation_id: str
    message_id: str
