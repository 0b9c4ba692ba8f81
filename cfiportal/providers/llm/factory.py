from __future__ import annotations

from cfiportal.core.config import get_settings
from cfiportal.providers.llm.base import LLMProvider
from cfiportal.providers.llm.fake import FakeLLMProvider
from cfiportal.providers.llm.mistral import MistralProvider


def get_llm_provider() -> LLMProvider:
    settings = get_settings()
    provider = (settings.llm_provider or "mistral").lower()

    if provider == "fake":
        return FakeLLMProvider()
    return MistralProvider()
