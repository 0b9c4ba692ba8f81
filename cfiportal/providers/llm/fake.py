from __future__ import annotations

import json
from typing import Callable

from cfiportal.providers.llm.base import LLMResult


# Covers the fields every marketing agent asks for so JSON prompts always parse.
FAKE_JSON_RESPONSE = {
    "name": "Claire, responsable marketing",
    "age": 38,
    "job": "Responsable marketing",
    "description": "Pilote les campagnes locales d'un reseau de franchises.",
    "goals": ["Augmenter le trafic en magasin"],
    "pain_points": ["Budget limite"],
    "channels": ["email", "courrier"],
    "competitors": [{"name": "Concurrent A", "strengths": ["prix"], "weaknesses": ["service"]}],
    "positioning": "Proximite et reactivite",
    "key_messages": ["Simple et local"],
    "timeline": [{"month": 1, "action": "Lancement"}],
    "budget_allocation": {"email": 40, "courrier": 60},
    "kpis": ["taux de conversion"],
    "title": "Offre de rentree",
    "body": "Profitez de nos offres en magasin.",
    "call_to_action": "Je decouvre",
}


class FakeLLMProvider:
    def __init__(
        self,
        response: str | Callable[[list[dict]], str] | None = None,
        *,
        model: str = "fake-model",
    ) -> None:
        # Deterministic responses keep tests stable without external calls.
        self._response = response
        self.model = model
        self.calls: list[list[dict]] = []

    def _text(self, messages: list[dict], json_mode: bool) -> str:
        if callable(self._response):
            return self._response(messages)
        if self._response is not None:
            return self._response
        if json_mode:
            return json.dumps(FAKE_JSON_RESPONSE, ensure_ascii=False)
        return "This is a fake response."

    async def complete(
        self,
        messages: list[dict],
        *,
        temperature: float = 0.7,
        max_tokens: int | None = None,
        json_mode: bool = False,
    ) -> LLMResult:
        self.calls.append(messages)
        text = self._text(messages, json_mode)
        prompt_tokens = sum(len(str(message.get("content", "")).split()) for message in messages)
        return LLMResult(
            text=text,
            model=self.model,
            prompt_tokens=prompt_tokens,
            completion_tokens=len(text.split()),
        )
