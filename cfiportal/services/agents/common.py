from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from cfiportal.core.errors import LLMProviderError
from cfiportal.providers.llm.base import LLMProvider, LLMResult
from cfiportal.services.telemetry import record_ai_error, record_ai_request


logger = logging.getLogger(__name__)


@dataclass
class UsageTotals:
    # Accumulates token usage across the LLM calls of one job.
    prompt_tokens: int = 0
    completion_tokens: int = 0
    model: str | None = None
    calls: int = 0

    def add(self, result: LLMResult) -> None:
        self.prompt_tokens += result.prompt_tokens
        self.completion_tokens += result.completion_tokens
        self.model = result.model
        self.calls += 1

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


@dataclass(frozen=True)
class AiCall:
    # One LLM round trip or data tool call; the job handler persists these per task.
    agent: str
    action: str
    input: str
    output: str | None
    duration_ms: int
    model: str | None = None
    prompt_tokens: int = 0
    completion_tokens: int = 0


@dataclass(frozen=True)
class AgentOutput:
    data: dict[str, Any]
    quality_score: int
    llm: LLMResult
    extras: dict[str, Any] = field(default_factory=dict)


def extract_json(text: str) -> Any:
    # Models sometimes wrap JSON in prose or fences; take the first decodable value.
    decoder = json.JSONDecoder()
    for index, char in enumerate(text):
        if char not in "{[":
            continue
        try:
            value, _end = decoder.raw_decode(text[index:])
        except ValueError:
            continue
        return value
    return None


def quality_score(data: dict[str, Any], expected_keys: Iterable[str]) -> int:
    # Share of expected fields that came back non-empty, as 0-100.
    keys = list(expected_keys)
    if not keys:
        return 100
    filled = sum(1 for key in keys if data.get(key) not in (None, "", [], {}))
    return filled * 100 // len(keys)


def _last_user_content(messages: list[dict]) -> str:
    for message in reversed(messages):
        if message.get("role") == "user":
            return str(message.get("content", ""))
    return ""


class BaseAgent:
    name = "agent"

    def __init__(
        self,
        llm: LLMProvider,
        *,
        tenant_id: int | str = "unknown",
        call_log: list[AiCall] | None = None,
        time_source: Callable[[], float] = time.monotonic,
    ) -> None:
        self._llm = llm
        self._tenant_id = tenant_id
        self._time = time_source
        self.usage = UsageTotals()
        self.calls: list[AiCall] = call_log if call_log is not None else []

    def elapsed_ms(self, start: float) -> int:
        return int((self._time() - start) * 1000)

    async def ask(self, system: str, user: str, *, json_mode: bool = False, temperature: float = 0.7) -> LLMResult:
        messages = [{"role": "system", "content": system}, {"role": "user", "content": user}]
        return await self.ask_messages(messages, json_mode=json_mode, temperature=temperature)

    async def ask_messages(
        self,
        messages: list[dict],
        *,
        json_mode: bool = False,
        temperature: float = 0.7,
    ) -> LLMResult:
        prompt = _last_user_content(messages)
        start = self._time()
        try:
            result = await self._llm.complete(messages, temperature=temperature, json_mode=json_mode)
        except LLMProviderError as exc:
            record_ai_error(f"{self.name}.provider")
            self.calls.append(
                AiCall(self.name, "error", prompt, str(exc) or type(exc).__name__, self.elapsed_ms(start))
            )
            raise
        self.usage.add(result)
        self.calls.append(
            AiCall(
                self.name,
                "query",
                prompt,
                result.text,
                self.elapsed_ms(start),
                model=result.model,
                prompt_tokens=result.prompt_tokens,
                completion_tokens=result.completion_tokens,
            )
        )
        record_ai_request(model=result.model, tenant_id=self._tenant_id, tokens=result.total_tokens)
        return result

    async def ask_json(self, system: str, user: str, *, temperature: float = 0.7) -> tuple[dict[str, Any], LLMResult]:
        result = await self.ask(system, user, json_mode=True, temperature=temperature)
        value = extract_json(result.text)
        if not isinstance(value, dict):
            record_ai_error(f"{self.name}.invalid_json")
            logger.warning("agent_invalid_json agent=%s preview=%s", self.name, result.text[:120])
            raise LLMProviderError(f"{self.name} returned no JSON object")
        return value, result
