from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from cfiportal.core.config import get_settings
from cfiportal.core.errors import LLMProviderError
from cfiportal.providers.llm.base import LLMResult


logger = logging.getLogger(__name__)


class MistralProvider:
    def __init__(
        self,
        *,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
        timeout_s: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self._api_key = api_key if api_key is not None else settings.mistral_api_key
        self.model = model or settings.mistral_model
        self._base_url = (base_url or settings.mistral_base_url).rstrip("/")
        self._timeout_s = timeout_s if timeout_s is not None else settings.mistral_timeout_s
        self._transport = transport

    async def complete(
        self,
        messages: list[dict],
        *,
        temperature: float = 0.7,
        max_tokens: int | None = None,
        json_mode: bool = False,
    ) -> LLMResult:
        if not self._api_key:
            raise LLMProviderError("MISTRAL_API_KEY is not configured")
        body: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": temperature,
        }
        if max_tokens is not None:
            body["max_tokens"] = max_tokens
        if json_mode:
            body["response_format"] = {"type": "json_object"}
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        start = time.monotonic()
        try:
            async with httpx.AsyncClient(timeout=self._timeout_s, transport=self._transport) as client:
                response = await client.post(f"{self._base_url}/v1/chat/completions", json=body, headers=headers)
        except httpx.TransportError as exc:
            raise LLMProviderError(f"Mistral unreachable: {type(exc).__name__}") from exc
        latency_ms = (time.monotonic() - start) * 1000.0
        if response.status_code >= 400:
            logger.warning(
                "mistral_error status=%s latency_ms=%.1f body=%s",
                response.status_code,
                latency_ms,
                response.text[:200],
            )
            raise LLMProviderError(f"Mistral request failed ({response.status_code})")
        try:
            payload = response.json()
            text = payload["choices"][0]["message"]["content"] or ""
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise LLMProviderError("Mistral response is malformed") from exc
        usage = payload.get("usage") or {}
        logger.debug("mistral_completion model=%s latency_ms=%.1f", payload.get("model"), latency_ms)
        return LLMResult(
            text=text,
            model=str(payload.get("model") or self.model),
            prompt_tokens=int(usage.get("prompt_tokens") or 0),
            completion_tokens=int(usage.get("completion_tokens") or 0),
        )
