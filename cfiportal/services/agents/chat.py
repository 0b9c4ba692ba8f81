from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Awaitable, Callable

from cfiportal.core.errors import ChatContextError
from cfiportal.domain.models import ChatMessage
from cfiportal.services.agents import prompts
from cfiportal.services.agents.common import AiCall, BaseAgent
from cfiportal.services.api.facturations import FacturationApiService
from cfiportal.services.api.operations import OperationApiService
from cfiportal.services.api.stocks import StockApiService
from cfiportal.providers.llm.base import LLMResult


logger = logging.getLogger(__name__)

_MAX_ROWS = 20


@dataclass(frozen=True)
class ChatDataServices:
    stocks: StockApiService
    facturations: FacturationApiService
    operations: OperationApiService


ChatTool = Callable[[ChatDataServices, int], Awaitable[dict[str, Any]]]


async def stock_overview(services: ChatDataServices, tenant_id: int) -> dict[str, Any]:
    stocks = await services.stocks.get_stocks(tenant_id)
    return {
        "count": len(stocks),
        "alerts": sum(1 for stock in stocks if stock.en_alerte),
        "items": [stock.model_dump(mode="json", include={"id", "nom", "ref_stockage", "qte", "stock_minimum"}) for stock in stocks[:_MAX_ROWS]],
    }


async def stock_alerts(services: ChatDataServices, tenant_id: int) -> dict[str, Any]:
    stocks = await services.stocks.get_stocks(tenant_id, en_alerte=True)
    return {
        "count": len(stocks),
        "items": [stock.model_dump(mode="json", include={"id", "nom", "qte", "stock_minimum"}) for stock in stocks[:_MAX_ROWS]],
    }


async def recent_invoices(services: ChatDataServices, tenant_id: int) -> dict[str, Any]:
    fin = date.today()
    debut = fin - timedelta(days=365)
    factures = await services.facturations.get_facturations(tenant_id, debut=debut, fin=fin)
    return {
        "count": len(factures),
        "total_ttc": round(sum(facture.montant_ttc for facture in factures), 2),
        "items": [
            {"id": facture.id, "mois": facture.mois_facturation.date().isoformat(), "montant_ttc": round(facture.montant_ttc, 2)}
            for facture in factures[:_MAX_ROWS]
        ],
    }


async def recent_orders(services: ChatDataServices, tenant_id: int) -> dict[str, Any]:
    operations = await services.operations.get_lignes_operations(tenant_id)
    return {
        "count": len(operations),
        "items": [
            operation.model_dump(mode="json", include={"id", "nom", "type", "statut", "nb_envoyes"})
            for operation in operations[:_MAX_ROWS]
        ],
    }


@dataclass(frozen=True)
class ChatProfile:
    context: str
    label: str
    tools: tuple[tuple[str, ChatTool], ...]


class ChatAgentRegistry:
    """Explicit mapping from chat context to the profile that answers it."""

    def __init__(self, profiles: list[ChatProfile]) -> None:
        self._profiles = {profile.context: profile for profile in profiles}

    def contexts(self) -> list[str]:
        return sorted(self._profiles)

    def get(self, context: str) -> ChatProfile:
        profile = self._profiles.get(context)
        if profile is None:
            raise ChatContextError(context)
        return profile


CHAT_REGISTRY = ChatAgentRegistry(
    [
        ChatProfile("factures", "invoices", (("recent_invoices", recent_invoices),)),
        ChatProfile("commandes", "orders and campaigns", (("recent_orders", recent_orders),)),
        ChatProfile("stocks", "stock levels", (("stock_overview", stock_overview), ("stock_alerts", stock_alerts))),
        ChatProfile(
            "general",
            "the customer account",
            (("stock_alerts", stock_alerts), ("recent_orders", recent_orders)),
        ),
    ]
)


@dataclass(frozen=True)
class ChatAnswer:
    text: str
    tools_used: list[str]
    llm: LLMResult


class ChatAgent(BaseAgent):
    name = "chat"

    async def answer(
        self,
        profile: ChatProfile,
        question: str,
        *,
        history: list[ChatMessage],
        services: ChatDataServices,
        tenant_id: int,
    ) -> ChatAnswer:
        data: dict[str, Any] = {}
        tools_used: list[str] = []
        for tool_name, tool in profile.tools:
            start = self._time()
            data[tool_name] = await tool(services, tenant_id)
            tools_used.append(tool_name)
            self.calls.append(AiCall(self.name, "tool_call", tool_name, None, self.elapsed_ms(start)))
        summary = json.dumps(data, ensure_ascii=False, default=str)
        messages: list[dict] = [{"role": "system", "content": prompts.chat_system_prompt(profile.label, summary)}]
        for message in history:
            if message.role in {"user", "assistant"}:
                messages.append({"role": message.role, "content": message.content})
        messages.append({"role": "user", "content": question})
        result = await self.ask_messages(messages, temperature=0.3)
        logger.info("chat_answered context=%s tools=%s tokens=%s", profile.context, tools_used, result.total_tokens)
        return ChatAnswer(text=result.text, tools_used=tools_used, llm=result)
