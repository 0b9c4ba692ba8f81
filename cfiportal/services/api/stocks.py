from __future__ import annotations

from cfiportal.domain.cfi import Stock
from cfiportal.services.api.base import CachedApiService


class StockApiService(CachedApiService[Stock]):
    endpoint = "/Stocks/getStocks"
    cache_prefix = "cfi.stocks"
    record_model = Stock

    async def get_stocks(
        self,
        tenant_id: int,
        *,
        reference: str | None = None,
        en_alerte: bool | None = None,
    ) -> list[Stock]:
        body: dict[str, object] = {"idDivision": tenant_id}
        if reference:
            body["reference"] = reference
        key = self.cache_key(tenant_id, reference, en_alerte)
        stocks = await self.fetch(key, body)
        # The remote endpoint has no alert filter; apply it after mapping.
        if en_alerte is None:
            return stocks
        return [stock for stock in stocks if stock.en_alerte is en_alerte]
