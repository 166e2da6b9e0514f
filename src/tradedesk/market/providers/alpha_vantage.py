"""Alpha Vantage provider: per-symbol REST, last in the fallback chain.

Alpha Vantage reports throttling with HTTP 200 and a ``Note`` or
``Information`` key instead of a 429, and unknown symbols with an
``Error Message`` key or an empty ``Global Quote``.
"""

from __future__ import annotations

from datetime import datetime, timezone

from tradedesk.errors import RateLimited
from tradedesk.market.providers.base import QuoteProvider, split_pair
from tradedesk.market.providers.registry import register
from tradedesk.models.market import Asset

THROTTLE_KEYS = ("Note", "Information")


@register
class AlphaVantageProvider(QuoteProvider):
    name = "alpha_vantage"
    categories = frozenset({"Stock", "Crypto", "Forex"})
    default_base_url = "https://www.alphavantage.co"
    requires_api_key = True

    async def _fetch_batch(self, category: str, symbols: list[str]) -> list[Asset]:
        return await self._fetch_each(category, symbols, self._quote)

    async def _quote(self, category: str, symbol: str) -> Asset | None:
        if category == "Stock":
            return await self._global_quote(symbol)
        return await self._exchange_rate(category, symbol)

    async def _query(self, params: dict[str, str]) -> dict:
        payload = await self._get_json("/query", {**params, "apikey": self.api_key})
        body = self._require_dict(payload, "body")
        for key in THROTTLE_KEYS:
            if key in body:
                raise RateLimited(self.name, str(body[key])[:200])
        return body

    async def _global_quote(self, symbol: str) -> Asset | None:
        body = await self._query({"function": "GLOBAL_QUOTE", "symbol": symbol})
        if "Error Message" in body:
            return None
        quote = self._require_dict(body.get("Global Quote"), "Global Quote")
        if not quote:
            return None
        return Asset(
            symbol=symbol,
            market_type="Stock",
            price=self._decimal(quote.get("05. price"), "05. price"),
            change_pct=self._optional_decimal(quote.get("10. change percent"), "10. change percent"),
            volume=self._optional_decimal(quote.get("06. volume"), "06. volume"),
            open_price=self._optional_decimal(quote.get("02. open"), "02. open"),
            high_price=self._optional_decimal(quote.get("03. high"), "03. high"),
            low_price=self._optional_decimal(quote.get("04. low"), "04. low"),
            previous_close=self._optional_decimal(quote.get("08. previous close"), "08. previous close"),
            source=self.name,
            ts=datetime.now(timezone.utc),
        )

    async def _exchange_rate(self, category: str, symbol: str) -> Asset | None:
        try:
            base, quote_ccy = split_pair(symbol)
        except ValueError:
            return None
        body = await self._query({
            "function": "CURRENCY_EXCHANGE_RATE",
            "from_currency": base,
            "to_currency": quote_ccy,
        })
        if "Error Message" in body:
            return None
        rate = self._require_dict(
            body.get("Realtime Currency Exchange Rate"), "Realtime Currency Exchange Rate",
        )
        if not rate:
            return None
        return Asset(
            symbol=symbol,
            market_type=category,
            price=self._decimal(rate.get("5. Exchange Rate"), "5. Exchange Rate"),
            name=f"{base}/{quote_ccy}",
            source=self.name,
            ts=datetime.now(timezone.utc),
        )
