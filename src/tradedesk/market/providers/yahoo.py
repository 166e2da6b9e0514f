"""Yahoo Finance provider: batched REST quotes.

``/v7/finance/quote?symbols=A,B,C`` returns
``{"quoteResponse": {"result": [...], "error": null}}``. Symbols Yahoo does
not recognise are just missing from ``result``.
"""

from __future__ import annotations

from datetime import datetime, timezone

from tradedesk.errors import MalformedResponse
from tradedesk.logging import get_logger
from tradedesk.market.providers.base import QuoteProvider, split_pair
from tradedesk.market.providers.registry import register
from tradedesk.models.market import Asset

log = get_logger(__name__)

# Registry symbols whose Yahoo ticker cannot be derived mechanically.
TICKER_OVERRIDES: dict[str, str] = {
    "SPX500": "^GSPC",
    "NASDAQ": "^IXIC",
    "DJI": "^DJI",
    "UK100": "^FTSE",
    "JP225": "^N225",
    "XAUUSD": "GC=F",
    "XAGUSD": "SI=F",
    "USOIL": "CL=F",
    "NATGAS": "NG=F",
    "COPPER": "HG=F",
}


@register
class YahooFinanceProvider(QuoteProvider):
    """Secondary provider; covers every category in one batched call."""

    name = "yahoo"
    categories = frozenset({"Stock", "Crypto", "Forex", "Index", "Commodities"})
    default_base_url = "https://query1.finance.yahoo.com"

    @staticmethod
    def provider_symbol(category: str, symbol: str) -> str:
        if symbol in TICKER_OVERRIDES:
            return TICKER_OVERRIDES[symbol]
        if category == "Crypto":
            base, quote = split_pair(symbol)
            return f"{base}-{quote}"
        if category == "Forex":
            base, quote = split_pair(symbol)
            return f"{base}{quote}=X"
        return symbol

    async def _fetch_batch(self, category: str, symbols: list[str]) -> list[Asset]:
        reverse: dict[str, str] = {}
        for symbol in symbols:
            ticker = self._resolve(category, symbol)
            if ticker is not None:
                reverse[ticker] = symbol
        if not reverse:
            return []
        payload = await self._get_json(
            "/v7/finance/quote",
            {"symbols": ",".join(reverse)},
        )
        body = self._require_dict(payload, "body")
        response = self._require_dict(body.get("quoteResponse"), "quoteResponse")
        results = self._require_list(response.get("result"), "quoteResponse.result")

        now = datetime.now(timezone.utc)
        assets: list[Asset] = []
        for item in results:
            item = self._require_dict(item, "quote")
            ticker = item.get("symbol")
            if not isinstance(ticker, str):
                raise MalformedResponse(self.name, "quote without symbol")
            symbol = reverse.get(ticker)
            if symbol is None:
                continue
            if item.get("regularMarketPrice") is None:
                log.debug("yahoo_symbol_unpriced", symbol=symbol)
                continue
            price = self._decimal(item["regularMarketPrice"], "regularMarketPrice")
            if price <= 0:
                continue
            ts_raw = item.get("regularMarketTime")
            ts = (
                datetime.fromtimestamp(int(ts_raw), tz=timezone.utc)
                if isinstance(ts_raw, (int, float)) and not isinstance(ts_raw, bool) and ts_raw > 0
                else now
            )
            assets.append(Asset(
                symbol=symbol,
                market_type=category,
                price=price,
                name=item.get("shortName") or item.get("longName"),
                change_pct=self._optional_decimal(item.get("regularMarketChangePercent"), "regularMarketChangePercent"),
                volume=self._optional_decimal(item.get("regularMarketVolume"), "regularMarketVolume"),
                open_price=self._optional_decimal(item.get("regularMarketOpen"), "regularMarketOpen"),
                high_price=self._optional_decimal(item.get("regularMarketDayHigh"), "regularMarketDayHigh"),
                low_price=self._optional_decimal(item.get("regularMarketDayLow"), "regularMarketDayLow"),
                previous_close=self._optional_decimal(
                    item.get("regularMarketPreviousClose"), "regularMarketPreviousClose",
                ),
                source=self.name,
                ts=ts,
            ))
        return assets
