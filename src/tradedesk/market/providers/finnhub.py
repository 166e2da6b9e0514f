"""Finnhub provider: per-symbol REST quotes plus a WebSocket trade stream.

REST ``/quote`` returns ``{"c", "d", "dp", "h", "l", "o", "pc", "t"}``. For
symbols it does not know, Finnhub answers 200 with ``c == 0``; those are
treated as unresolved rather than as a price of zero.
"""

from __future__ import annotations

import json
from collections.abc import AsyncGenerator, Sequence
from datetime import datetime, timezone
from decimal import Decimal

from tradedesk.errors import ProviderUnavailable
from tradedesk.logging import get_logger
from tradedesk.market.providers.base import QuoteProvider, split_pair
from tradedesk.market.providers.registry import register
from tradedesk.models.market import Asset, PriceTick

log = get_logger(__name__)


@register
class FinnhubProvider(QuoteProvider):
    """Primary real-time provider."""

    name = "finnhub"
    categories = frozenset({"Stock", "Crypto", "Forex"})
    default_base_url = "https://finnhub.io/api/v1"
    requires_api_key = True
    ws_url = "wss://ws.finnhub.io"

    @staticmethod
    def provider_symbol(category: str, symbol: str) -> str:
        """Translate a registry symbol into Finnhub's exchange-prefixed form."""
        if ":" in symbol:
            return symbol
        if category == "Crypto":
            base, _ = split_pair(symbol)
            return f"BINANCE:{base}USDT"
        if category == "Forex":
            base, quote = split_pair(symbol)
            return f"OANDA:{base}_{quote}"
        return symbol

    async def _fetch_batch(self, category: str, symbols: list[str]) -> list[Asset]:
        return await self._fetch_each(category, symbols, self._quote)

    async def _quote(self, category: str, symbol: str) -> Asset | None:
        ticker = self._resolve(category, symbol)
        if ticker is None:
            return None
        payload = await self._get_json("/quote", {"symbol": ticker, "token": self.api_key})
        return self._parse_quote(payload, category, symbol)

    def _parse_quote(self, payload: object, category: str, symbol: str) -> Asset | None:
        quote = self._require_dict(payload, f"quote {symbol}")
        price = self._decimal(quote.get("c"), "c")
        if price <= 0:
            return None
        ts_raw = self._decimal(quote.get("t"), "t")
        ts = (
            datetime.fromtimestamp(int(ts_raw), tz=timezone.utc)
            if ts_raw > 0
            else datetime.now(timezone.utc)
        )
        return Asset(
            symbol=symbol,
            market_type=category,
            price=price,
            change_pct=self._optional_decimal(quote.get("dp"), "dp"),
            open_price=self._optional_decimal(quote.get("o"), "o"),
            high_price=self._optional_decimal(quote.get("h"), "h"),
            low_price=self._optional_decimal(quote.get("l"), "l"),
            previous_close=self._optional_decimal(quote.get("pc"), "pc"),
            source=self.name,
            ts=ts,
        )

    # --- WebSocket ---

    async def stream_ticks(
        self,
        symbols: dict[str, Sequence[str]],
    ) -> AsyncGenerator[PriceTick, None]:
        """Subscribe to trades for *symbols* (category -> symbols).

        Yields one PriceTick per trade print; ``seq`` is the trade timestamp
        in milliseconds. The generator exits on disconnect and the caller
        owns reconnection.
        """
        import websockets

        if not self.api_key:
            raise ProviderUnavailable(self.name, "API key not configured")

        reverse: dict[str, str] = {}
        for category, category_symbols in symbols.items():
            if not self.supports(category):
                continue
            for symbol in category_symbols:
                ticker = self._resolve(category, symbol)
                if ticker is not None:
                    reverse[ticker] = symbol

        async with websockets.connect(f"{self.ws_url}?token={self.api_key}") as ws:
            for provider_symbol in reverse:
                await ws.send(json.dumps({"type": "subscribe", "symbol": provider_symbol}))
            log.info("finnhub_stream_subscribed", symbols=sorted(reverse.values()))

            async for raw in ws:
                msg = json.loads(raw)
                if msg.get("type") != "trade":
                    continue
                for trade in msg.get("data") or []:
                    tick = self._parse_trade(trade, reverse)
                    if tick is not None:
                        yield tick

    def _parse_trade(self, trade: object, reverse: dict[str, str]) -> PriceTick | None:
        if not isinstance(trade, dict):
            return None
        symbol = reverse.get(trade.get("s", ""))
        if symbol is None:
            return None
        try:
            price = Decimal(str(trade["p"]))
            ts_ms = int(trade["t"])
        except (KeyError, TypeError, ValueError, ArithmeticError):
            log.warning("finnhub_trade_parse_error", raw=trade)
            return None
        return PriceTick(
            symbol=symbol,
            price=price,
            seq=ts_ms,
            ts=datetime.fromtimestamp(ts_ms / 1000, tz=timezone.utc),
            source=self.name,
        )
