"""Fallback quotes used when no live provider could price a symbol.

Every asset built here carries ``source="fallback"`` so callers (and tests)
can always tell it apart from a live quote. A missing key is always filled,
from the first of:

1. the last live quote this process saw for the key (price and ``ts`` kept,
   so staleness is visible);
2. ``market_data.fallback_prices`` from config;
3. the built-in static table;
4. a synthetic price derived from the symbol name.
"""

from __future__ import annotations

import zlib
from collections.abc import Mapping, Sequence
from datetime import datetime, timezone
from decimal import Decimal

from tradedesk.models.market import FALLBACK_SOURCE, Asset

# category -> symbol -> (name, price, change %)
FALLBACK_QUOTES: dict[str, dict[str, tuple[str, str, str]]] = {
    "Crypto": {
        "BTCUSD": ("Bitcoin", "67432.21", "2.4"),
        "ETHUSD": ("Ethereum", "3245.87", "1.8"),
        "ADAUSD": ("Cardano", "0.52", "-0.7"),
        "SOLUSD": ("Solana", "142.76", "3.2"),
        "DOTUSD": ("Polkadot", "7.25", "-1.2"),
    },
    "Stock": {
        "AAPL": ("Apple", "187.43", "0.5"),
        "MSFT": ("Microsoft", "425.22", "1.1"),
        "TSLA": ("Tesla", "178.89", "-2.3"),
        "AMZN": ("Amazon", "183.26", "0.8"),
        "GOOGL": ("Google", "165.92", "0.3"),
    },
    "Forex": {
        "EURUSD": ("EUR/USD", "1.0842", "0.2"),
        "GBPUSD": ("GBP/USD", "1.2678", "-0.1"),
        "USDJPY": ("USD/JPY", "155.78", "0.4"),
        "AUDUSD": ("AUD/USD", "0.6624", "-0.3"),
        "USDCAD": ("USD/CAD", "1.3612", "0.1"),
    },
    "Index": {
        "SPX500": ("S&P 500", "5234.18", "0.7"),
        "NASDAQ": ("Nasdaq", "16758.21", "1.2"),
        "DJI": ("Dow Jones", "38983.45", "0.2"),
        "UK100": ("FTSE 100", "8192.87", "-0.4"),
        "JP225": ("Nikkei 225", "38437.76", "0.8"),
    },
    "Commodities": {
        "XAUUSD": ("Gold", "2345.18", "0.5"),
        "XAGUSD": ("Silver", "27.86", "1.1"),
        "USOIL": ("Crude Oil", "78.32", "-0.8"),
        "NATGAS": ("Natural Gas", "2.18", "-1.5"),
        "COPPER": ("Copper", "4.56", "0.3"),
    },
}


def synthetic_price(symbol: str) -> Decimal:
    """Stable placeholder price in [100.00, 999.99] for an unknown symbol."""
    cents = zlib.crc32(symbol.encode()) % 90000
    return (Decimal(10000 + cents) / 100).quantize(Decimal("0.01"))


def fallback_assets(
    category: str,
    symbols: Sequence[str],
    ts: datetime | None = None,
    prices: Mapping[str, Mapping[str, float | str]] | None = None,
) -> list[Asset]:
    """One fallback asset per symbol of *category*, in the order requested.

    *prices* (category -> symbol -> price) takes precedence over the static
    table. The result is the same for the same input.
    """
    configured = (prices or {}).get(category, {})
    table = FALLBACK_QUOTES.get(category, {})
    ts = ts or datetime.now(timezone.utc)
    assets: list[Asset] = []
    for symbol in symbols:
        name = change = None
        if symbol in configured:
            price = Decimal(str(configured[symbol]))
        elif symbol in table:
            name, raw_price, raw_change = table[symbol]
            price, change = Decimal(raw_price), Decimal(raw_change)
        else:
            price = synthetic_price(symbol)
        assets.append(Asset(
            symbol=symbol,
            market_type=category,
            price=price,
            change_pct=change,
            name=name,
            source=FALLBACK_SOURCE,
            ts=ts,
        ))
    return assets


class FallbackBook:
    """Fallback source for one aggregator: last live quote first, then static data."""

    def __init__(self, prices: Mapping[str, Mapping[str, float | str]] | None = None) -> None:
        self.prices = {c: dict(rows) for c, rows in (prices or {}).items()}
        self._last_live: dict[tuple[str, str], Asset] = {}

    def remember(self, assets: Sequence[Asset]) -> None:
        for asset in assets:
            if not asset.is_fallback:
                self._last_live[asset.key] = asset

    def last_live(self, category: str, symbol: str) -> Asset | None:
        return self._last_live.get((category, symbol))

    def assets(self, category: str, symbols: Sequence[str], ts: datetime | None = None) -> list[Asset]:
        stale = {s: self._last_live[(category, s)] for s in symbols if (category, s) in self._last_live}
        fresh = iter(fallback_assets(
            category, [s for s in symbols if s not in stale], ts=ts, prices=self.prices,
        ))
        return [
            stale[s].model_copy(update={"source": FALLBACK_SOURCE}) if s in stale else next(fresh)
            for s in symbols
        ]
