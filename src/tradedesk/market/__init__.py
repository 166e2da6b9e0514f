"""Market data: symbol registry, quote providers and aggregation."""

from tradedesk.market.aggregator import MarketDataAggregator
from tradedesk.market.fallback import FALLBACK_QUOTES, FallbackBook, fallback_assets
from tradedesk.market.registry import SymbolRegistry

__all__ = [
    "FALLBACK_QUOTES",
    "FallbackBook",
    "MarketDataAggregator",
    "SymbolRegistry",
    "fallback_assets",
]
