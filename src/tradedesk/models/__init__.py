"""Pydantic domain models."""

from tradedesk.models.market import Asset, PriceTick
from tradedesk.models.position import (
    AccountSnapshot,
    ClosedTrade,
    PendingOrder,
    Position,
)
from tradedesk.models.trade import (
    EntryOrderParams,
    MarketOrderParams,
    RemoveFromPortfolioParams,
    TradeResult,
)

__all__ = [
    "AccountSnapshot",
    "Asset",
    "ClosedTrade",
    "EntryOrderParams",
    "MarketOrderParams",
    "PendingOrder",
    "Position",
    "PriceTick",
    "RemoveFromPortfolioParams",
    "TradeResult",
]
