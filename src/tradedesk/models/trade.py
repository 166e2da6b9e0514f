"""Trade intents submitted to the backend, and their outcome."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Union

from pydantic import BaseModel, ConfigDict

from tradedesk.errors import ExecutionError
from tradedesk.models.position import ClosedTrade, PendingOrder, Position


class MarketOrderParams(BaseModel):
    """Open a position immediately at a client-observed reference price.

    ``direction`` is a plain string so that validation happens in the
    execution service and raises a domain error rather than a pydantic one.
    """

    model_config = ConfigDict(frozen=True)

    user_id: str
    symbol: str
    market_type: str
    direction: str
    quantity: Decimal
    reference_price: Decimal
    leverage: Decimal | None = None
    stop_loss: Decimal | None = None
    take_profit: Decimal | None = None


class EntryOrderParams(BaseModel):
    """Place a limit or stop entry order."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    symbol: str
    market_type: str
    order_type: str
    direction: str
    quantity: Decimal
    target_price: Decimal
    leverage: Decimal | None = None
    stop_loss: Decimal | None = None
    take_profit: Decimal | None = None
    expires_at: datetime | None = None


class RemoveFromPortfolioParams(BaseModel):
    """Detach a watchlist/portfolio entry.

    With ``quantity`` set the backend reduces the holding instead of
    removing it.
    """

    model_config = ConfigDict(frozen=True)

    user_id: str
    symbol: str
    quantity: Decimal | None = None


TradeData = Union[Position, PendingOrder, ClosedTrade, None]


@dataclass(frozen=True)
class TradeResult:
    """Outcome of one execution-service call: success, or the backend's reason."""

    success: bool
    message: str = ""
    trade_id: str | None = None
    data: TradeData = None
    error: ExecutionError | None = None

    @classmethod
    def ok(cls, message: str, trade_id: str | None = None, data: TradeData = None) -> "TradeResult":
        return cls(success=True, message=message, trade_id=trade_id, data=data)

    @classmethod
    def failed(cls, error: ExecutionError, trade_id: str | None = None) -> "TradeResult":
        return cls(success=False, message=error.reason, trade_id=trade_id, error=error)

    def raise_for_error(self) -> None:
        if self.error is not None:
            raise self.error
