"""Position, entry order, closed trade and account models."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

Direction = Literal["buy", "sell"]
OrderType = Literal["limit", "stop"]
OrderStatus = Literal["pending", "filled", "cancelled"]
CloseReason = Literal["manual", "stop_loss", "take_profit"]
MarginStatus = Literal["safe", "warning", "margin_call", "stop_out"]


class Position(BaseModel):
    """An open leveraged position. Unrealised P&L is never stored here."""

    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    symbol: str
    market_type: str
    direction: Direction
    quantity: Decimal = Field(gt=0)
    entry_price: Decimal = Field(gt=0)
    leverage: Decimal = Field(gt=0)
    margin_required: Decimal = Field(gt=0)
    created_at: datetime
    take_profit: Decimal | None = None
    stop_loss: Decimal | None = None
    order_id: str | None = None


class PendingOrder(BaseModel):
    """An entry order waiting for its trigger price."""

    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    symbol: str
    market_type: str
    order_type: OrderType
    direction: Direction
    quantity: Decimal = Field(gt=0)
    target_price: Decimal = Field(gt=0)
    leverage: Decimal = Field(gt=0)
    created_at: datetime
    status: OrderStatus = "pending"
    take_profit: Decimal | None = None
    stop_loss: Decimal | None = None
    expires_at: datetime | None = None
    filled_price: Decimal | None = None
    filled_at: datetime | None = None
    cancelled_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status != "pending"


class ClosedTrade(BaseModel):
    """Terminal record of a position."""

    model_config = ConfigDict(frozen=True)

    id: str
    position_id: str
    user_id: str
    symbol: str
    market_type: str
    direction: Direction
    quantity: Decimal
    entry_price: Decimal
    exit_price: Decimal
    realized_pnl: Decimal
    close_reason: CloseReason
    opened_at: datetime
    closed_at: datetime


class AccountSnapshot(BaseModel):
    """Balances derived from open positions and current marks."""

    model_config = ConfigDict(frozen=True)

    balance: Decimal
    equity: Decimal
    unrealized_pnl: Decimal
    used_margin: Decimal
    free_margin: Decimal
    margin_level: Decimal | None = None
    open_positions: int = 0
    margin_status: MarginStatus = "safe"
