"""Order and position state transitions.

    pending ──fill──▶ filled ──▶ open position ──close──▶ closed
       └────cancel──▶ cancelled

``closed`` and ``cancelled`` are terminal. Every function returns new
immutable objects; nothing is mutated in place.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal

from tradedesk.errors import (
    InvalidDirection,
    InvalidLeverage,
    InvalidOrderType,
    InvalidPrice,
    InvalidQuantity,
    InvalidTransition,
)
from tradedesk.models.position import (
    ClosedTrade,
    CloseReason,
    Direction,
    PendingOrder,
    Position,
)
from tradedesk.trading.calc import calculate_pnl, margin_required

DIRECTIONS = ("buy", "sell")
ORDER_TYPES = ("limit", "stop")
CLOSE_REASONS = ("manual", "stop_loss", "take_profit")


# ── Validation ────────────────────────────────────────────────


def validate_direction(direction: str) -> Direction:
    if direction not in DIRECTIONS:
        raise InvalidDirection(f"direction must be one of {DIRECTIONS}, got {direction!r}")
    return direction  # type: ignore[return-value]


def validate_quantity(quantity: Decimal) -> Decimal:
    if quantity is None or Decimal(str(quantity)) <= 0:
        raise InvalidQuantity(f"quantity must be > 0, got {quantity}")
    return Decimal(str(quantity))


def validate_price(price: Decimal, field: str = "price") -> Decimal:
    if price is None or Decimal(str(price)) <= 0:
        raise InvalidPrice(f"{field} must be > 0, got {price}")
    return Decimal(str(price))


def validate_leverage(leverage: Decimal) -> Decimal:
    if leverage is None or Decimal(str(leverage)) <= 0:
        raise InvalidLeverage(f"leverage must be > 0, got {leverage}")
    return Decimal(str(leverage))


def validate_order_type(order_type: str) -> str:
    if order_type not in ORDER_TYPES:
        raise InvalidOrderType(f"order type must be one of {ORDER_TYPES}, got {order_type!r}")
    return order_type


def validate_protection(
    direction: Direction,
    reference_price: Decimal,
    stop_loss: Decimal | None,
    take_profit: Decimal | None,
) -> None:
    """Stop-loss must sit on the losing side of the reference price, take-profit on the winning side."""
    if stop_loss is not None:
        validate_price(stop_loss, "stop_loss")
        if (direction == "buy" and stop_loss >= reference_price) or (
            direction == "sell" and stop_loss <= reference_price
        ):
            raise InvalidPrice(
                f"stop_loss {stop_loss} is on the wrong side of {reference_price} for a {direction}",
            )
    if take_profit is not None:
        validate_price(take_profit, "take_profit")
        if (direction == "buy" and take_profit <= reference_price) or (
            direction == "sell" and take_profit >= reference_price
        ):
            raise InvalidPrice(
                f"take_profit {take_profit} is on the wrong side of {reference_price} for a {direction}",
            )


def _now(now: datetime | None) -> datetime:
    return now or datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


# ── Transitions ───────────────────────────────────────────────


def open_position(
    *,
    user_id: str,
    symbol: str,
    market_type: str,
    direction: str,
    quantity: Decimal,
    entry_price: Decimal,
    leverage: Decimal,
    stop_loss: Decimal | None = None,
    take_profit: Decimal | None = None,
    position_id: str | None = None,
    order_id: str | None = None,
    now: datetime | None = None,
) -> Position:
    """Build a new open position, computing its margin."""
    direction = validate_direction(direction)
    quantity = validate_quantity(quantity)
    entry_price = validate_price(entry_price, "entry_price")
    leverage = validate_leverage(leverage)
    return Position(
        id=position_id or new_id(),
        user_id=user_id,
        symbol=symbol,
        market_type=market_type,
        direction=direction,
        quantity=quantity,
        entry_price=entry_price,
        leverage=leverage,
        margin_required=margin_required(quantity, entry_price, leverage),
        stop_loss=stop_loss,
        take_profit=take_profit,
        order_id=order_id,
        created_at=_now(now),
    )


def fill_order(
    order: PendingOrder,
    fill_price: Decimal,
    position_id: str | None = None,
    now: datetime | None = None,
) -> tuple[PendingOrder, Position]:
    """Fill a pending order at the observed trigger price.

    The resulting position's entry price is *fill_price*, not the order's
    target.
    """
    if order.status != "pending":
        raise InvalidTransition(f"order {order.id} is {order.status}, cannot fill")
    ts = _now(now)
    fill_price = validate_price(fill_price, "fill_price")
    filled = order.model_copy(update={
        "status": "filled",
        "filled_price": fill_price,
        "filled_at": ts,
    })
    position = open_position(
        user_id=order.user_id,
        symbol=order.symbol,
        market_type=order.market_type,
        direction=order.direction,
        quantity=order.quantity,
        entry_price=fill_price,
        leverage=order.leverage,
        stop_loss=order.stop_loss,
        take_profit=order.take_profit,
        position_id=position_id,
        order_id=order.id,
        now=ts,
    )
    return filled, position


def cancel_order(order: PendingOrder, now: datetime | None = None) -> PendingOrder:
    if order.status != "pending":
        raise InvalidTransition(f"order {order.id} is {order.status}, cannot cancel")
    return order.model_copy(update={"status": "cancelled", "cancelled_at": _now(now)})


def close_position(
    position: Position,
    exit_price: Decimal,
    reason: CloseReason = "manual",
    now: datetime | None = None,
    trade_id: str | None = None,
) -> ClosedTrade:
    """Close *position* at *exit_price*; realised P&L is fixed here."""
    if reason not in CLOSE_REASONS:
        raise InvalidTransition(f"unknown close reason {reason!r}")
    exit_price = validate_price(exit_price, "exit_price")
    return ClosedTrade(
        id=trade_id or new_id(),
        position_id=position.id,
        user_id=position.user_id,
        symbol=position.symbol,
        market_type=position.market_type,
        direction=position.direction,
        quantity=position.quantity,
        entry_price=position.entry_price,
        exit_price=exit_price,
        realized_pnl=calculate_pnl(
            position.direction, position.entry_price, exit_price, position.quantity,
        ),
        close_reason=reason,
        opened_at=position.created_at,
        closed_at=_now(now),
    )


def is_expired(order: PendingOrder, now: datetime) -> bool:
    return order.status == "pending" and order.expires_at is not None and now >= order.expires_at
