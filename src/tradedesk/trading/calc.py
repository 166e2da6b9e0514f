"""Margin, P&L and trigger calculations: pure functions, no I/O."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from decimal import Decimal

from tradedesk.errors import InvalidLeverage, InvalidPrice, InvalidQuantity
from tradedesk.models.position import (
    AccountSnapshot,
    CloseReason,
    Direction,
    MarginStatus,
    PendingOrder,
    Position,
)

ZERO = Decimal("0")


def _dec(value: Decimal | float | int | str) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def margin_required(
    quantity: Decimal,
    entry_price: Decimal,
    leverage: Decimal,
) -> Decimal:
    """Capital reserved to open a position.

    margin = quantity * entry_price / leverage
    """
    quantity, entry_price, leverage = _dec(quantity), _dec(entry_price), _dec(leverage)
    if leverage <= 0:
        raise InvalidLeverage(f"leverage must be > 0, got {leverage}")
    if quantity <= 0:
        raise InvalidQuantity(f"quantity must be > 0, got {quantity}")
    if entry_price <= 0:
        raise InvalidPrice(f"entry price must be > 0, got {entry_price}")
    return quantity * entry_price / leverage


def calculate_pnl(
    direction: Direction,
    entry_price: Decimal,
    exit_price: Decimal,
    quantity: Decimal,
) -> Decimal:
    """P&L of a position marked (or closed) at *exit_price*.

    buy:  (exit - entry) * qty
    sell: (entry - exit) * qty
    """
    entry_price, exit_price, quantity = _dec(entry_price), _dec(exit_price), _dec(quantity)
    if direction == "buy":
        return (exit_price - entry_price) * quantity
    return (entry_price - exit_price) * quantity


def unrealized_pnl(position: Position, current_price: Decimal) -> Decimal:
    """Mark-to-market P&L. Recompute on every price; never cache across ticks."""
    return calculate_pnl(
        position.direction, position.entry_price, current_price, position.quantity,
    )


def evaluate_exit(position: Position, price: Decimal) -> CloseReason | None:
    """Return the automatic close reason triggered at *price*, if any.

    buy:  stop-loss when price <= stop_loss, take-profit when price >= take_profit
    sell: stop-loss when price >= stop_loss, take-profit when price <= take_profit

    Stop-loss is checked first, so it wins when both are satisfied by the
    same price.
    """
    price = _dec(price)
    sl, tp = position.stop_loss, position.take_profit
    if position.direction == "buy":
        if sl is not None and price <= sl:
            return "stop_loss"
        if tp is not None and price >= tp:
            return "take_profit"
    else:
        if sl is not None and price >= sl:
            return "stop_loss"
        if tp is not None and price <= tp:
            return "take_profit"
    return None


def entry_order_triggered(order: PendingOrder, price: Decimal) -> bool:
    """Whether *price* reaches or crosses the order's target.

    limit fills on a favourable move:  buy at/below target, sell at/above
    stop fills on an adverse breakout: buy at/above target, sell at/below
    """
    price = _dec(price)
    target = order.target_price
    if order.order_type == "limit":
        return price <= target if order.direction == "buy" else price >= target
    return price >= target if order.direction == "buy" else price <= target


def leverage_for_market_type(
    market_type: str,
    leverage_map: Mapping[str, float | Decimal],
    default: float | Decimal = 1,
) -> Decimal:
    """Configured leverage for a market category, falling back to *default*."""
    return _dec(leverage_map.get(market_type, default))


def liquidation_price(
    direction: Direction,
    entry_price: Decimal,
    leverage: Decimal,
    stop_out_level: float = 0.5,
) -> Decimal:
    """Price at which a lone position's margin level falls to *stop_out_level*.

    threshold = (1 / leverage) * (1 - stop_out_level)
    buy:  entry * (1 - threshold)
    sell: entry * (1 + threshold)
    """
    leverage = _dec(leverage)
    if leverage <= 0:
        raise InvalidLeverage(f"leverage must be > 0, got {leverage}")
    threshold = (Decimal(1) / leverage) * (1 - _dec(stop_out_level))
    entry_price = _dec(entry_price)
    if direction == "buy":
        return entry_price * (1 - threshold)
    return entry_price * (1 + threshold)


def margin_status(
    margin_level: Decimal | None,
    margin_call_level: float = 100,
    stop_out_level: float = 0.5,
) -> MarginStatus:
    """Classify a margin level (percent) against the account thresholds.

    stop_out     margin_level <= stop_out_level * 100
    margin_call  margin_level <= margin_call_level
    warning      margin_level <= margin_call_level * 1.5
    """
    if margin_level is None:
        return "safe"
    if margin_level <= _dec(stop_out_level) * 100:
        return "stop_out"
    call = _dec(margin_call_level)
    if margin_level <= call:
        return "margin_call"
    if margin_level <= call * Decimal("1.5"):
        return "warning"
    return "safe"


def account_snapshot(
    balance: Decimal,
    positions: Iterable[Position],
    marks: Mapping[str, Decimal],
    margin_call_level: float = 100,
    stop_out_level: float = 0.5,
) -> AccountSnapshot:
    """Balances derived from open positions and the latest mark per symbol.

    Positions without a mark contribute margin but no unrealised P&L.

    equity       = balance + sum(unrealised)
    free_margin  = equity - used_margin
    margin_level = equity / used_margin * 100   (None when no margin is used)
    """
    balance = _dec(balance)
    unrealised = ZERO
    used_margin = ZERO
    count = 0
    for pos in positions:
        count += 1
        used_margin += pos.margin_required
        mark = marks.get(pos.symbol)
        if mark is not None:
            unrealised += unrealized_pnl(pos, mark)

    equity = balance + unrealised
    margin_level = equity / used_margin * 100 if used_margin > 0 else None
    return AccountSnapshot(
        balance=balance,
        equity=equity,
        unrealized_pnl=unrealised,
        used_margin=used_margin,
        free_margin=equity - used_margin,
        margin_level=margin_level,
        open_positions=count,
        margin_status=margin_status(margin_level, margin_call_level, stop_out_level),
    )
