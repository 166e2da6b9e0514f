"""TradeExecutionService: the only path by which trade state changes.

Each public call validates its input locally, then submits exactly one
mutation to the backend. Backend and transport failures are returned inside
the ``TradeResult``; validation errors raise before any network call. Calls
are never retried here: after a ``BackendUnavailable`` the caller reconciles
with ``refresh``.
"""

from __future__ import annotations

from collections.abc import Mapping
from decimal import Decimal
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from tradedesk.errors import (
    AlreadyClosed,
    BackendUnavailable,
    ExecutionError,
    InvalidTransition,
    OrderRejected,
    PositionNotFound,
)
from tradedesk.logging import get_logger
from tradedesk.models.position import ClosedTrade, CloseReason, PendingOrder, Position
from tradedesk.models.trade import (
    EntryOrderParams,
    MarketOrderParams,
    RemoveFromPortfolioParams,
    TradeResult,
)
from tradedesk.trading import lifecycle
from tradedesk.trading.backend import UNKNOWN_OUTCOME, BackendClient
from tradedesk.trading.book import PositionBook
from tradedesk.trading.calc import calculate_pnl, leverage_for_market_type

log = get_logger(__name__)

M = TypeVar("M", bound=BaseModel)


def _wire(value: Any) -> Any:
    """Decimals travel as strings so no precision is lost in JSON."""
    if isinstance(value, Decimal):
        return str(value)
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return value


def _payload(**fields: Any) -> dict[str, Any]:
    return {k: _wire(v) for k, v in fields.items() if v is not None}


def _parse(model: type[M], data: Any, action: str) -> M:
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        log.error("backend_unexpected_data", action=action, model=model.__name__, error=str(exc))
        raise BackendUnavailable(UNKNOWN_OUTCOME, "unexpected_data") from exc


class TradeExecutionService:
    """Submits trade intents and keeps an optional ``PositionBook`` in step."""

    def __init__(
        self,
        backend: BackendClient,
        book: PositionBook | None = None,
        leverage_map: Mapping[str, float | Decimal] | None = None,
        default_leverage: float | Decimal = 1,
    ):
        self.backend = backend
        self.book = book
        self.leverage_map = dict(leverage_map or {})
        self.default_leverage = default_leverage

    def _leverage(self, market_type: str, requested: Decimal | None) -> Decimal:
        if requested is not None:
            return lifecycle.validate_leverage(requested)
        return lifecycle.validate_leverage(
            leverage_for_market_type(market_type, self.leverage_map, self.default_leverage),
        )

    def _failed(self, action: str, exc: ExecutionError, trade_id: str | None = None) -> TradeResult:
        log.warning(
            "trade_failed",
            action=action,
            trade_id=trade_id,
            error_type=type(exc).__name__,
            code=exc.code,
            reason=exc.reason,
        )
        return TradeResult.failed(exc, trade_id=trade_id)

    # ── Entry orders ──────────────────────────────────────────

    async def place_entry_order(self, params: EntryOrderParams) -> TradeResult:
        """Submit a limit or stop entry order.

        Raises ``DomainValidationError`` subclasses for bad input; backend
        refusals come back as ``OrderRejected`` in the result.
        """
        direction = lifecycle.validate_direction(params.direction)
        order_type = lifecycle.validate_order_type(params.order_type)
        quantity = lifecycle.validate_quantity(params.quantity)
        target = lifecycle.validate_price(params.target_price, "target_price")
        leverage = self._leverage(params.market_type, params.leverage)
        lifecycle.validate_protection(direction, target, params.stop_loss, params.take_profit)

        action = "place_entry_order"
        try:
            data = await self.backend.trade(action, _payload(
                user_id=params.user_id,
                symbol=params.symbol,
                market_type=params.market_type,
                order_type=order_type,
                direction=direction,
                quantity=quantity,
                target_price=target,
                leverage=leverage,
                stop_loss=params.stop_loss,
                take_profit=params.take_profit,
                expires_at=params.expires_at,
            ))
            order = _parse(PendingOrder, data, action)
        except ExecutionError as exc:
            return self._failed(action, exc)

        if self.book is not None:
            self.book.confirm_order(order)
        log.info(
            "entry_order_placed",
            order_id=order.id,
            symbol=order.symbol,
            order_type=order.order_type,
            direction=order.direction,
            target_price=str(order.target_price),
        )
        return TradeResult.ok("Order placed", trade_id=order.id, data=order)

    async def cancel_order(self, order_id: str) -> TradeResult:
        action = "cancel_order"
        try:
            data = await self.backend.trade(action, {"order_id": order_id})
            order = _parse(PendingOrder, data, action)
        except ExecutionError as exc:
            if self.book is not None and not isinstance(exc, BackendUnavailable):
                self.book.release(order_id)
            return self._failed(action, exc, order_id)

        if self.book is not None:
            self.book.confirm_cancel(order_id)
        log.info("entry_order_cancelled", order_id=order_id)
        return TradeResult.ok("Order cancelled", trade_id=order_id, data=order)

    async def fill_entry_order(self, order: PendingOrder, fill_price: Decimal) -> TradeResult:
        """Convert a triggered entry order into an open position at *fill_price*."""
        # Local transition first: rejects non-pending orders before the network.
        _, expected = lifecycle.fill_order(order, fill_price)

        action = "fill_entry_order"
        try:
            data = await self.backend.trade(action, _payload(
                order_id=order.id,
                user_id=order.user_id,
                fill_price=expected.entry_price,
                margin_required=expected.margin_required,
            ))
            position = _parse(Position, data, action)
        except ExecutionError as exc:
            if self.book is not None and not isinstance(exc, BackendUnavailable):
                self.book.release(order.id)
            return self._failed(action, exc, order.id)

        if self.book is not None:
            self.book.confirm_fill(order.id, position)
        log.info(
            "entry_order_filled",
            order_id=order.id,
            position_id=position.id,
            fill_price=str(position.entry_price),
        )
        return TradeResult.ok("Order filled", trade_id=position.id, data=position)

    # ── Positions ─────────────────────────────────────────────

    async def open_position(self, params: MarketOrderParams) -> TradeResult:
        """Open at the client-observed reference price; the backend's entry price wins."""
        direction = lifecycle.validate_direction(params.direction)
        quantity = lifecycle.validate_quantity(params.quantity)
        reference = lifecycle.validate_price(params.reference_price, "reference_price")
        leverage = self._leverage(params.market_type, params.leverage)
        lifecycle.validate_protection(direction, reference, params.stop_loss, params.take_profit)
        expected = lifecycle.open_position(
            user_id=params.user_id,
            symbol=params.symbol,
            market_type=params.market_type,
            direction=direction,
            quantity=quantity,
            entry_price=reference,
            leverage=leverage,
            stop_loss=params.stop_loss,
            take_profit=params.take_profit,
        )

        action = "open_position"
        try:
            data = await self.backend.trade(action, _payload(
                user_id=expected.user_id,
                symbol=expected.symbol,
                market_type=expected.market_type,
                direction=expected.direction,
                quantity=expected.quantity,
                reference_price=reference,
                leverage=expected.leverage,
                margin_required=expected.margin_required,
                stop_loss=expected.stop_loss,
                take_profit=expected.take_profit,
            ))
            position = _parse(Position, data, action)
        except ExecutionError as exc:
            return self._failed(action, exc)

        if self.book is not None:
            self.book.confirm_open(position)
        log.info(
            "position_opened",
            position_id=position.id,
            symbol=position.symbol,
            direction=position.direction,
            entry_price=str(position.entry_price),
            margin=str(position.margin_required),
        )
        return TradeResult.ok("Position opened", trade_id=position.id, data=position)

    async def close_position(
        self,
        trade_id: str,
        current_price: Decimal,
        reason: CloseReason = "manual",
    ) -> TradeResult:
        """Close *trade_id* with *current_price* as the client's reference.

        Realised P&L is computed from the exit price the backend reports,
        not from the reference.
        """
        reference = lifecycle.validate_price(current_price, "current_price")
        if reason not in lifecycle.CLOSE_REASONS:
            raise InvalidTransition(f"unknown close reason {reason!r}")

        action = "close_position"
        try:
            data = await self.backend.trade(action, _payload(
                trade_id=trade_id,
                current_price=reference,
                close_reason=reason,
            ))
            closed = self._closed_trade(trade_id, data, reason)
        except (PositionNotFound, AlreadyClosed) as exc:
            if self.book is not None:
                self.book.confirm_close(trade_id)
            return self._failed(action, exc, trade_id)
        except ExecutionError as exc:
            if self.book is not None and isinstance(exc, OrderRejected):
                self.book.release(trade_id)
            return self._failed(action, exc, trade_id)

        if self.book is not None:
            self.book.confirm_close(trade_id)
        log.info(
            "position_closed",
            position_id=trade_id,
            reason=reason,
            reference_price=str(reference),
            exit_price=str(closed.exit_price),
            realized_pnl=str(closed.realized_pnl),
        )
        return TradeResult.ok("Position closed", trade_id=trade_id, data=closed)

    def _closed_trade(self, trade_id: str, data: Any, reason: CloseReason) -> ClosedTrade:
        if not isinstance(data, dict) or data.get("exit_price") is None:
            raise BackendUnavailable(UNKNOWN_OUTCOME, "unexpected_data")
        try:
            exit_price = Decimal(str(data["exit_price"]))
        except ArithmeticError as exc:
            raise BackendUnavailable(UNKNOWN_OUTCOME, "unexpected_data") from exc

        position = None
        if self.book is not None:
            try:
                position = self.book.get_position(trade_id)
            except PositionNotFound:
                position = None
        if position is not None:
            return lifecycle.close_position(
                position, exit_price, reason, trade_id=data.get("id") or None,
            )

        # The backend row may carry its own status or close reason; the
        # closed trade records the reason this client submitted.
        record = {
            **data,
            "id": data.get("id") or trade_id,
            "position_id": trade_id,
            "close_reason": reason,
        }
        try:
            record["realized_pnl"] = calculate_pnl(
                record["direction"],
                Decimal(str(record["entry_price"])),
                exit_price,
                Decimal(str(record["quantity"])),
            )
        except (KeyError, ArithmeticError, ValueError) as exc:
            raise BackendUnavailable(UNKNOWN_OUTCOME, "unexpected_data") from exc
        return _parse(ClosedTrade, record, "close_position")

    # ── Portfolio ─────────────────────────────────────────────

    async def remove_from_portfolio(self, params: RemoveFromPortfolioParams) -> TradeResult:
        """Detach a portfolio entry. Removing something already gone succeeds."""
        if params.quantity is not None:
            lifecycle.validate_quantity(params.quantity)

        action = "remove_from_portfolio"
        try:
            await self.backend.portfolio(action, _payload(
                user_id=params.user_id,
                symbol=params.symbol,
                quantity=params.quantity,
            ))
        except ExecutionError as exc:
            if exc.code == "not_found":
                log.info("portfolio_entry_already_removed", symbol=params.symbol)
                return TradeResult.ok("Already removed")
            return self._failed(action, exc)

        log.info("portfolio_entry_removed", symbol=params.symbol, quantity=_wire(params.quantity))
        return TradeResult.ok("Removed from portfolio")

    # ── Reconciliation ────────────────────────────────────────

    async def refresh(self, user_id: str) -> TradeResult:
        """Reload open positions and pending orders from the backend."""
        action = "list_trades"
        try:
            data = await self.backend.trade(action, {"user_id": user_id})
            if not isinstance(data, dict):
                raise BackendUnavailable(UNKNOWN_OUTCOME, "unexpected_data")
            positions = [_parse(Position, p, action) for p in data.get("positions") or []]
            orders = [_parse(PendingOrder, o, action) for o in data.get("orders") or []]
        except ExecutionError as exc:
            return self._failed(action, exc)

        if self.book is not None:
            self.book.load(positions, orders)
        return TradeResult.ok(f"{len(positions)} positions, {len(orders)} orders")
