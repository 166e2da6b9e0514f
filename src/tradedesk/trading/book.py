"""In-memory projection of one user's open positions and pending orders.

The book never mutates authoritative state. Each tick is applied in ``seq``
order per symbol; stale ticks are dropped before they can touch a mark. The
triggers a tick causes are returned as intents for the execution service to
submit, and the book only changes shape once the service confirms the result.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal

from tradedesk.errors import PositionNotFound
from tradedesk.logging import get_logger
from tradedesk.models.market import PriceTick
from tradedesk.models.position import (
    AccountSnapshot,
    CloseReason,
    PendingOrder,
    Position,
)
from tradedesk.trading.calc import (
    account_snapshot,
    entry_order_triggered,
    evaluate_exit,
    liquidation_price,
    unrealized_pnl,
)
from tradedesk.trading.lifecycle import is_expired

log = get_logger(__name__)


@dataclass
class TickOutcome:
    """Intents produced by one accepted tick."""

    tick: PriceTick
    fills: list[tuple[PendingOrder, Decimal]] = field(default_factory=list)
    expiries: list[PendingOrder] = field(default_factory=list)
    exits: list[tuple[Position, CloseReason, Decimal]] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not (self.fills or self.expiries or self.exits)


@dataclass(frozen=True)
class MarkedPosition:
    position: Position
    mark: Decimal | None
    unrealized_pnl: Decimal | None
    liquidation_price: Decimal


class PositionBook:
    """Read-mostly view kept in step with the backend by the execution service."""

    def __init__(
        self,
        user_id: str | None = None,
        margin_call_level: float = 100,
        stop_out_level: float = 0.5,
    ) -> None:
        self.user_id = user_id
        self.margin_call_level = margin_call_level
        self.stop_out_level = stop_out_level
        self._positions: dict[str, Position] = {}
        self._orders: dict[str, PendingOrder] = {}
        self._marks: dict[str, Decimal] = {}
        self._last_seq: dict[str, int] = {}
        self._in_flight: set[str] = set()

    def __len__(self) -> int:
        return len(self._positions)

    # ── State ─────────────────────────────────────────────────

    def load(
        self,
        positions: Iterable[Position],
        orders: Iterable[PendingOrder] = (),
    ) -> None:
        """Replace the projection with authoritative state.

        Marks and tick ordering survive a reload; outstanding intents do not.
        """
        self._positions = {p.id: p for p in positions}
        self._orders = {o.id: o for o in orders if o.status == "pending"}
        self._in_flight.clear()
        log.info(
            "book_loaded",
            user_id=self.user_id,
            positions=len(self._positions),
            orders=len(self._orders),
        )

    @property
    def positions(self) -> list[Position]:
        return list(self._positions.values())

    @property
    def orders(self) -> list[PendingOrder]:
        return list(self._orders.values())

    def get_position(self, position_id: str) -> Position:
        try:
            return self._positions[position_id]
        except KeyError:
            raise PositionNotFound(f"position {position_id} is not open", "position_not_found") from None

    def mark(self, symbol: str) -> Decimal | None:
        return self._marks.get(symbol)

    def last_seq(self, symbol: str) -> int | None:
        return self._last_seq.get(symbol)

    def is_in_flight(self, item_id: str) -> bool:
        return item_id in self._in_flight

    # ── Ticks ─────────────────────────────────────────────────

    def apply_tick(self, tick: PriceTick, now: datetime | None = None) -> TickOutcome | None:
        """Record *tick* as the symbol's mark and evaluate its triggers.

        Returns None when the tick is dropped: its seq is not newer than the
        last applied one for the symbol, or it carries fallback data. Every
        order and position reported in the outcome is marked in flight and
        is not reported again until confirmed or released.
        """
        last = self._last_seq.get(tick.symbol)
        if last is not None and tick.seq <= last:
            log.debug("tick_out_of_order", symbol=tick.symbol, seq=tick.seq, last_seq=last)
            return None
        if tick.is_fallback:
            log.debug("tick_fallback_ignored", symbol=tick.symbol, seq=tick.seq)
            return None

        self._last_seq[tick.symbol] = tick.seq
        self._marks[tick.symbol] = tick.price
        now = now or datetime.now(timezone.utc)
        outcome = TickOutcome(tick=tick)

        for order in self._orders.values():
            if order.id in self._in_flight:
                continue
            if is_expired(order, now):
                outcome.expiries.append(order)
            elif order.symbol == tick.symbol and entry_order_triggered(order, tick.price):
                outcome.fills.append((order, tick.price))

        for position in self._positions.values():
            if position.symbol != tick.symbol or position.id in self._in_flight:
                continue
            reason = evaluate_exit(position, tick.price)
            if reason is not None:
                outcome.exits.append((position, reason, tick.price))

        self._in_flight.update(o.id for o in outcome.expiries)
        self._in_flight.update(o.id for o, _ in outcome.fills)
        self._in_flight.update(p.id for p, _, _ in outcome.exits)
        if not outcome.empty:
            log.info(
                "tick_triggers",
                symbol=tick.symbol,
                seq=tick.seq,
                price=str(tick.price),
                fills=[o.id for o, _ in outcome.fills],
                expiries=[o.id for o in outcome.expiries],
                exits=[(p.id, r) for p, r, _ in outcome.exits],
            )
        return outcome

    # ── Valuation ─────────────────────────────────────────────

    def unrealized_pnl(self, position_id: str) -> Decimal | None:
        """P&L against the latest applied mark; None if the symbol is unmarked."""
        position = self.get_position(position_id)
        mark = self._marks.get(position.symbol)
        if mark is None:
            return None
        return unrealized_pnl(position, mark)

    def marked_positions(self) -> list[MarkedPosition]:
        result = []
        for position in self._positions.values():
            mark = self._marks.get(position.symbol)
            pnl = unrealized_pnl(position, mark) if mark is not None else None
            liquidation = liquidation_price(
                position.direction, position.entry_price, position.leverage, self.stop_out_level,
            )
            result.append(MarkedPosition(position, mark, pnl, liquidation))
        return result

    def snapshot(self, balance: Decimal) -> AccountSnapshot:
        return account_snapshot(
            balance,
            self._positions.values(),
            self._marks,
            margin_call_level=self.margin_call_level,
            stop_out_level=self.stop_out_level,
        )

    # ── Confirmations ─────────────────────────────────────────

    def confirm_open(self, position: Position) -> None:
        self._positions[position.id] = position
        self._in_flight.discard(position.id)

    def confirm_close(self, position_id: str) -> None:
        self._positions.pop(position_id, None)
        self._in_flight.discard(position_id)

    def confirm_order(self, order: PendingOrder) -> None:
        if order.status == "pending":
            self._orders[order.id] = order
        self._in_flight.discard(order.id)

    def confirm_fill(self, order_id: str, position: Position) -> None:
        self._orders.pop(order_id, None)
        self._in_flight.discard(order_id)
        self.confirm_open(position)

    def confirm_cancel(self, order_id: str) -> None:
        self._orders.pop(order_id, None)
        self._in_flight.discard(order_id)

    def release(self, item_id: str) -> None:
        """Forget an intent the backend rejected so the next tick may retry it."""
        self._in_flight.discard(item_id)
