"""Tests for TradeExecutionService against a scripted backend."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from tradedesk.errors import (
    AlreadyClosed,
    BackendUnavailable,
    InvalidDirection,
    InvalidLeverage,
    InvalidOrderType,
    InvalidPrice,
    InvalidQuantity,
    InvalidTransition,
    OrderRejected,
    PositionNotFound,
)
from tradedesk.models import (
    ClosedTrade,
    EntryOrderParams,
    MarketOrderParams,
    PendingOrder,
    Position,
    RemoveFromPortfolioParams,
)
from tradedesk.models.market import PriceTick
from tradedesk.trading.book import PositionBook
from tradedesk.trading.service import TradeExecutionService

D = Decimal
T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def book():
    return PositionBook("user-1")


@pytest.fixture
def service(backend_client, book):
    return TradeExecutionService(backend_client, book, leverage_map={"Stock": 20, "Forex": 100})


def entry_params(**overrides) -> EntryOrderParams:
    fields = dict(
        user_id="user-1",
        symbol="AAPL",
        market_type="Stock",
        order_type="limit",
        direction="buy",
        quantity=D("10"),
        target_price=D("95"),
    )
    fields.update(overrides)
    return EntryOrderParams(**fields)


def market_params(**overrides) -> MarketOrderParams:
    fields = dict(
        user_id="user-1",
        symbol="AAPL",
        market_type="Stock",
        direction="buy",
        quantity=D("10"),
        reference_price=D("100"),
    )
    fields.update(overrides)
    return MarketOrderParams(**fields)


class TestPlaceEntryOrder:
    @pytest.mark.asyncio
    async def test_places_pending_order(self, service, fake_backend, backend_order, book):
        fake_backend.respond("place_entry_order", data=backend_order())
        result = await service.place_entry_order(entry_params(stop_loss=D("90")))

        assert result.success
        assert isinstance(result.data, PendingOrder)
        assert result.trade_id == "ord-1"
        assert [o.id for o in book.orders] == ["ord-1"]

        (_, body) = fake_backend.requests[0]
        assert body["action"] == "place_entry_order"
        assert body["target_price"] == "95"
        assert body["leverage"] == "20"
        assert body["stop_loss"] == "90"
        assert "take_profit" not in body

    @pytest.mark.asyncio
    async def test_rejection_returned_not_raised(self, service, fake_backend, book):
        fake_backend.respond("place_entry_order", error={"code": "insufficient_margin", "message": "Insufficient funds"})
        result = await service.place_entry_order(entry_params())

        assert not result.success
        assert isinstance(result.error, OrderRejected)
        assert result.message == "Insufficient funds"
        assert book.orders == []
        assert fake_backend.actions == ["place_entry_order"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("overrides, exc_type", [
        ({"quantity": D("0")}, InvalidQuantity),
        ({"target_price": D("0")}, InvalidPrice),
        ({"direction": "long"}, InvalidDirection),
        ({"order_type": "market"}, InvalidOrderType),
        ({"leverage": D("0")}, InvalidLeverage),
        ({"stop_loss": D("96")}, InvalidPrice),
    ])
    async def test_validation_before_network(self, service, fake_backend, overrides, exc_type):
        with pytest.raises(exc_type):
            await service.place_entry_order(entry_params(**overrides))
        assert fake_backend.requests == []

    @pytest.mark.asyncio
    async def test_unexpected_data_is_unknown_outcome(self, service, fake_backend):
        fake_backend.respond("place_entry_order", data={"id": "ord-1"})
        result = await service.place_entry_order(entry_params())
        assert isinstance(result.error, BackendUnavailable)


class TestOpenPosition:
    @pytest.mark.asyncio
    async def test_open_uses_backend_entry(self, service, fake_backend, backend_position, book):
        fake_backend.respond("open_position", data=backend_position(entry_price="100.2", margin_required="50.1"))
        result = await service.open_position(market_params())

        assert result.success
        assert isinstance(result.data, Position)
        assert result.data.entry_price == D("100.2")
        assert book.get_position("pos-1").entry_price == D("100.2")

        body = fake_backend.requests[0][1]
        assert body["reference_price"] == "100"
        assert body["margin_required"] == "50"
        assert body["leverage"] == "20"

    @pytest.mark.asyncio
    async def test_default_leverage_for_unmapped_market(self, backend_client, fake_backend, backend_position):
        fake_backend.respond("open_position", data=backend_position(market_type="Index"))
        service = TradeExecutionService(backend_client, default_leverage=5)
        await service.open_position(market_params(market_type="Index"))
        assert fake_backend.requests[0][1]["leverage"] == "5"

    @pytest.mark.asyncio
    async def test_take_profit_on_wrong_side(self, service, fake_backend):
        with pytest.raises(InvalidPrice):
            await service.open_position(market_params(direction="sell", take_profit=D("110")))
        assert fake_backend.requests == []

    @pytest.mark.asyncio
    async def test_transport_failure_not_retried(self, service, fake_backend, book):
        fake_backend.fail("open_position")
        result = await service.open_position(market_params())
        assert isinstance(result.error, BackendUnavailable)
        assert fake_backend.actions == ["open_position"]
        assert len(book) == 0


class TestClosePosition:
    @pytest.mark.asyncio
    async def test_close_realizes_pnl_from_executed_price(self, service, fake_backend, book, make_position):
        book.load([make_position()])
        fake_backend.respond("close_position", data={"id": "trade-1", "position_id": "pos-1", "exit_price": "101.5"})

        result = await service.close_position("pos-1", D("101.5"))

        assert result.success
        assert isinstance(result.data, ClosedTrade)
        assert result.data.realized_pnl == D("15.0")
        assert result.data.close_reason == "manual"
        assert len(book) == 0
        body = fake_backend.requests[0][1]
        assert body == {"action": "close_position", "trade_id": "pos-1", "current_price": "101.5", "close_reason": "manual"}

    @pytest.mark.asyncio
    async def test_backend_exit_price_is_authoritative(self, service, fake_backend, book, make_position):
        book.load([make_position()])
        fake_backend.respond("close_position", data={"exit_price": "101.0"})
        result = await service.close_position("pos-1", D("101.5"), reason="take_profit")
        assert result.data.exit_price == D("101.0")
        assert result.data.realized_pnl == D("10.0")
        assert result.data.close_reason == "take_profit"

    @pytest.mark.asyncio
    async def test_close_without_book_uses_backend_record(self, backend_client, fake_backend):
        fake_backend.respond("close_position", data={
            "id": "trade-1",
            "position_id": "pos-1",
            "user_id": "user-1",
            "symbol": "AAPL",
            "market_type": "Stock",
            "direction": "buy",
            "quantity": "10",
            "entry_price": "100",
            "exit_price": "101.5",
            "realized_pnl": "999",
            "opened_at": T0.isoformat(),
            "closed_at": T0.isoformat(),
        })
        service = TradeExecutionService(backend_client)
        result = await service.close_position("pos-1", D("101.5"))
        assert result.data.realized_pnl == D("15.0")

    @pytest.mark.asyncio
    async def test_backend_row_status_fields_do_not_override_close(self, backend_client, fake_backend):
        fake_backend.respond("close_position", data={
            "position_id": "other",
            "user_id": "user-1",
            "symbol": "AAPL",
            "market_type": "Stock",
            "direction": "buy",
            "quantity": "10",
            "entry_price": "100",
            "exit_price": "94",
            "close_reason": "closed",
            "status": "closed",
            "opened_at": T0.isoformat(),
            "closed_at": T0.isoformat(),
        })
        service = TradeExecutionService(backend_client)

        result = await service.close_position("pos-1", D("94"), reason="stop_loss")

        assert result.success
        assert result.data.id == "pos-1"
        assert result.data.position_id == "pos-1"
        assert result.data.close_reason == "stop_loss"
        assert result.data.realized_pnl == D("-60")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("code, exc_type", [
        ("position_not_found", PositionNotFound),
        ("already_closed", AlreadyClosed),
    ])
    async def test_terminal_errors_drop_position(self, service, fake_backend, book, make_position, code, exc_type):
        book.load([make_position()])
        fake_backend.respond("close_position", error={"code": code, "message": code})
        result = await service.close_position("pos-1", D("101.5"))
        assert isinstance(result.error, exc_type)
        assert len(book) == 0

    @pytest.mark.asyncio
    async def test_rejection_releases_intent(self, service, fake_backend, book, make_position):
        book.load([make_position(stop_loss=D("95"))])
        book.apply_tick(PriceTick(symbol="AAPL", price=D("94"), seq=1, ts=T0), now=T0)
        assert book.is_in_flight("pos-1")

        fake_backend.respond("close_position", error="Market closed")
        result = await service.close_position("pos-1", D("94"), reason="stop_loss")

        assert isinstance(result.error, OrderRejected)
        assert not book.is_in_flight("pos-1")
        assert len(book) == 1

    @pytest.mark.asyncio
    async def test_invalid_reference_price(self, service, fake_backend):
        with pytest.raises(InvalidPrice):
            await service.close_position("pos-1", D("0"))
        assert fake_backend.requests == []


class TestEntryOrderLifecycle:
    @pytest.mark.asyncio
    async def test_fill_entry_order(self, service, fake_backend, book, make_order, backend_position):
        order = make_order(order_type="stop", direction="sell", target_price=D("50"))
        book.load([], [order])
        fake_backend.respond("fill_entry_order", data=backend_position(
            id="pos-7", direction="sell", entry_price="49", margin_required="24.5", order_id="ord-1",
        ))

        result = await service.fill_entry_order(order, D("49"))

        assert result.success
        assert result.data.entry_price == D("49")
        assert book.orders == []
        assert book.get_position("pos-7").order_id == "ord-1"
        body = fake_backend.requests[0][1]
        assert body["fill_price"] == "49"
        assert body["margin_required"] == "24.5"

    @pytest.mark.asyncio
    async def test_fill_terminal_order_rejected_locally(self, service, fake_backend, make_order):
        with pytest.raises(InvalidTransition):
            await service.fill_entry_order(make_order(status="cancelled"), D("49"))
        assert fake_backend.requests == []

    @pytest.mark.asyncio
    async def test_cancel_order(self, service, fake_backend, book, make_order, backend_order):
        book.load([], [make_order()])
        fake_backend.respond("cancel_order", data=backend_order(status="cancelled", cancelled_at=T0.isoformat()))
        result = await service.cancel_order("ord-1")
        assert result.success
        assert result.data.status == "cancelled"
        assert book.orders == []


class TestRemoveFromPortfolio:
    @pytest.mark.asyncio
    async def test_remove(self, service, fake_backend):
        fake_backend.respond("remove_from_portfolio", data={"removed": True})
        result = await service.remove_from_portfolio(RemoveFromPortfolioParams(user_id="user-1", symbol="AAPL"))
        assert result.success
        assert fake_backend.requests[0][0].endswith("/portfolio-operations")

    @pytest.mark.asyncio
    async def test_idempotent_when_already_gone(self, service, fake_backend):
        fake_backend.respond("remove_from_portfolio", error={"code": "not_found", "message": "not in portfolio"})
        params = RemoveFromPortfolioParams(user_id="user-1", symbol="AAPL")
        first = await service.remove_from_portfolio(params)
        second = await service.remove_from_portfolio(params)
        assert first.success and second.success
        assert first.error is None

    @pytest.mark.asyncio
    async def test_other_errors_reported(self, service, fake_backend):
        fake_backend.respond("remove_from_portfolio", error="permission denied")
        result = await service.remove_from_portfolio(RemoveFromPortfolioParams(user_id="user-1", symbol="AAPL"))
        assert isinstance(result.error, OrderRejected)

    @pytest.mark.asyncio
    async def test_partial_quantity_validated(self, service, fake_backend):
        with pytest.raises(InvalidQuantity):
            await service.remove_from_portfolio(
                RemoveFromPortfolioParams(user_id="user-1", symbol="AAPL", quantity=D("-1")),
            )
        assert fake_backend.requests == []


class TestRefresh:
    @pytest.mark.asyncio
    async def test_refresh_reloads_book(self, service, fake_backend, book, backend_position, backend_order):
        fake_backend.respond("list_trades", data={
            "positions": [backend_position(), backend_position(id="pos-2", symbol="MSFT")],
            "orders": [backend_order()],
        })
        result = await service.refresh("user-1")
        assert result.success
        assert sorted(p.id for p in book.positions) == ["pos-1", "pos-2"]
        assert [o.id for o in book.orders] == ["ord-1"]
        assert fake_backend.requests[0][1] == {"action": "list_trades", "user_id": "user-1"}

    @pytest.mark.asyncio
    async def test_refresh_failure_keeps_book(self, service, fake_backend, book, make_position):
        book.load([make_position()])
        fake_backend.fail("list_trades")
        result = await service.refresh("user-1")
        assert not result.success
        assert len(book) == 1
