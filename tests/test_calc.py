"""Tests for margin, P&L, trigger and account calculations."""

from __future__ import annotations

import random
from decimal import Decimal

import pytest

from tradedesk.errors import InvalidLeverage, InvalidPrice, InvalidQuantity
from tradedesk.trading.calc import (
    account_snapshot,
    calculate_pnl,
    entry_order_triggered,
    evaluate_exit,
    leverage_for_market_type,
    liquidation_price,
    margin_required,
    margin_status,
    unrealized_pnl,
)

D = Decimal


class TestMarginRequired:
    def test_formula(self):
        assert margin_required(D("10"), D("100"), D("20")) == D("50")

    def test_unleveraged(self):
        assert margin_required(D("2"), D("67432.21"), D("1")) == D("134864.42")

    def test_accepts_plain_numbers(self):
        assert margin_required(4, "25", 2) == D("50")

    @pytest.mark.parametrize("leverage", [D("0"), D("-5")])
    def test_non_positive_leverage(self, leverage):
        with pytest.raises(InvalidLeverage):
            margin_required(D("1"), D("100"), leverage)

    def test_non_positive_quantity(self):
        with pytest.raises(InvalidQuantity):
            margin_required(D("0"), D("100"), D("10"))

    def test_non_positive_price(self):
        with pytest.raises(InvalidPrice):
            margin_required(D("1"), D("0"), D("10"))

    def test_validation_errors_are_value_errors(self):
        with pytest.raises(ValueError):
            margin_required(D("1"), D("1"), D("0"))


class TestPnl:
    def test_buy(self):
        assert calculate_pnl("buy", D("100"), D("101.5"), D("10")) == D("15.0")

    def test_sell(self):
        assert calculate_pnl("sell", D("100"), D("101.5"), D("10")) == D("-15.0")

    def test_zero_delta(self):
        assert calculate_pnl("buy", D("100"), D("100"), D("7")) == 0
        assert calculate_pnl("sell", D("100"), D("100"), D("7")) == 0

    @pytest.mark.parametrize("seed", range(20))
    def test_closed_form_over_random_inputs(self, seed):
        rng = random.Random(seed)
        entry = D(str(round(rng.uniform(0.0001, 100000), 4)))
        current = D(str(round(rng.uniform(0.0001, 100000), 4)))
        qty = D(str(round(rng.uniform(0.001, 1000), 3)))

        buy = calculate_pnl("buy", entry, current, qty)
        sell = calculate_pnl("sell", entry, current, qty)
        assert buy == (current - entry) * qty
        assert sell == (entry - current) * qty
        assert buy + sell == 0

    def test_unrealized_uses_position(self, make_position):
        pos = make_position(direction="sell", entry_price=D("100"), quantity=D("3"))
        assert unrealized_pnl(pos, D("90")) == D("30")
        assert unrealized_pnl(pos, D("110")) == D("-30")


class TestEvaluateExit:
    def test_buy_take_profit(self, make_position):
        pos = make_position(take_profit=D("110"), stop_loss=D("95"))
        assert evaluate_exit(pos, D("110")) == "take_profit"
        assert evaluate_exit(pos, D("109.99")) is None

    def test_buy_stop_loss(self, make_position):
        pos = make_position(take_profit=D("110"), stop_loss=D("95"))
        assert evaluate_exit(pos, D("95")) == "stop_loss"
        assert evaluate_exit(pos, D("80")) == "stop_loss"

    def test_sell_thresholds(self, make_position):
        pos = make_position(direction="sell", take_profit=D("90"), stop_loss=D("105"))
        assert evaluate_exit(pos, D("105.5")) == "stop_loss"
        assert evaluate_exit(pos, D("89")) == "take_profit"
        assert evaluate_exit(pos, D("100")) is None

    def test_no_thresholds(self, make_position):
        assert evaluate_exit(make_position(), D("1")) is None

    def test_stop_loss_wins_when_both_satisfied(self, make_position):
        # Thresholds loaded from the backend can overlap; both fire at 100.
        pos = make_position(stop_loss=D("102"), take_profit=D("98"))
        assert evaluate_exit(pos, D("100")) == "stop_loss"
        short = make_position(direction="sell", stop_loss=D("98"), take_profit=D("102"))
        assert evaluate_exit(short, D("100")) == "stop_loss"


class TestEntryOrderTriggered:
    @pytest.mark.parametrize("order_type, direction, target, price, expected", [
        ("limit", "buy", "95", "95", True),
        ("limit", "buy", "95", "94", True),
        ("limit", "buy", "95", "96", False),
        ("limit", "sell", "105", "105", True),
        ("limit", "sell", "105", "104", False),
        ("stop", "buy", "105", "106", True),
        ("stop", "buy", "105", "104", False),
        ("stop", "sell", "50", "52", False),
        ("stop", "sell", "50", "49", True),
        ("stop", "sell", "50", "50", True),
    ])
    def test_trigger_table(self, make_order, order_type, direction, target, price, expected):
        order = make_order(order_type=order_type, direction=direction, target_price=D(target))
        assert entry_order_triggered(order, D(price)) is expected


class TestLeverageAndLiquidation:
    def test_leverage_lookup(self):
        table = {"Forex": 100, "Stock": 20}
        assert leverage_for_market_type("Forex", table) == D("100")
        assert leverage_for_market_type("Bonds", table) == D("1")
        assert leverage_for_market_type("Bonds", table, default=5) == D("5")

    def test_liquidation_buy(self):
        assert liquidation_price("buy", D("100"), D("10")) == D("95")

    def test_liquidation_sell(self):
        assert liquidation_price("sell", D("100"), D("10")) == D("105")

    def test_liquidation_custom_stop_out(self):
        # Stop out at 20% margin level: 80% of the margin may be lost.
        assert liquidation_price("buy", D("200"), D("2"), stop_out_level=D("0.2")) == D("120")

    def test_liquidation_invalid_leverage(self):
        with pytest.raises(InvalidLeverage):
            liquidation_price("buy", D("100"), D("0"))


class TestAccountSnapshot:
    def test_no_positions(self):
        snap = account_snapshot(D("10000"), [], {})
        assert snap.equity == D("10000")
        assert snap.free_margin == D("10000")
        assert snap.margin_level is None
        assert snap.open_positions == 0

    def test_with_marked_and_unmarked_positions(self, make_position):
        marked = make_position(id="p1", symbol="AAPL")  # margin 50, entry 100, qty 10
        unmarked = make_position(id="p2", symbol="MSFT", margin_required=D("30"))
        snap = account_snapshot(D("1000"), [marked, unmarked], {"AAPL": D("101.5")})

        assert snap.unrealized_pnl == D("15.0")
        assert snap.equity == D("1015.0")
        assert snap.used_margin == D("80")
        assert snap.free_margin == D("935.0")
        assert snap.margin_level == D("1015.0") / D("80") * 100
        assert snap.open_positions == 2

    def test_status_follows_margin_level(self, make_position):
        position = make_position()  # margin 50
        snap = account_snapshot(D("20"), [position], {"AAPL": D("100")}, margin_call_level=100)
        assert snap.margin_level == D("40")
        assert snap.margin_status == "stop_out"


class TestMarginStatus:
    @pytest.mark.parametrize("level, expected", [
        (None, "safe"),
        ("1000", "safe"),
        ("150.01", "safe"),
        ("150", "warning"),
        ("120", "warning"),
        ("100", "margin_call"),
        ("50.01", "margin_call"),
        ("50", "stop_out"),
        ("0", "stop_out"),
    ])
    def test_default_thresholds(self, level, expected):
        assert margin_status(D(level) if level is not None else None) == expected

    def test_custom_thresholds(self):
        assert margin_status(D("180"), margin_call_level=150) == "warning"
        assert margin_status(D("25"), stop_out_level=0.2) == "margin_call"
        assert margin_status(D("20"), stop_out_level=0.2) == "stop_out"
