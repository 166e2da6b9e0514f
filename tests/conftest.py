"""Shared test fixtures."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from decimal import Decimal

import httpx
import pytest

from tradedesk.models.position import PendingOrder, Position
from tradedesk.trading.backend import BackendClient

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class FakeBackend:
    """Scripted trade backend behind an ``httpx.MockTransport``.

    Responses are keyed by action. Every request body is recorded so tests
    can assert how many mutations were sent and with what payload.
    """

    def __init__(self) -> None:
        self.requests: list[tuple[str, dict]] = []
        self._responses: dict[str, object] = {}

    def respond(self, action: str, data=None, error=None, status: int = 200) -> None:
        self._responses[action] = (status, {"data": data, "error": error})

    def respond_raw(self, action: str, status: int, content: bytes) -> None:
        self._responses[action] = (status, content)

    def fail(self, action: str, exc_type: type[httpx.HTTPError] = httpx.ConnectError) -> None:
        self._responses[action] = exc_type

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.requests.append((request.url.path, body))
        scripted = self._responses.get(body.get("action"))
        if scripted is None:
            return httpx.Response(400, json={"data": None, "error": {"code": "unknown_action", "message": "unknown action"}})
        if isinstance(scripted, type):
            raise scripted("connection refused", request=request)
        status, payload = scripted
        if isinstance(payload, bytes):
            return httpx.Response(status, content=payload)
        return httpx.Response(status, json=payload)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    @property
    def actions(self) -> list[str]:
        return [body["action"] for _, body in self.requests]


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def backend_client(fake_backend) -> BackendClient:
    return BackendClient(
        "http://backend.test",
        api_key="anon-key",
        access_token="user-token",
        transport=fake_backend.transport,
    )


@pytest.fixture
def make_position():
    def _make(**overrides) -> Position:
        fields = dict(
            id="pos-1",
            user_id="user-1",
            symbol="AAPL",
            market_type="Stock",
            direction="buy",
            quantity=Decimal("10"),
            entry_price=Decimal("100"),
            leverage=Decimal("20"),
            margin_required=Decimal("50"),
            created_at=T0,
        )
        fields.update(overrides)
        return Position(**fields)
    return _make


@pytest.fixture
def make_order():
    def _make(**overrides) -> PendingOrder:
        fields = dict(
            id="ord-1",
            user_id="user-1",
            symbol="AAPL",
            market_type="Stock",
            order_type="limit",
            direction="buy",
            quantity=Decimal("10"),
            target_price=Decimal("95"),
            leverage=Decimal("20"),
            created_at=T0,
        )
        fields.update(overrides)
        return PendingOrder(**fields)
    return _make


def position_json(**overrides) -> dict:
    """A Position as the backend serialises it."""
    data = {
        "id": "pos-1",
        "user_id": "user-1",
        "symbol": "AAPL",
        "market_type": "Stock",
        "direction": "buy",
        "quantity": "10",
        "entry_price": "100",
        "leverage": "20",
        "margin_required": "50",
        "created_at": T0.isoformat(),
    }
    data.update(overrides)
    return data


def order_json(**overrides) -> dict:
    data = {
        "id": "ord-1",
        "user_id": "user-1",
        "symbol": "AAPL",
        "market_type": "Stock",
        "order_type": "limit",
        "direction": "buy",
        "quantity": "10",
        "target_price": "95",
        "leverage": "20",
        "created_at": T0.isoformat(),
        "status": "pending",
    }
    data.update(overrides)
    return data


@pytest.fixture
def backend_position():
    return position_json


@pytest.fixture
def backend_order():
    return order_json
