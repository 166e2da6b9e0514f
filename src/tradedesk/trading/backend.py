"""HTTP client for the trade backend's serverless functions.

Every call is ``POST {url}/functions/v1/{function}`` with a JSON body
``{"action": ..., **payload}``. The backend answers ``{"data": ..., "error":
...}``; a non-null ``error`` (a string, or ``{"code", "message"}``) means the
mutation was not applied.
"""

from __future__ import annotations

from typing import Any

import httpx

from tradedesk.config.schema import BackendConfig
from tradedesk.errors import (
    AlreadyClosed,
    BackendUnavailable,
    ExecutionError,
    OrderRejected,
    PositionNotFound,
)
from tradedesk.logging import get_logger

log = get_logger(__name__)

UNKNOWN_OUTCOME = "outcome unknown; refresh to reconcile"

ERROR_CODES: dict[str, type[ExecutionError]] = {
    "position_not_found": PositionNotFound,
    "not_found": PositionNotFound,
    "already_closed": AlreadyClosed,
}


def execution_error(error: Any) -> ExecutionError:
    """Map a backend ``error`` field onto the execution taxonomy."""
    if isinstance(error, dict):
        code = error.get("code")
        message = str(error.get("message") or code or "request rejected")
    else:
        code = None
        message = str(error)
    exc_type = ERROR_CODES.get(code or "", OrderRejected)
    return exc_type(message, code)


class BackendClient:
    """Async client for the trade and portfolio functions."""

    def __init__(
        self,
        url: str,
        api_key: str | None = None,
        access_token: str | None = None,
        trade_function: str = "execute-trade",
        portfolio_function: str = "portfolio-operations",
        timeout_s: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.url = url.rstrip("/")
        self.api_key = api_key
        self.access_token = access_token
        self.trade_function = trade_function
        self.portfolio_function = portfolio_function
        self.timeout_s = timeout_s
        self._transport = transport
        self._http: httpx.AsyncClient | None = None

    @classmethod
    def from_config(
        cls,
        config: BackendConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "BackendClient":
        return cls(
            config.url,
            api_key=config.api_key,
            access_token=config.access_token,
            trade_function=config.trade_function,
            portfolio_function=config.portfolio_function,
            timeout_s=config.timeout_s,
            transport=transport,
        )

    async def _get_http(self) -> httpx.AsyncClient:
        if self._http is None or self._http.is_closed:
            headers = {}
            if self.api_key:
                headers["apikey"] = self.api_key
            if self.access_token:
                headers["Authorization"] = f"Bearer {self.access_token}"
            self._http = httpx.AsyncClient(
                timeout=self.timeout_s, headers=headers, transport=self._transport,
            )
        return self._http

    async def close(self) -> None:
        if self._http and not self._http.is_closed:
            await self._http.aclose()

    # --- Calls ---

    async def trade(self, action: str, payload: dict[str, Any]) -> Any:
        return await self.invoke(self.trade_function, action, payload)

    async def portfolio(self, action: str, payload: dict[str, Any]) -> Any:
        return await self.invoke(self.portfolio_function, action, payload)

    async def invoke(self, function: str, action: str, payload: dict[str, Any]) -> Any:
        """Run one backend action and return its ``data``.

        Raises the mapped ``ExecutionError`` when the backend reports an
        error, and ``BackendUnavailable`` when no usable answer arrived, in
        which case the mutation may or may not have been applied.
        """
        http = await self._get_http()
        body = {"action": action, **payload}
        try:
            resp = await http.post(f"{self.url}/functions/v1/{function}", json=body)
        except httpx.HTTPError as exc:
            log.warning("backend_transport_error", function=function, action=action, error=repr(exc))
            raise BackendUnavailable(UNKNOWN_OUTCOME, "transport_error") from exc

        if resp.status_code >= 500:
            log.warning("backend_server_error", function=function, action=action, status=resp.status_code)
            raise BackendUnavailable(UNKNOWN_OUTCOME, f"http_{resp.status_code}")

        try:
            envelope = resp.json()
        except ValueError:
            envelope = None

        if not isinstance(envelope, dict):
            if resp.status_code >= 400:
                raise OrderRejected(resp.text[:200] or f"HTTP {resp.status_code}", f"http_{resp.status_code}")
            raise BackendUnavailable(UNKNOWN_OUTCOME, "malformed_response")

        error = envelope.get("error")
        if error:
            raise execution_error(error)
        if resp.status_code >= 400:
            raise OrderRejected(f"HTTP {resp.status_code}", f"http_{resp.status_code}")
        return envelope.get("data")
