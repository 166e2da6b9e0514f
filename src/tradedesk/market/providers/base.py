"""Quote provider interface, HTTP plumbing and payload validation helpers."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Iterator, Mapping, Sequence
from decimal import Decimal, InvalidOperation
from typing import Any

import httpx

from tradedesk.errors import (
    MalformedResponse,
    ProviderError,
    ProviderUnavailable,
    RateLimited,
    classify_http_error,
)
from tradedesk.logging import get_logger
from tradedesk.models.market import Asset

log = get_logger(__name__)


def batched(items: Sequence[str], size: int) -> Iterator[list[str]]:
    for start in range(0, len(items), size):
        yield list(items[start:start + size])


def split_pair(symbol: str) -> tuple[str, str]:
    """Split "EURUSD", "EUR/USD" or "BTCUSD" into (base, quote)."""
    if "/" in symbol:
        base, quote = symbol.split("/", 1)
        return base, quote
    for quote in ("USDT", "USD"):
        if symbol.endswith(quote) and len(symbol) > len(quote):
            return symbol[: -len(quote)], quote
    if len(symbol) == 6:
        return symbol[:3], symbol[3:]
    raise ValueError(f"not a currency pair: {symbol!r}")


class QuoteProvider(ABC):
    """One external quote source.

    Subclasses set ``name``, ``categories`` and ``default_base_url`` and
    implement ``_fetch_batch``. Instances hold only a lazily created
    ``httpx.AsyncClient``, which is safe to share between concurrent calls
    on one event loop.
    """

    name: str = ""
    categories: frozenset[str] = frozenset()
    default_base_url: str = ""
    requires_api_key: bool = False

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout_s: float = 10.0,
        batch_size: int = 10,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = (base_url or self.default_base_url).rstrip("/")
        self.api_key = api_key
        self.timeout_s = timeout_s
        self.batch_size = batch_size
        self._transport = transport
        self._http: httpx.AsyncClient | None = None

    def supports(self, category: str) -> bool:
        return category in self.categories

    async def _get_http(self) -> httpx.AsyncClient:
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(timeout=self.timeout_s, transport=self._transport)
        return self._http

    async def close(self) -> None:
        if self._http and not self._http.is_closed:
            await self._http.aclose()

    # --- Fetching ---

    async def fetch(
        self,
        market_types: set[str] | frozenset[str],
        symbols: Mapping[str, Sequence[str]],
    ) -> list[Asset]:
        """Fetch quotes for the requested categories.

        Categories that are empty or unsupported are skipped. Symbols the
        provider cannot resolve are simply absent from the result. A failed
        batch does not discard batches already fetched; the error is raised
        only when nothing at all could be fetched.
        """
        if self.requires_api_key and not self.api_key:
            raise ProviderUnavailable(self.name, "API key not configured")

        assets: list[Asset] = []
        error: ProviderError | None = None
        for category, category_symbols in symbols.items():
            if category not in market_types or not category_symbols:
                continue
            if not self.supports(category):
                continue
            for batch in batched(category_symbols, self.batch_size):
                try:
                    assets.extend(await self._fetch_batch(category, batch))
                except ProviderError as exc:
                    error = exc
                    if _ends_call(exc):
                        return self._partial(assets, error)
                    log.warning(
                        "provider_batch_failed",
                        provider=self.name,
                        category=category,
                        symbols=batch,
                        error=str(exc),
                    )
        return self._partial(assets, error)

    async def _fetch_each(
        self,
        category: str,
        symbols: list[str],
        fetch_one: Callable[[str, str], Awaitable[Asset | None]],
    ) -> list[Asset]:
        """Per-symbol fetch loop for providers without a batch endpoint.

        A symbol that fails is skipped and logged; quotes already fetched are
        kept. Rate limiting and transport failures end the loop early.
        """
        assets: list[Asset] = []
        error: ProviderError | None = None
        for symbol in symbols:
            try:
                asset = await fetch_one(category, symbol)
            except ProviderError as exc:
                error = exc
                if _ends_call(exc):
                    break
                log.warning("provider_symbol_failed", provider=self.name, symbol=symbol, error=str(exc))
                continue
            if asset is None:
                log.debug("provider_symbol_unresolved", provider=self.name, symbol=symbol, category=category)
                continue
            assets.append(asset)
        return self._partial(assets, error)

    def _partial(self, assets: list[Asset], error: ProviderError | None) -> list[Asset]:
        if error is not None and not assets:
            raise error
        if error is not None:
            log.info("provider_partial_result", provider=self.name, assets=len(assets), error=str(error))
        return assets

    def _resolve(self, category: str, symbol: str) -> str | None:
        """Provider ticker for *symbol*, or None when it cannot be mapped."""
        try:
            return self.provider_symbol(category, symbol)
        except ValueError:
            log.debug("provider_symbol_unmappable", provider=self.name, symbol=symbol, category=category)
            return None

    @staticmethod
    def provider_symbol(category: str, symbol: str) -> str:
        return symbol

    @abstractmethod
    async def _fetch_batch(self, category: str, symbols: list[str]) -> list[Asset]:
        """Fetch and normalise one batch of symbols from a single category."""

    # --- HTTP ---

    async def _get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        http = await self._get_http()
        try:
            resp = await http.get(f"{self.base_url}{path}", params=params)
        except httpx.TimeoutException as exc:
            raise ProviderUnavailable(self.name, f"timeout: {exc!r}") from exc
        except httpx.HTTPError as exc:
            raise ProviderUnavailable(self.name, f"transport error: {exc!r}") from exc

        if resp.status_code >= 400:
            error = classify_http_error(resp.status_code, self.name, resp.text[:200])
            if isinstance(error, RateLimited):
                error.retry_after_s = _retry_after(resp)
            raise error

        try:
            return resp.json()
        except ValueError as exc:
            raise MalformedResponse(self.name, "response body is not JSON") from exc

    # --- Payload validation ---

    def _require_dict(self, value: Any, what: str) -> dict:
        if not isinstance(value, dict):
            raise MalformedResponse(self.name, f"{what}: expected object, got {type(value).__name__}")
        return value

    def _require_list(self, value: Any, what: str) -> list:
        if not isinstance(value, list):
            raise MalformedResponse(self.name, f"{what}: expected list, got {type(value).__name__}")
        return value

    def _decimal(self, value: Any, field: str) -> Decimal:
        """Parse a numeric field; booleans and non-numeric strings fail closed."""
        if isinstance(value, bool) or value is None:
            raise MalformedResponse(self.name, f"{field}: expected number, got {value!r}")
        if isinstance(value, str):
            value = value.strip().rstrip("%")
        try:
            result = Decimal(str(value))
        except (InvalidOperation, ValueError) as exc:
            raise MalformedResponse(self.name, f"{field}: expected number, got {value!r}") from exc
        if not result.is_finite():
            raise MalformedResponse(self.name, f"{field}: expected finite number, got {value!r}")
        return result

    def _optional_decimal(self, value: Any, field: str) -> Decimal | None:
        if value is None or value == "":
            return None
        return self._decimal(value, field)


def _retry_after(resp: httpx.Response) -> float | None:
    raw = resp.headers.get("Retry-After")
    if raw is None:
        return None
    try:
        return float(raw)
    except ValueError:
        return None


def _ends_call(exc: ProviderError) -> bool:
    """Throttling or a dead connection: further requests in this call would fail too."""
    return isinstance(exc, RateLimited) or (
        isinstance(exc, ProviderUnavailable) and exc.status_code is None
    )
