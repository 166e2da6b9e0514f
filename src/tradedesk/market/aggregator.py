"""MarketDataAggregator: ordered provider fallback, merge, static fallback.

For a set of market categories the aggregator asks each provider, in
priority order, only for the (category, symbol) keys still missing. The first
live value for a key is kept. Keys no provider could price are always
filled from ``FallbackBook`` and tagged ``source="fallback"``. Provider errors
and timeouts are logged and absorbed; ``fetch_assets`` does not raise them.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Mapping, Sequence
from datetime import datetime, timezone
from typing import Literal

from tradedesk.config.schema import MarketDataConfig
from tradedesk.errors import ProviderError
from tradedesk.logging import get_logger
from tradedesk.market.cache import QuoteCache
from tradedesk.market.fallback import FallbackBook
from tradedesk.market.providers.base import QuoteProvider
from tradedesk.market.registry import SymbolRegistry
from tradedesk.models.market import Asset

log = get_logger(__name__)

Key = tuple[str, str]
Pending = dict[str, list[str]]


class MarketDataAggregator:
    """Best-effort, de-duplicated quotes for a set of market categories."""

    def __init__(
        self,
        registry: SymbolRegistry,
        providers: Sequence[QuoteProvider],
        call_timeout_s: float = 8.0,
        fanout: Literal["sequential", "race"] = "sequential",
        cache_ttl_s: float = 0.0,
        fallback_prices: Mapping[str, Mapping[str, float]] | None = None,
    ) -> None:
        self.registry = registry
        self.providers = list(providers)
        self.call_timeout_s = call_timeout_s
        self.fanout = fanout
        self._cache = QuoteCache(ttl_seconds=cache_ttl_s)
        self._fallback = FallbackBook(fallback_prices)

    @classmethod
    def from_config(
        cls,
        registry: SymbolRegistry,
        providers: Sequence[QuoteProvider],
        config: MarketDataConfig,
    ) -> "MarketDataAggregator":
        return cls(
            registry,
            providers,
            call_timeout_s=config.call_timeout_s,
            fanout=config.fanout,
            cache_ttl_s=config.cache_ttl_s,
            fallback_prices=config.fallback_prices,
        )

    async def close(self) -> None:
        for provider in self.providers:
            await provider.close()

    # ── Public API ────────────────────────────────────────────

    async def fetch_assets(self, categories: Iterable[str]) -> list[Asset]:
        """Current assets for *categories*, ordered by category then symbol."""
        requested = self.registry.get_symbols_for_market_type(categories)
        if not self._cache.enabled:
            return await self._collect(requested)
        key = tuple(requested)
        return await self._cache.get_or_fetch(key, lambda: self._collect(requested))

    async def fetch_all(self) -> list[Asset]:
        return await self.fetch_assets(self.registry.categories)

    # ── Collection ────────────────────────────────────────────

    async def _collect(self, requested: dict[str, tuple[str, ...]]) -> list[Asset]:
        pending: Pending = {c: list(s) for c, s in requested.items() if s}
        merged: dict[Key, Asset] = {}

        if self.fanout == "race":
            await self._race(pending, merged)
        else:
            await self._sequential(pending, merged)

        self._fallback.remember(list(merged.values()))
        missing = _missing(pending, merged)
        now = datetime.now(timezone.utc)
        for category, symbols in missing.items():
            for asset in self._fallback.assets(category, symbols, ts=now):
                merged[asset.key] = asset
            log.warning(
                "market_data_fallback",
                category=category,
                symbols=symbols,
                stale=[s for s in symbols if self._fallback.last_live(category, s) is not None],
                full_category=len(symbols) == len(pending[category]),
            )

        ordered = [
            merged[(category, symbol)]
            for category, symbols in requested.items()
            for symbol in symbols
            if (category, symbol) in merged
        ]
        log.debug(
            "market_data_collected",
            categories=list(requested),
            assets=len(ordered),
            fallback=sum(1 for a in ordered if a.is_fallback),
        )
        return ordered

    async def _sequential(self, pending: Pending, merged: dict[Key, Asset]) -> None:
        for provider in self.providers:
            missing = _missing(pending, merged)
            ask = {c: s for c, s in missing.items() if provider.supports(c)}
            if not ask:
                if not missing:
                    return
                continue
            assets = await self._call(provider, ask)
            if assets is not None:
                _merge(assets, ask, merged)

    async def _race(self, pending: Pending, merged: dict[Key, Asset]) -> None:
        tasks: dict[asyncio.Task, QuoteProvider] = {}
        asks: dict[QuoteProvider, Pending] = {}
        for provider in self.providers:
            ask = {c: s for c, s in pending.items() if provider.supports(c)}
            if ask:
                asks[provider] = ask
                tasks[asyncio.create_task(self._call(provider, ask))] = provider

        try:
            remaining = set(tasks)
            while remaining and _missing(pending, merged):
                done, remaining = await asyncio.wait(
                    remaining, return_when=asyncio.FIRST_COMPLETED,
                )
                # Completion order decides who wins a key; break ties by priority.
                for task in sorted(done, key=lambda t: self.providers.index(tasks[t])):
                    assets = task.result()
                    if assets is not None:
                        _merge(assets, asks[tasks[task]], merged)
        finally:
            losers = [t for t in tasks if not t.done()]
            for task in losers:
                task.cancel()
            if losers:
                await asyncio.gather(*losers, return_exceptions=True)
                log.debug("market_data_race_cancelled", providers=[tasks[t].name for t in losers])

    async def _call(self, provider: QuoteProvider, ask: Pending) -> list[Asset] | None:
        """One bounded provider call; returns None on any data-layer failure."""
        try:
            return await asyncio.wait_for(
                provider.fetch(set(ask), ask), timeout=self.call_timeout_s,
            )
        except asyncio.TimeoutError:
            log.warning(
                "provider_timeout",
                provider=provider.name,
                timeout_s=self.call_timeout_s,
                categories=list(ask),
            )
        except ProviderError as exc:
            log.warning(
                "provider_failed",
                provider=provider.name,
                error_type=type(exc).__name__,
                error=str(exc),
                categories=list(ask),
            )
        except Exception:
            log.exception("provider_unexpected_error", provider=provider.name, categories=list(ask))
        return None


def _missing(pending: Pending, merged: dict[Key, Asset]) -> Pending:
    result: Pending = {}
    for category, symbols in pending.items():
        absent = [s for s in symbols if (category, s) not in merged]
        if absent:
            result[category] = absent
    return result


def _merge(assets: Iterable[Asset], ask: Pending, merged: dict[Key, Asset]) -> None:
    """Keep the first value per key; drop anything that was not asked for."""
    for asset in assets:
        if asset.symbol not in ask.get(asset.market_type, ()):
            continue
        merged.setdefault(asset.key, asset)
