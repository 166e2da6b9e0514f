"""Trading session runner: async loop that feeds quotes to the book and acts on triggers."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Iterable
from decimal import Decimal

from tradedesk.config.loader import load_config
from tradedesk.config.schema import AppConfig
from tradedesk.errors import BackendUnavailable, ProviderError
from tradedesk.logging import bind_session, get_logger, setup_logging
from tradedesk.market.aggregator import MarketDataAggregator
from tradedesk.market.providers import build_providers
from tradedesk.market.providers.finnhub import FinnhubProvider
from tradedesk.market.registry import SymbolRegistry
from tradedesk.models.market import Asset, PriceTick
from tradedesk.models.position import AccountSnapshot
from tradedesk.models.trade import TradeResult
from tradedesk.trading.backend import BackendClient
from tradedesk.trading.book import PositionBook, TickOutcome
from tradedesk.trading.service import TradeExecutionService

log = get_logger("trading_runner")


def tick_seq(asset: Asset) -> int:
    """Sequence number for a polled quote: its timestamp in milliseconds.

    Streamed trades use the same clock, so a poll that returns an older
    quote than a trade already applied is dropped by the book.
    """
    return int(asset.ts.timestamp() * 1000)


class TradingSession:
    """One user's book, fed by the aggregator and settled through the service."""

    def __init__(
        self,
        user_id: str,
        aggregator: MarketDataAggregator,
        service: TradeExecutionService,
        balance: Decimal = Decimal("10000"),
    ):
        if service.book is None:
            service.book = PositionBook(user_id)
        self.user_id = user_id
        self.aggregator = aggregator
        self.service = service
        self.book: PositionBook = service.book
        self.balance = Decimal(str(balance))
        self._needs_refresh = True

    async def poll_once(self) -> int:
        """Fetch every configured category and apply the quotes; returns ticks applied."""
        if self._needs_refresh:
            await self.refresh()
        assets = await self.aggregator.fetch_all()
        return await self.apply_ticks(
            PriceTick.from_asset(asset, tick_seq(asset)) for asset in assets
        )

    async def apply_ticks(self, ticks: Iterable[PriceTick]) -> int:
        applied = 0
        for tick in ticks:
            outcome = self.book.apply_tick(tick)
            if outcome is None:
                continue
            applied += 1
            if not outcome.empty:
                await self.settle(outcome)
        return applied

    async def settle(self, outcome: TickOutcome) -> list[TradeResult]:
        """Submit every intent in *outcome*, one backend call each."""
        results: list[TradeResult] = []
        for order in outcome.expiries:
            results.append(await self.service.cancel_order(order.id))
        for order, price in outcome.fills:
            results.append(await self.service.fill_entry_order(order, price))
        for position, reason, price in outcome.exits:
            results.append(await self.service.close_position(position.id, price, reason))

        if any(isinstance(r.error, BackendUnavailable) for r in results):
            self._needs_refresh = True
        return results

    async def refresh(self) -> None:
        result = await self.service.refresh(self.user_id)
        self._needs_refresh = not result.success

    def log_snapshot(self) -> AccountSnapshot:
        """Log balances; a margin level past the warning threshold logs at warning."""
        snap = self.book.snapshot(self.balance)
        log.info(
            "account_snapshot",
            equity=str(snap.equity),
            unrealized_pnl=str(snap.unrealized_pnl),
            used_margin=str(snap.used_margin),
            free_margin=str(snap.free_margin),
            margin_level=str(snap.margin_level) if snap.margin_level is not None else None,
            margin_status=snap.margin_status,
            open_positions=snap.open_positions,
        )
        if snap.margin_status != "safe":
            log.warning(
                "margin_alert",
                status=snap.margin_status,
                margin_level=str(snap.margin_level),
                margin_call_level=self.book.margin_call_level,
                stop_out_level=self.book.stop_out_level,
                at_risk=[
                    m.position.id for m in self.book.marked_positions()
                    if m.unrealized_pnl is not None and m.unrealized_pnl < 0
                ],
            )
        return snap

    async def stream(self, provider: FinnhubProvider, reconnect_delay_s: float = 5.0) -> None:
        """Apply streamed trades as they arrive; reconnects until cancelled."""
        symbols = self.aggregator.registry.get_symbols_for_market_type(
            self.aggregator.registry.categories,
        )
        while True:
            try:
                async for tick in provider.stream_ticks(symbols):
                    await self.apply_ticks([tick])
                log.warning("stream_disconnected", provider=provider.name)
            except asyncio.CancelledError:
                raise
            except ProviderError as exc:
                log.error("stream_unavailable", provider=provider.name, error=str(exc))
                return
            except Exception:
                log.exception("stream_error", provider=provider.name)
            await asyncio.sleep(reconnect_delay_s)


async def run_loop(config: AppConfig) -> None:
    """Main loop: poll quotes, apply ticks, settle triggers, snapshot the account."""
    bind_session(config.trading.user_id)
    registry = SymbolRegistry.from_config(config)
    providers = build_providers(config.market_data)
    aggregator = MarketDataAggregator.from_config(registry, providers, config.market_data)
    backend = BackendClient.from_config(config.backend)
    service = TradeExecutionService(
        backend,
        PositionBook(
            config.trading.user_id,
            margin_call_level=config.trading.margin_call_level,
            stop_out_level=config.trading.stop_out_level,
        ),
        leverage_map=config.trading.leverage,
        default_leverage=config.trading.default_leverage,
    )
    session = TradingSession(
        config.trading.user_id, aggregator, service, balance=config.trading.balance,
    )

    stream_task: asyncio.Task | None = None
    if config.market_data.streaming:
        finnhub = next((p for p in providers if isinstance(p, FinnhubProvider)), None)
        if finnhub is not None:
            stream_task = asyncio.create_task(session.stream(finnhub))
        else:
            log.warning("streaming_unavailable", reason="finnhub provider not enabled")

    log.info(
        "trading_session_started",
        providers=[p.name for p in providers],
        categories=list(registry.categories),
        streaming=stream_task is not None,
    )

    last_snapshot = time.monotonic()
    try:
        while True:
            try:
                applied = await session.poll_once()
                log.debug("poll_complete", ticks=applied)
                if time.monotonic() - last_snapshot >= config.trading.snapshot_interval_s:
                    session.log_snapshot()
                    last_snapshot = time.monotonic()
            except Exception:
                log.exception("tick_error")
            await asyncio.sleep(config.market_data.poll_interval_s)
    finally:
        if stream_task is not None:
            stream_task.cancel()
            await asyncio.gather(stream_task, return_exceptions=True)
        await aggregator.close()
        await backend.close()


def main(config_path: str | None = None) -> None:
    """Entry point: load config, set up logging, run the async loop."""
    config = load_config(config_path)
    setup_logging(level=config.logging.level, log_format=config.logging.format)
    asyncio.run(run_loop(config))
