"""Configuration schema: Pydantic models for config.yaml."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


def _default_markets() -> dict[str, list[str]]:
    return {
        "Crypto": ["BTCUSD", "ETHUSD", "SOLUSD", "ADAUSD", "DOTUSD"],
        "Stock": ["AAPL", "MSFT", "TSLA", "AMZN", "GOOGL"],
        "Forex": ["EURUSD", "GBPUSD", "USDJPY", "AUDUSD", "USDCAD"],
        "Index": ["SPX500", "NASDAQ", "DJI", "UK100", "JP225"],
        "Commodities": ["XAUUSD", "XAGUSD", "USOIL", "NATGAS", "COPPER"],
    }


def _default_leverage() -> dict[str, float]:
    return {
        "Stock": 20,
        "Index": 50,
        "Commodities": 50,
        "Forex": 100,
        "Crypto": 50,
    }


class ProviderConfig(BaseModel):
    enabled: bool = True
    base_url: str | None = None
    api_key: str | None = None
    timeout_s: float = 10.0
    batch_size: int = Field(default=10, ge=1)


class MarketDataConfig(BaseModel):
    # Priority order: first entry is the primary provider.
    providers: list[str] = Field(
        default_factory=lambda: ["finnhub", "yahoo", "alpha_vantage"],
    )
    provider_settings: dict[str, ProviderConfig] = Field(default_factory=dict)
    fanout: Literal["sequential", "race"] = "sequential"
    call_timeout_s: float = 8.0
    cache_ttl_s: float = 0.0
    poll_interval_s: int = 5
    streaming: bool = False
    # category -> symbol -> price, used when every provider fails.
    fallback_prices: dict[str, dict[str, float]] = Field(default_factory=dict)

    def settings_for(self, provider: str) -> ProviderConfig:
        return self.provider_settings.get(provider) or ProviderConfig()


class BackendConfig(BaseModel):
    url: str = "http://localhost:54321"
    api_key: str | None = None
    access_token: str | None = None
    trade_function: str = "execute-trade"
    portfolio_function: str = "portfolio-operations"
    timeout_s: float = 15.0


class TradingConfig(BaseModel):
    user_id: str = "demo-user"
    balance: float = 10000
    leverage: dict[str, float] = Field(default_factory=_default_leverage)
    default_leverage: float = 1.0
    # Margin level percent at or below which the account is in margin call.
    margin_call_level: float = 100
    # Margin level, as a fraction, at which positions are stopped out.
    stop_out_level: float = 0.5
    snapshot_interval_s: int = 60


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "json"


class AppConfig(BaseModel):
    markets: dict[str, list[str]] = Field(default_factory=_default_markets)
    market_data: MarketDataConfig = Field(default_factory=MarketDataConfig)
    backend: BackendConfig = Field(default_factory=BackendConfig)
    trading: TradingConfig = Field(default_factory=TradingConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
