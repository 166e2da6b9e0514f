"""Market data models: normalised quotes and ordered price ticks."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict

FALLBACK_SOURCE = "fallback"


class Asset(BaseModel):
    """One quoted instrument, as produced by a single aggregation cycle."""

    model_config = ConfigDict(frozen=True)

    symbol: str
    market_type: str
    price: Decimal
    source: str
    ts: datetime
    name: str | None = None
    change_pct: Decimal | None = None
    volume: Decimal | None = None
    open_price: Decimal | None = None
    high_price: Decimal | None = None
    low_price: Decimal | None = None
    previous_close: Decimal | None = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.market_type, self.symbol)

    @property
    def is_fallback(self) -> bool:
        return self.source == FALLBACK_SOURCE


class PriceTick(BaseModel):
    """A price observation for one symbol.

    ``seq`` must grow monotonically per symbol; consumers drop a tick whose
    seq is not greater than the last one they applied.
    """

    model_config = ConfigDict(frozen=True)

    symbol: str
    price: Decimal
    seq: int
    ts: datetime
    source: str = "live"

    @property
    def is_fallback(self) -> bool:
        return self.source == FALLBACK_SOURCE

    @classmethod
    def from_asset(cls, asset: Asset, seq: int) -> "PriceTick":
        return cls(
            symbol=asset.symbol,
            price=asset.price,
            seq=seq,
            ts=asset.ts,
            source=asset.source,
        )
