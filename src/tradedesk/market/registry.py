"""Symbol registry: market category to ordered symbol list, immutable."""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from types import MappingProxyType
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from tradedesk.config.schema import AppConfig

# Lower-cased alias -> canonical category name.
CATEGORY_ALIASES: dict[str, str] = {
    "stock": "Stock",
    "stocks": "Stock",
    "equity": "Stock",
    "equities": "Stock",
    "crypto": "Crypto",
    "cryptocurrency": "Crypto",
    "forex": "Forex",
    "fx": "Forex",
    "index": "Index",
    "indices": "Index",
    "commodity": "Commodities",
    "commodities": "Commodities",
}


class SymbolRegistry:
    """Read-only mapping of market category -> symbols.

    Built once at startup and handed to whatever needs it; there is no
    module-level instance.
    """

    def __init__(self, mapping: Mapping[str, Sequence[str]]) -> None:
        self._mapping: Mapping[str, tuple[str, ...]] = MappingProxyType({
            category: tuple(dict.fromkeys(symbols))
            for category, symbols in mapping.items()
        })
        self._by_lower = {category.lower(): category for category in self._mapping}

    @classmethod
    def from_config(cls, config: "AppConfig") -> "SymbolRegistry":
        return cls(config.markets)

    @property
    def categories(self) -> tuple[str, ...]:
        return tuple(self._mapping)

    def resolve_category(self, category: str) -> str:
        """Return the canonical name for *category*, or *category* unchanged."""
        if category in self._mapping:
            return category
        lowered = category.lower()
        if lowered in self._by_lower:
            return self._by_lower[lowered]
        alias = CATEGORY_ALIASES.get(lowered)
        if alias is not None and alias in self._mapping:
            return alias
        return category

    def get_symbols_for_market_type(
        self,
        categories: Iterable[str],
    ) -> dict[str, tuple[str, ...]]:
        """Sub-mapping for the requested categories.

        Unknown categories map to an empty tuple. Keys are canonical names,
        in request order, without duplicates.
        """
        result: dict[str, tuple[str, ...]] = {}
        for category in categories:
            name = self.resolve_category(category)
            if name not in result:
                result[name] = self._mapping.get(name, ())
        return result

    def get_all_market_symbols(self) -> tuple[str, ...]:
        """Every symbol across all categories, de-duplicated, in registry order."""
        seen: dict[str, None] = {}
        for symbols in self._mapping.values():
            for symbol in symbols:
                seen.setdefault(symbol, None)
        return tuple(seen)

    def category_of(self, symbol: str) -> str | None:
        """First category listing *symbol*, or None."""
        for category, symbols in self._mapping.items():
            if symbol in symbols:
                return category
        return None

    def __contains__(self, category: object) -> bool:
        return isinstance(category, str) and self.resolve_category(category) in self._mapping

    def __repr__(self) -> str:
        sizes = ", ".join(f"{c}={len(s)}" for c, s in self._mapping.items())
        return f"SymbolRegistry({sizes})"
