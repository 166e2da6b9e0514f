"""Quote provider adapters."""

from tradedesk.market.providers.base import QuoteProvider
from tradedesk.market.providers.registry import PROVIDER_REGISTRY, build_providers, register

# Import adapters to trigger @register decorators.
from tradedesk.market.providers.alpha_vantage import AlphaVantageProvider
from tradedesk.market.providers.finnhub import FinnhubProvider
from tradedesk.market.providers.yahoo import YahooFinanceProvider

__all__ = [
    "PROVIDER_REGISTRY",
    "AlphaVantageProvider",
    "FinnhubProvider",
    "QuoteProvider",
    "YahooFinanceProvider",
    "build_providers",
    "register",
]
