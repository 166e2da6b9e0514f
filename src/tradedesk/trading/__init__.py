"""Trading domain: pure calculations, state transitions, the position book and execution."""

from tradedesk.trading.backend import BackendClient
from tradedesk.trading.book import MarkedPosition, PositionBook, TickOutcome
from tradedesk.trading.service import TradeExecutionService

__all__ = [
    "BackendClient",
    "MarkedPosition",
    "PositionBook",
    "TickOutcome",
    "TradeExecutionService",
]
