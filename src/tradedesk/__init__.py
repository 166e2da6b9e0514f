"""Trading front-end core: position/order model and multi-provider market data."""

__version__ = "0.1.0"
