"""Configuration system."""

from tradedesk.config.loader import load_config
from tradedesk.config.schema import AppConfig

__all__ = ["AppConfig", "load_config"]
