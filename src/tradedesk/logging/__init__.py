"""Structured logging."""

from tradedesk.logging.setup import bind_session, get_logger, setup_logging

__all__ = ["bind_session", "get_logger", "setup_logging"]
