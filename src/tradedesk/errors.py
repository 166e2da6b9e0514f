"""Error taxonomy for the data, domain and execution layers.

Data-layer errors (``ProviderError`` and subclasses) are raised by quote
adapters and absorbed by the aggregator. Domain validation errors are raised
synchronously before any network call. Execution errors carry the backend's
human-readable reason and are returned to the caller inside a ``TradeResult``.
"""

from __future__ import annotations


class TradeDeskError(Exception):
    """Base exception for this package."""


# ---------------------------------------------------------------------------
# Data layer
# ---------------------------------------------------------------------------


class ProviderError(TradeDeskError):
    """A quote provider could not produce a usable response."""

    def __init__(self, provider: str, message: str, status_code: int | None = None):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.status_code = status_code


class ProviderUnavailable(ProviderError):
    """Network failure, auth failure, server error or timeout."""


class RateLimited(ProviderError):
    """The provider is throttling us."""

    def __init__(
        self,
        provider: str,
        message: str,
        status_code: int | None = None,
        retry_after_s: float | None = None,
    ):
        super().__init__(provider, message, status_code)
        self.retry_after_s = retry_after_s


class MalformedResponse(ProviderError):
    """The payload did not have the expected shape."""


def classify_http_error(status_code: int, provider: str, message: str) -> ProviderError:
    """Map an HTTP error status onto the data-layer taxonomy."""
    if status_code == 429:
        return RateLimited(provider, message, status_code)
    if status_code in {401, 403}:
        return ProviderUnavailable(provider, f"auth failed: {message}", status_code)
    if 500 <= status_code < 600:
        return ProviderUnavailable(provider, message, status_code)
    # Other 4xx: the request we built is not one the provider understands.
    return MalformedResponse(provider, message, status_code)


# ---------------------------------------------------------------------------
# Domain validation
# ---------------------------------------------------------------------------


class DomainValidationError(TradeDeskError, ValueError):
    """Invalid input to a domain computation or transition."""


class InvalidLeverage(DomainValidationError):
    pass


class InvalidQuantity(DomainValidationError):
    pass


class InvalidPrice(DomainValidationError):
    pass


class InvalidDirection(DomainValidationError):
    pass


class InvalidOrderType(DomainValidationError):
    pass


class InvalidTransition(DomainValidationError):
    """Attempted to move an order or position out of a terminal state."""


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


class ExecutionError(TradeDeskError):
    """The backend did not apply a mutation."""

    def __init__(self, reason: str, code: str | None = None):
        super().__init__(reason)
        self.reason = reason
        self.code = code


class OrderRejected(ExecutionError):
    pass


class PositionNotFound(ExecutionError):
    pass


class AlreadyClosed(ExecutionError):
    pass


class BackendUnavailable(ExecutionError):
    """The backend could not be reached; whether the mutation applied is unknown."""
