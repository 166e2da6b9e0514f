"""Provider registry: decorated adapter classes are auto-registered."""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx

from tradedesk.logging import get_logger

if TYPE_CHECKING:
    from tradedesk.config.schema import MarketDataConfig
    from tradedesk.market.providers.base import QuoteProvider

log = get_logger(__name__)

PROVIDER_REGISTRY: dict[str, type[QuoteProvider]] = {}


def register(cls: type[QuoteProvider]) -> type[QuoteProvider]:
    """Class decorator that adds a provider to the global registry."""
    if not getattr(cls, "name", ""):
        raise ValueError(f"Provider class {cls.__name__} must define a 'name' attribute")
    if cls.name in PROVIDER_REGISTRY:
        raise ValueError(f"Duplicate provider name: {cls.name!r}")
    PROVIDER_REGISTRY[cls.name] = cls
    return cls


def build_providers(
    config: MarketDataConfig,
    transport: httpx.AsyncBaseTransport | None = None,
) -> list[QuoteProvider]:
    """Instantiate enabled providers in configured priority order.

    Unknown names, disabled providers and providers missing a required API
    key are skipped with a warning.
    """
    providers: list[QuoteProvider] = []
    for name in config.providers:
        cls = PROVIDER_REGISTRY.get(name)
        if cls is None:
            log.warning("provider_unknown", provider=name, known=sorted(PROVIDER_REGISTRY))
            continue
        settings = config.settings_for(name)
        if not settings.enabled:
            log.info("provider_disabled", provider=name)
            continue
        if cls.requires_api_key and not settings.api_key:
            log.warning("provider_missing_api_key", provider=name)
            continue
        providers.append(cls(
            base_url=settings.base_url,
            api_key=settings.api_key,
            timeout_s=settings.timeout_s,
            batch_size=settings.batch_size,
            transport=transport,
        ))
    return providers
