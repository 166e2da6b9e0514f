"""Config loader: reads YAML, applies TRADEDESK_* env var overrides."""

from __future__ import annotations

import os
from pathlib import Path

import yaml

from tradedesk.config.schema import AppConfig

# env var -> (section, key)
_ENV_OVERRIDES: dict[str, tuple[str, ...]] = {
    "TRADEDESK_BACKEND_URL": ("backend", "url"),
    "TRADEDESK_BACKEND_TOKEN": ("backend", "access_token"),
    "TRADEDESK_BACKEND_API_KEY": ("backend", "api_key"),
    "TRADEDESK_LOG_LEVEL": ("logging", "level"),
    "TRADEDESK_LOG_FORMAT": ("logging", "format"),
    "TRADEDESK_FINNHUB_API_KEY": ("market_data", "provider_settings", "finnhub", "api_key"),
    "TRADEDESK_ALPHA_VANTAGE_API_KEY": ("market_data", "provider_settings", "alpha_vantage", "api_key"),
}


def load_config(path: str | Path | None = None) -> AppConfig:
    """Load config from a YAML file, then apply env var overrides.

    If *path* is None or the file doesn't exist, returns defaults.

    Environment variable overrides:
        TRADEDESK_BACKEND_URL            -> backend.url
        TRADEDESK_BACKEND_TOKEN          -> backend.access_token
        TRADEDESK_BACKEND_API_KEY        -> backend.api_key
        TRADEDESK_LOG_LEVEL              -> logging.level
        TRADEDESK_LOG_FORMAT             -> logging.format
        TRADEDESK_FINNHUB_API_KEY        -> market_data.provider_settings.finnhub.api_key
        TRADEDESK_ALPHA_VANTAGE_API_KEY  -> market_data.provider_settings.alpha_vantage.api_key
    """
    data: dict = {}
    if path is not None:
        p = Path(path)
        if p.exists():
            with open(p) as f:
                data = yaml.safe_load(f) or {}

    for env_name, keys in _ENV_OVERRIDES.items():
        value = os.environ.get(env_name)
        if not value:
            continue
        node = data
        for key in keys[:-1]:
            node = node.setdefault(key, {})
        node[keys[-1]] = value

    return AppConfig.model_validate(data)
