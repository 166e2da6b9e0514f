"""One-shot quote fetch: python -m tradedesk.market [--config path] [CATEGORY ...].

Prints one JSON object per asset on stdout; logs go to stderr.
"""

from __future__ import annotations

import argparse
import asyncio
import sys

from tradedesk.config import load_config
from tradedesk.logging import get_logger, setup_logging
from tradedesk.market.aggregator import MarketDataAggregator
from tradedesk.market.providers import build_providers
from tradedesk.market.registry import SymbolRegistry

log = get_logger(__name__)


async def run(config_path: str | None, categories: list[str]) -> int:
    cfg = load_config(config_path)
    setup_logging(level=cfg.logging.level, log_format=cfg.logging.format)

    registry = SymbolRegistry.from_config(cfg)
    aggregator = MarketDataAggregator.from_config(
        registry, build_providers(cfg.market_data), cfg.market_data,
    )
    try:
        assets = await aggregator.fetch_assets(categories or registry.categories)
    finally:
        await aggregator.close()

    for asset in assets:
        sys.stdout.write(asset.model_dump_json() + "\n")
    log.info(
        "quotes_fetched",
        assets=len(assets),
        fallback=sum(1 for a in assets if a.is_fallback),
    )
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Fetch current quotes")
    parser.add_argument("--config", default="config.yaml", help="Path to config file")
    parser.add_argument("categories", nargs="*", help="Market categories (default: all)")
    args = parser.parse_args()
    sys.exit(asyncio.run(run(args.config, args.categories)))


if __name__ == "__main__":
    main()
