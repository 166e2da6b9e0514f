"""Allow running a trading session as: python -m tradedesk.trading [--config path]."""

import argparse

from tradedesk.trading.runner import main

parser = argparse.ArgumentParser(description="Trading session runner")
parser.add_argument("--config", default=None, help="Path to config.yaml")
args = parser.parse_args()
main(config_path=args.config)
