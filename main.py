"""Entry point for running the speedtest agent."""

from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

from speedtest_agent import bootstrap
from speedtest_agent.config import DEFAULT_CONFIG_PATH
from speedtest_agent.errors import ConfigError, ServerStartError

LOGGER = logging.getLogger("speedtest_agent.main")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Authenticated HTTP speed test agent")
    parser.add_argument("--config", help="Path to JSON config file", default=DEFAULT_CONFIG_PATH)
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    try:
        context = bootstrap(args.config)
    except ConfigError as exc:
        # Logging is not configured yet without a config.
        logging.basicConfig(level=logging.INFO)
        LOGGER.critical("Failed to load config file at %s: %s", args.config, exc)
        return 1
    except OSError as exc:
        logging.basicConfig(level=logging.INFO)
        LOGGER.critical("Failed to set up logging: %s", exc)
        return 1

    try:
        context.serve()
    except ServerStartError as exc:
        LOGGER.critical("Failed to start server: %s", exc)
        return 1
    except KeyboardInterrupt:
        LOGGER.info("Shutting down")
    return 0


if __name__ == "__main__":
    sys.exit(main())
