"""
TG -> WA Bridge - Entry Point
"""

import asyncio
import argparse
import logging

from .config import load_config
from .logging_setup import configure_logging
from .server import run_bridge

logger = logging.getLogger(__name__)


async def main():
    parser = argparse.ArgumentParser(
        description="Telegram to WhatsApp relay",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Configure from environment variables (or ./bridge.yaml if present)
  python -m tgwa_bridge

  # Explicit configuration file
  python -m tgwa_bridge --config /etc/tgwa/bridge.yaml

  # Enable debug logging
  python -m tgwa_bridge --debug
"""
    )

    parser.add_argument(
        '--config', '-c',
        help='Path to bridge.yaml (default: ./bridge.yaml, then environment)'
    )

    parser.add_argument(
        '--port', '-p',
        type=int,
        help='Override the control server port'
    )

    parser.add_argument(
        '--debug',
        action='store_true',
        help='Enable debug logging'
    )

    args = parser.parse_args()

    config = load_config(args.config)
    if args.port:
        config.web.port = args.port

    configure_logging(
        level="DEBUG" if args.debug else config.logging.level,
        log_file=config.logging.file,
    )

    await run_bridge(config, debug=args.debug)


def run():
    """Entry point for console script"""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\n  Bridge stopped")


if __name__ == '__main__':
    run()
