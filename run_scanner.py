#!/usr/bin/env python3
"""
Pool arbitrage scanner CLI.

Seeds the pool registry from factory contracts, then follows Swap events
and logs direct and triangular opportunities as they appear.

Usage:
    python3 run_scanner.py
    python3 run_scanner.py --config configs/polygon.yaml
    python3 run_scanner.py --config configs/polygon.yaml --once
"""

import argparse
import asyncio
import logging
import sys

from dotenv import load_dotenv

import logging_config
from dex_scanner.config import load_config
from dex_scanner.runner import ArbitrageRunner
from pool_arbitrage.exceptions import ConfigError, NetworkError


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="DEX pool arbitrage scanner",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run with default config
  python3 run_scanner.py

  # Single bootstrap pass (for testing/CI)
  python3 run_scanner.py --config configs/polygon.yaml --once
        """,
    )

    parser.add_argument(
        "--config",
        default="configs/polygon.yaml",
        help="Path to config YAML file (default: configs/polygon.yaml)",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run the bootstrap scan and exit",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: INFO)",
    )
    parser.add_argument(
        "--metrics-port",
        type=int,
        help="Serve Prometheus metrics on this port (overrides config)",
    )

    return parser.parse_args(argv)


def main(argv=None) -> int:
    """
    Main entry point.

    Returns:
        Exit code (0 for success, 1 for error)
    """
    args = parse_args(argv)
    load_dotenv()
    if args.log_level == "DEBUG":
        logging_config.setup_debug()
    elif args.log_level == "WARNING":
        logging_config.setup_minimal()
    else:
        logging_config.setup(getattr(logging, args.log_level))

    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"❌ Config error: {e}", file=sys.stderr)
        return 1

    if args.metrics_port is not None:
        config.metrics_enabled = True
        config.metrics_port = args.metrics_port

    try:
        runner = ArbitrageRunner(config)
    except ConfigError as e:
        print(f"❌ Initialization failed: {e}", file=sys.stderr)
        return 1

    try:
        asyncio.run(runner.run(once=args.once))
    except KeyboardInterrupt:
        print("\n\n⏸ Stopped by user")
        return 0
    except ConfigError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 1
    except NetworkError as e:
        print(f"❌ RPC unavailable: {e}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
