#!/usr/bin/env python3
"""
V2/V3 arbitrage sizer CLI.

Finds the trade size that maximizes the theoretical profit of an arbitrage
between a constant-product pair and a concentrated-liquidity pool, and
prints the best size and its profit.

Usage:
    python3 run_search.py
    python3 run_search.py --config configs/arbitrage.example.yaml
    python3 run_search.py --config configs/arbitrage.example.yaml --strategy bisection
    python3 run_search.py --both --best-effort
"""

import argparse
import sys

from dotenv import load_dotenv

import logging_config
from arb_sizer.exceptions import ArbSizerError, InvalidConfiguration
from arb_sizer.search import STRATEGIES
from arb_sizer.utils import get_logger
from arb_sizer.version import get_version
from dex.config import load_config
from dex.runner import SizerRunner


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="V2/V3 arbitrage trade size search",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run with default config
  python3 run_search.py

  # Use the bisection strategy
  python3 run_search.py --strategy bisection

  # Search both directions, keep best known values if the quoter fails
  python3 run_search.py --both --best-effort
        """,
    )

    parser.add_argument(
        "--config",
        default="configs/arbitrage.example.yaml",
        help="Path to config YAML file (default: configs/arbitrage.example.yaml)",
    )
    parser.add_argument(
        "--strategy",
        choices=sorted(STRATEGIES),
        help="Search strategy (overrides config setting)",
    )
    parser.add_argument(
        "--both",
        action="store_true",
        help="Search both directions instead of picking one from spot prices",
    )
    parser.add_argument(
        "--best-effort",
        action="store_true",
        help="On quoter failure, report best known values labelled as incomplete",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {get_version()}"
    )
    parser.add_argument("--debug", action="store_true", help="Verbose logging")
    parser.add_argument(
        "--quiet", action="store_true", help="Only warnings, errors and the result"
    )

    return parser.parse_args(argv)


def main(argv=None) -> int:
    """
    Main entry point.

    Returns:
        Exit code (0 for a finished search, 1 for error)
    """
    args = parse_args(argv)
    load_dotenv()

    if args.debug:
        logging_config.setup_debug()
    elif args.quiet:
        logging_config.setup_minimal()
    else:
        logging_config.setup()
    logger = get_logger("run_search")

    # Load config
    try:
        config = load_config(args.config)
    except InvalidConfiguration as e:
        print(f"❌ Config error: {e}", file=sys.stderr)
        return 1

    if args.strategy:
        config.strategy = args.strategy

    # Initialize runner
    runner = SizerRunner(config, quiet=args.quiet)
    try:
        runner.connect()
        runner.fetch_pool_state()
    except (ArbSizerError, ConnectionError, ValueError) as e:
        print(f"❌ Initialization failed: {e}", file=sys.stderr)
        return 1

    # Run search
    try:
        runner.run(both_directions=args.both, best_effort=args.best_effort)
    except KeyboardInterrupt:
        print("\n\n⏸ Stopped by user")
        return 0
    except ArbSizerError as e:
        logger.error(f"Search failed: {e}")
        print(f"❌ Search failed: {e}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
