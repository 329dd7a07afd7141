#!/usr/bin/env python3
"""
Portfolio Summary Script

Runs one valuation pass over all configured sources (Bitvavo, Trading212)
and prints per-source totals, the holding breakdown and the grand total.
Designed to run via cron or a widget refresh hook, with locking so an
overlapping run never sends duplicate authenticated requests.

Usage:
    python scripts/portfolio_summary.py [--target EUR] [--dust 1.0] [--json]

Requirements:
    - API keys in .env file (BITVAVO_API_KEY/BITVAVO_API_SECRET, TRADING212_API_KEY)

Example cron (every 30 minutes):
    */30 * * * * cd /path/to/portfolio-valuation && python scripts/portfolio_summary.py >> logs/summary.log 2>&1
"""

import argparse
import fcntl
import json
import logging
import os
import sys
from datetime import datetime
from pathlib import Path

# Add src directory to path to import the package without installing it
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from portfolio_valuation.aggregator import get_portfolio_summary
from portfolio_valuation.config import load_settings
from portfolio_valuation.currency import looks_like_currency_code
from portfolio_valuation.errors import AuthError
from portfolio_valuation.models import PortfolioSummary

CURRENCY_SYMBOLS = {"EUR": "€", "USD": "$", "GBP": "£", "JPY": "¥", "CHF": "CHF "}


def setup_logging(log_dir: Path, verbose: bool = False) -> logging.Logger:
    """Setup logging to both file and console."""
    log_dir.mkdir(parents=True, exist_ok=True)
    level = logging.DEBUG if verbose else logging.INFO

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    logger = logging.getLogger()
    logger.setLevel(level)
    logger.handlers.clear()

    # Monthly log rotation
    log_file = log_dir / f"summary_{datetime.now().strftime('%Y%m')}.log"
    file_handler = logging.FileHandler(log_file)
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    # Console goes to stderr so --json output stays clean
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    return logger


class LockFile:
    """Context manager for file-based locking to prevent concurrent runs."""

    def __init__(self, lock_path: Path):
        self.lock_path = lock_path
        self.lock_file = None

    def __enter__(self):
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        self.lock_file = open(self.lock_path, "w")
        try:
            # Non-blocking lock
            fcntl.flock(self.lock_file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            self.lock_file.write(f"{os.getpid()}\n{datetime.now().isoformat()}\n")
            self.lock_file.flush()
            return self
        except IOError:
            self.lock_file.close()
            raise RuntimeError(
                f"Another instance is already running (lock file: {self.lock_path})"
            )

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.lock_file:
            fcntl.flock(self.lock_file.fileno(), fcntl.LOCK_UN)
            self.lock_file.close()
            try:
                self.lock_path.unlink()
            except FileNotFoundError:
                pass


def format_money(value: float, currency: str) -> str:
    """Format an amount with its currency symbol, e.g. €1,234.56."""
    symbol = CURRENCY_SYMBOLS.get(currency)
    if symbol:
        return f"{symbol}{value:,.2f}"
    return f"{value:,.2f} {currency}"


def print_summary(summary: PortfolioSummary):
    """Print the summary as plain text."""
    currency = summary.currency

    for source, total in summary.source_totals.items():
        print(f"{source} total: {format_money(total, currency)}")
    for source in summary.failed_sources:
        print(f"{source} total: –")

    if summary.holdings:
        print()
        width = max(len(h.symbol) for h in summary.holdings)
        for h in summary.holdings:
            share = h.value / summary.total_value * 100 if summary.total_value else 0.0
            print(f"  {h.symbol:<{width}}  {format_money(h.value, currency):>14}  {share:5.1f}%")

    print()
    print(f"Total: {format_money(summary.total_value, currency)}")
    if summary.incomplete:
        print("(incomplete: some sources or holdings could not be valued)")


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Value all configured holdings in one currency")
    parser.add_argument("--target", help="Reporting currency (default: TARGET_CURRENCY or EUR)")
    parser.add_argument("--dust", type=float, help="Hide holdings worth this much or less")
    parser.add_argument(
        "--sources",
        help="Comma-separated source names to include (default: all configured)",
    )
    parser.add_argument("--json", action="store_true", help="Print the summary as JSON")
    parser.add_argument("--env-file", help="Path to .env file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args()

    # Setup paths
    project_root = Path(__file__).parent.parent
    log_dir = project_root / "logs"
    lock_file = project_root / "data" / ".summary.lock"

    logger = setup_logging(log_dir, args.verbose)

    logger.info("=" * 70)
    logger.info("Portfolio Summary - Starting")
    logger.info("=" * 70)

    try:
        settings = load_settings(args.env_file)
        if args.target:
            target = looks_like_currency_code(args.target)
            if target is None:
                raise ValueError(f"--target must be a currency code, got {args.target!r}")
            settings.target_currency = target
        if args.dust is not None:
            settings.dust_threshold = args.dust
        if args.sources:
            wanted = {s.strip().lower() for s in args.sources.split(",")}
            settings.sources = {
                name: config for name, config in settings.sources.items() if name.lower() in wanted
            }

        if not settings.sources:
            logger.error("No sources configured - set API keys in .env")
            sys.exit(1)

        logger.info(f"Sources: {', '.join(settings.sources)}")
        logger.info(f"Target currency: {settings.target_currency}")

        with LockFile(lock_file):
            logger.info("Lock acquired successfully")
            summary = get_portfolio_summary(settings)

        if args.json:
            print(json.dumps(summary.to_dict(), indent=2))
        else:
            print_summary(summary)

        logger.info("=" * 70)
        if summary.incomplete:
            logger.warning("Portfolio Summary - Completed with gaps")
        else:
            logger.info("Portfolio Summary - Success")
        logger.info("=" * 70)
        sys.exit(0)

    except AuthError as e:
        logger.error(f"✗ Authentication failed: {e}")
        logger.error("Portfolio Summary - Failed")
        sys.exit(1)

    except ValueError as e:
        logger.error(f"✗ Configuration error: {e}")
        sys.exit(1)

    except RuntimeError as e:
        # Lock file error (another instance running)
        logger.warning(str(e))
        logger.info("Exiting - another instance is already running")
        sys.exit(2)

    except KeyboardInterrupt:
        logger.warning("Interrupted by user")
        sys.exit(130)

    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        logger.error("Portfolio Summary - Failed with error")
        sys.exit(1)


if __name__ == "__main__":
    main()
