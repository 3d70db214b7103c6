"""Command-line interface for portfolio NAV valuation."""
from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any

from .config import load_config
from .exceptions import InvalidAddressError
from .logging_setup import configure_logging
from .services import PortfolioValuator
from .services.metrics import calculate_cagr, calculate_metrics, calculate_sharpe_ratio


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse CLI parser."""
    parser = argparse.ArgumentParser(
        prog="portfolio-nav",
        description="Multi-chain wallet valuation with composite-token NAV pricing",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: config.yaml in project root)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    sub = parser.add_subparsers(dest="command")

    value_parser = sub.add_parser("value", help="Value a wallet across all chains")
    value_parser.add_argument("address", help="Wallet address (0x...)")

    positions_parser = sub.add_parser("positions", help="DeFi positions grouped by protocol")
    positions_parser.add_argument("address", help="Wallet address (0x...)")

    cagr_parser = sub.add_parser("cagr", help="Compound annual growth rate")
    cagr_parser.add_argument("beginning", type=float, help="Beginning value")
    cagr_parser.add_argument("ending", type=float, help="Ending value")
    cagr_parser.add_argument("years", type=float, help="Period in years")

    sharpe_parser = sub.add_parser("sharpe", help="Annualised Sharpe ratio of a value series")
    sharpe_parser.add_argument("values", type=float, nargs="+", help="Chronological values")
    sharpe_parser.add_argument(
        "--risk-free-rate",
        type=float,
        default=None,
        help="Annual risk-free rate (default: valuation.risk_free_rate from config)",
    )

    metrics_parser = sub.add_parser(
        "metrics", help="PnL, CAGR and Sharpe ratio for a portfolio"
    )
    metrics_parser.add_argument("total_value", type=float, help="Current portfolio value")
    metrics_parser.add_argument("cost_basis", type=float, help="Total cost basis")
    metrics_parser.add_argument("years", type=float, help="Holding period in years")
    metrics_parser.add_argument(
        "--history",
        type=float,
        nargs="+",
        default=[],
        help="Chronological portfolio values for the Sharpe ratio",
    )
    metrics_parser.add_argument(
        "--risk-free-rate",
        type=float,
        default=None,
        help="Annual risk-free rate (default: valuation.risk_free_rate from config)",
    )

    return parser


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2))


async def _run(args: argparse.Namespace) -> None:
    """Execute the selected command."""
    configure_logging(args.log_level)

    if args.command == "cagr":
        _print_json({"cagr": calculate_cagr(args.beginning, args.ending, args.years)})
        return
    config = load_config(args.config)

    if args.command in ("sharpe", "metrics"):
        rate = args.risk_free_rate
        if rate is None:
            rate = config.valuation.risk_free_rate
        if args.command == "sharpe":
            _print_json({"sharpeRatio": calculate_sharpe_ratio(args.values, rate)})
        else:
            metrics = calculate_metrics(
                args.total_value,
                args.cost_basis,
                args.years,
                history=args.history,
                risk_free_rate=rate,
            )
            _print_json(metrics.to_dict())
        return

    async with PortfolioValuator(config) as valuator:
        if args.command == "value":
            portfolio = await valuator.value_portfolio(args.address)
            _print_json(portfolio.to_dict())
        elif args.command == "positions":
            summary = await valuator.defi_summary(args.address)
            _print_json(summary.to_dict())
        else:
            build_parser().print_help()
            sys.exit(1)


def main() -> None:
    """Entry point."""
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        asyncio.run(_run(args))
    except InvalidAddressError as e:
        print(f"error: {e}", file=sys.stderr)
        sys.exit(2)
