# File: parking_billing/main.py
"""
Command line entry point for the Parking Billing Engine

Commands:
1. quote  - fee breakdown for a stay, as JSON
2. policy - the effective pricing policy, as JSON

Amounts are printed as minor units plus decimal text; display formatting is
left to the caller.
"""

from datetime import datetime, timezone
from typing import List, Optional
import argparse
import json
import logging
import os
import sys

from .domain.errors import BillingError
from .domain.pricing import PricingPolicy
from .domain.strategies import FeeCalculator
from .infrastructure.config import BillingSettings, default_pricing_policy, load_pricing_policy


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> logging.Logger:
    """Setup application logging configuration"""
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir and not os.path.exists(log_dir):
            os.makedirs(log_dir)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers
    )
    return logging.getLogger("parking_billing")


def parse_timestamp(value: str) -> datetime:
    """ISO 8601 timestamp; a value without offset is taken as UTC"""
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an ISO 8601 timestamp: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def resolve_policy(pricing_file: Optional[str], settings: BillingSettings) -> PricingPolicy:
    path = pricing_file or settings.pricing_file
    if path:
        return load_pricing_policy(path)
    return default_pricing_policy(settings.currency)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="parking-billing",
        description="Parking fee billing engine"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    quote = subparsers.add_parser("quote", help="Calculate the fee for a stay")
    quote.add_argument("--entry", required=True, type=parse_timestamp, help="Entry time (ISO 8601)")
    quote.add_argument("--exit", required=True, type=parse_timestamp, help="Exit time (ISO 8601)")
    quote.add_argument("--pricing", help="Pricing YAML file (default: PARKING_PRICING_FILE or built-in tariff)")

    policy = subparsers.add_parser("policy", help="Print the effective pricing policy")
    policy.add_argument("--pricing", help="Pricing YAML file (default: PARKING_PRICING_FILE or built-in tariff)")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = BillingSettings.from_env()
        logger = setup_logging(settings.log_level, settings.log_file)
        policy = resolve_policy(args.pricing, settings)

        if args.command == "quote":
            result = FeeCalculator().calculate(args.entry, args.exit, policy)
            logger.info(f"Quoted {result.duration_minutes} minutes: {result.total_amount}")
            output = result.to_dict()
        else:
            output = policy.to_dict()
    except BillingError as e:
        print(json.dumps(e.to_dict(), default=str, indent=2))
        return 1

    print(json.dumps(output, default=str, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
