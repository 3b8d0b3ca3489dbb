"""
Minimal script that fetches an x402-protected URL, paying if asked to.
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Iterable, Tuple

from megalith_x402 import ConfigurationError, X402Error, create_payer_session, load_payer_config


def _override(value: str) -> Tuple[str, str]:
    if "=" not in value:
        raise argparse.ArgumentTypeError("Overrides must look like KEY=VALUE")
    key, val = value.split("=", 1)
    key = key.strip()
    if not key:
        raise argparse.ArgumentTypeError("Override key must not be empty")
    return key, val


def _build_overrides(pairs: Iterable[Tuple[str, str]]) -> dict[str, str]:
    return {key: value for key, value in pairs}


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Fetch a paid resource with the x402 SDK")
    parser.add_argument("url", help="Resource to fetch")
    parser.add_argument(
        "--set",
        action="append",
        type=_override,
        metavar="KEY=VALUE",
        default=None,
        help="Override an X402_* setting without touching the environment",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Python logging level (default: INFO)",
    )
    parser.add_argument(
        "--network",
        help="Network to pay on (default: base)",
    )
    parser.add_argument(
        "--max-amount",
        help="Largest payment to accept, in token units (default: 0.10)",
    )
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(message)s",
    )

    try:
        config = load_payer_config(
            overrides=_build_overrides(args.set or ()),
            network=args.network,
            max_amount=args.max_amount,
        )
    except ConfigurationError as exc:
        logging.error("Invalid configuration: %s", exc)
        return 1

    payer = create_payer_session(config)
    logging.info("Fetching %s as %s on %s", args.url, config.payer_address, config.network.id)

    try:
        response = payer.get(args.url)
    except X402Error as exc:
        logging.error("Payment failed: %s", exc)
        return 1

    receipt = payer.payment_receipt(response)
    if receipt:
        logging.info("Paid. Transaction hash: %s", receipt.get("transactionHash"))
    logging.info("Server responded with %s", response.status_code)
    print(response.text)
    return 0 if response.ok else 1


if __name__ == "__main__":
    sys.exit(main())
