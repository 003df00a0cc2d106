"""Replay options shared by the subcommands, read from flags or the environment."""

import os
import warnings
from datetime import timedelta

from dotenv import load_dotenv

load_dotenv()

from ..currency import CurrencyAmount
from ..portfolio import PortfolioResult, build_portfolio_view
from ..transactions import OpeningBalances, load_transactions

DEFAULT_ROLL_WINDOW_HOURS = 10.0


def parse_opening_balances(value: str | None) -> OpeningBalances:
    """Parse ``"acct-1:1000:USD,acct-2:250.50:CAD"`` into opening balances.

    Raises:
        ValueError: If an entry is not ``account:amount:CURRENCY``.
    """
    balances: OpeningBalances = {}
    if not value:
        return balances
    for entry in value.split(","):
        entry = entry.strip()
        if not entry:
            continue
        parts = entry.rsplit(":", 2)
        if len(parts) != 3:
            raise ValueError(f"Invalid opening balance '{entry}', expected account:amount:CURRENCY")
        account_id, amount, currency = parts
        balances[account_id] = CurrencyAmount.parse(amount, currency.upper())
    return balances


def add_replay_arguments(parser) -> None:
    """Add the input file and replay flags to a subcommand parser."""
    parser.add_argument("filename", help="Path to the transactions file (.xlsx or .json)")
    parser.add_argument(
        "--roll-window-hours",
        type=float,
        default=None,
        help="Hours after closing an option within which a new contract counts as a roll "
             "(default: $TRADEBOOK_ROLL_WINDOW_HOURS or 10)",
    )
    parser.add_argument(
        "--opening-balance",
        "-b",
        default=None,
        help="Opening balances as account:amount:CURRENCY, comma separated "
             "(default: $TRADEBOOK_OPENING_BALANCES)",
    )
    parser.add_argument(
        "--ignore-warnings",
        action="store_true",
        help="Suppress data quality warnings such as missing timezones",
    )


def roll_window_from_args(args) -> timedelta:
    hours = args.roll_window_hours
    if hours is None:
        hours = float(os.getenv("TRADEBOOK_ROLL_WINDOW_HOURS", DEFAULT_ROLL_WINDOW_HOURS))
    if hours < 0:
        raise ValueError(f"Roll window must be non-negative, got {hours} hours")
    return timedelta(hours=hours)


def replay_from_args(args) -> PortfolioResult:
    """Load the file named on the command line and replay it.

    Raises:
        FileNotFoundError: If the transactions file does not exist.
        ValueError: If the file or an option value is invalid.
    """
    if args.ignore_warnings:
        warnings.filterwarnings("ignore", category=UserWarning)

    opening_balances = parse_opening_balances(
        args.opening_balance if args.opening_balance is not None
        else os.getenv("TRADEBOOK_OPENING_BALANCES")
    )
    roll_window = roll_window_from_args(args)
    transactions = load_transactions(args.filename)
    return build_portfolio_view(
        transactions,
        opening_balances=opening_balances,
        roll_window=roll_window,
    )
