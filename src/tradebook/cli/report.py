#!/usr/bin/env python3
"""Report subcommand - Display the ledger, balances and position episodes."""

from ..reports import (
    format_episode_for_display,
    get_account_episodes,
    get_open_episodes,
    get_total_realized_pnl,
)
from .options import add_replay_arguments, replay_from_args
from rich.console import Console
from rich.table import Table
from rich.panel import Panel


def register_subcommand(subparsers):
    """Register the report subcommand with the argument parser.

    Args:
        subparsers: The argparse subparsers action to add the command to.
    """
    parser = subparsers.add_parser(
        "report",
        help="Display ledger, balances and position episodes",
        description="Replay a transactions file and display the ledger, rejected rows, "
                    "cash balances, position episodes and realized P&L.",
    )
    add_replay_arguments(parser)
    parser.add_argument(
        "--account",
        "-a",
        default=None,
        help="Only show this account",
    )
    parser.add_argument(
        "--open-only",
        action="store_true",
        help="Only show open episodes",
    )
    parser.set_defaults(func=run)


def _amount_markup(amount) -> str:
    if amount.is_negative():
        return f"[red]{amount.format()}[/red]"
    if amount.is_positive():
        return f"[green]{amount.format()}[/green]"
    return amount.format()


def run(args):
    """Replay the file and print the report tables.

    Args:
        args: Parsed argparse namespace with filename, roll_window_hours,
            opening_balance, ignore_warnings, account and open_only attributes.

    Returns:
        int: Exit code (0 for success, 1 for errors).
    """
    try:
        result = replay_from_args(args)
    except (ValueError, FileNotFoundError) as e:
        print(f"Error: {e}")
        return 1

    console = Console()

    ledger = result.ledger
    episodes = result.episodes
    balances = result.balances
    if args.account:
        ledger = [row for row in ledger if row.account_id == args.account]
        episodes = get_account_episodes(episodes, args.account)
        balances = {k: v for k, v in balances.items() if k == args.account}
    if args.open_only:
        episodes = get_open_episodes(episodes)

    # Ledger
    ledger_table = Table(title="Ledger")
    ledger_table.add_column("ID", style="cyan")
    ledger_table.add_column("Date", justify="left")
    ledger_table.add_column("Account")
    ledger_table.add_column("Instrument")
    ledger_table.add_column("Side")
    ledger_table.add_column("Qty", style="magenta", justify="right")
    ledger_table.add_column("Price", justify="right")
    ledger_table.add_column("Cash", justify="right")
    ledger_table.add_column("Balance", style="yellow", justify="right")
    ledger_table.add_column("Status")

    for row in ledger:
        instrument = row.instrument_kind.value
        if row.ticker:
            instrument = f"{row.ticker} {instrument}"
        ledger_table.add_row(
            row.txn_id,
            row.timestamp.strftime("%Y-%m-%d %H:%M"),
            row.account_id,
            instrument,
            row.side.value if row.side else "",
            f"{row.qty:,}",
            row.price.format() if row.price else "",
            _amount_markup(row.cash_delta),
            row.balance_after.format(),
            "[green]OK[/green]" if row.accepted else f"[red]{row.error_message}[/red]",
        )

    console.print(ledger_table)

    rejected = [row for row in ledger if not row.accepted]
    if rejected:
        console.print(f"[red]{len(rejected)} transaction(s) rejected[/red]")

    # Balances
    cash_table = Table(title="Cash Balances")
    cash_table.add_column("Account", style="cyan", justify="left")
    cash_table.add_column("Currency", justify="left")
    cash_table.add_column("Balance", style="yellow", justify="right")

    for account_id in sorted(balances):
        for currency, balance in sorted(balances[account_id].items(), key=lambda x: x[0].value):
            cash_table.add_row(account_id, currency.value, balance.format())

    console.print(cash_table)

    # Episodes
    episode_table = Table(title="Position Episodes")
    episode_table.add_column("Account", style="cyan")
    episode_table.add_column("Opened")
    episode_table.add_column("Closed")
    episode_table.add_column("Summary")
    episode_table.add_column("Rolled", justify="center")
    episode_table.add_column("Realized P&L", justify="right")

    for episode in episodes:
        episode_table.add_row(
            episode.account_id,
            episode.open_timestamp.strftime("%Y-%m-%d %H:%M"),
            episode.close_timestamp.strftime("%Y-%m-%d %H:%M") if episode.close_timestamp else "",
            format_episode_for_display(episode),
            "yes" if episode.rolled else "",
            _amount_markup(episode.realized_pnl_total),
        )

    console.print(episode_table)

    totals = get_total_realized_pnl(episodes)
    summary = "\n".join(
        f"[bold]Realized P&L ({currency.value}):[/bold] {_amount_markup(total)}"
        for currency, total in sorted(totals.items(), key=lambda x: x[0].value)
    ) or "No realized P&L"
    console.print(Panel(summary, title="Summary"))

    return 0
