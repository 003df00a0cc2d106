"""Export subcommand - Write a replay result to an Excel workbook."""

from ..portfolio import save_portfolio_view_to_excel
from .options import add_replay_arguments, replay_from_args
from rich.console import Console


def register_subcommand(subparsers):
    """Register the export subcommand with the argument parser.

    Args:
        subparsers: The argparse subparsers action to add the command to.
    """
    parser = subparsers.add_parser(
        "export",
        help="Export ledger, episodes and balances to Excel",
        description="Replay a transactions file and write Ledger, Episodes and Balances sheets.",
    )
    add_replay_arguments(parser)
    parser.add_argument("output", help="Path of the Excel workbook to write")
    parser.set_defaults(func=run)


def run(args):
    """Replay the file and save the workbook.

    Returns:
        int: Exit code (0 for success, 1 for errors).
    """
    try:
        result = replay_from_args(args)
    except (ValueError, FileNotFoundError) as e:
        print(f"Error: {e}")
        return 1

    try:
        save_portfolio_view_to_excel(result, args.output)
    except OSError as e:
        print(f"Error: {e}")
        return 1

    console = Console()
    rejected = sum(1 for row in result.ledger if not row.accepted)
    console.print(
        f"[green]Wrote {len(result.ledger)} ledger rows and {len(result.episodes)} episodes "
        f"to: {args.output}[/green]"
    )
    if rejected:
        console.print(f"[red]{rejected} transaction(s) rejected[/red]")
    return 0
