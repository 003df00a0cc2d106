#!/usr/bin/env python3
"""Main entry point for the tradebook CLI."""

import argparse
import sys


def main(argv=None):
    """Parse CLI arguments and dispatch to the appropriate subcommand.

    Args:
        argv: Argument list; defaults to ``sys.argv[1:]``.

    Returns:
        int: Exit code (0 for success, non-zero for errors).
    """
    parser = argparse.ArgumentParser(
        prog="tradebook",
        description="tradebook - replay trades into a ledger, balances and position episodes",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  tradebook report trades.xlsx                    Display ledger, balances and episodes
  tradebook report trades.json -a acct-1          Only show one account
  tradebook report trades.xlsx --roll-window-hours 24
  tradebook export trades.xlsx portfolio.xlsx     Write the replay result to Excel
        """,
    )

    subparsers = parser.add_subparsers(
        title="commands",
        dest="command",
        help="Available commands",
    )

    # Import subcommand modules and register them
    from .report import register_subcommand as register_report
    from .export import register_subcommand as register_export
    from .version import register_subcommand as register_version

    register_report(subparsers)
    register_export(subparsers)
    register_version(subparsers)

    args = parser.parse_args(argv)

    # If no command specified, show help
    if args.command is None:
        parser.print_help()
        return 0

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
