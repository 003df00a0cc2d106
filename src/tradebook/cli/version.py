"""Version subcommand for the tradebook CLI."""

from importlib.metadata import PackageNotFoundError, version


def register_subcommand(subparsers):
    """Register the version subcommand with the argument parser.

    Args:
        subparsers: The argparse subparsers object to register with.
    """
    parser = subparsers.add_parser(
        "version",
        help="Display tradebook version information",
        description="Display the installed tradebook version.",
    )
    parser.set_defaults(func=run)


def run(args):
    try:
        ver = version("tradebook")
    except PackageNotFoundError:
        ver = "unknown"

    print(f" Version: {ver}")
    return 0
