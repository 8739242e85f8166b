#!/usr/bin/env python3
"""
Tabulation engine CLI

Usage:
    python -m tabulator.cli <command> [options]

Commands:
    db          Database operations (init, verify-log)
    seed        Seed a demo event and print access tokens
    results     Print a segment leaderboard

Environment:
    DATABASE_URL    Async SQLAlchemy connection string
    LOG_LEVEL       DEBUG|INFO|WARNING|ERROR
"""
import sys
import argparse
import logging
from typing import Optional

from tabulator import __version__
from tabulator.cli.db_commands import DbCommand
from tabulator.cli.results_commands import ResultsCommand
from tabulator.cli.seed_commands import SeedCommand


def setup_logging(level: str = "INFO") -> None:
    """Configure logging."""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


def create_parser() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="tabulator",
        description="Pageant Tabulation CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s db init
  %(prog)s db verify-log --event <event-id>
  %(prog)s seed demo --judges 3 --candidates 5
  %(prog)s results --event <event-id> --segment <segment-id> --csv
        """
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}"
    )

    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: WARNING)"
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without executing"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Database commands
    db_parser = subparsers.add_parser("db", help="Database operations")
    db_subparsers = db_parser.add_subparsers(dest="db_action")

    db_subparsers.add_parser("init", help="Create all tables")

    verify_parser = db_subparsers.add_parser("verify-log", help="Verify the live event hash chain")
    verify_parser.add_argument("--event", "-e", required=True, help="Event ID")

    # Seed commands
    seed_parser = subparsers.add_parser("seed", help="Seed data")
    seed_subparsers = seed_parser.add_subparsers(dest="seed_action")

    demo_parser = seed_subparsers.add_parser("demo", help="Create an active demo event")
    demo_parser.add_argument("--name", default="Demo Pageant", help="Event name")
    demo_parser.add_argument("--judges", type=int, default=3, help="Number of judges")
    demo_parser.add_argument("--candidates", type=int, default=5, help="Number of candidates")

    # Results
    results_parser = subparsers.add_parser("results", help="Show a segment leaderboard")
    results_parser.add_argument("--event", "-e", required=True, help="Event ID")
    results_parser.add_argument("--segment", "-s", required=True, help="Segment ID")
    results_parser.add_argument("--csv", action="store_true", help="Print CSV instead of a table")

    return parser


def main(args: Optional[list] = None) -> int:
    """Main entry point."""
    parser = create_parser()
    parsed = parser.parse_args(args)

    if not parsed.command:
        parser.print_help()
        return 1

    setup_logging(parsed.log_level)

    command_map = {
        "db": DbCommand,
        "seed": SeedCommand,
        "results": ResultsCommand,
    }

    if parsed.command in command_map:
        handler = command_map[parsed.command](dry_run=parsed.dry_run)
        return handler.execute(parsed)

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
