"""
Command-line entry point for the recurring catch-up engine.

Usage:
    finance-recurring --owner <id> run [--force]
    finance-recurring --owner <id> reset
    finance-recurring --owner <id> upcoming [--days N]

Examples:
    # Catch up everything due since the last run
    finance-recurring --owner alice --config settings.yaml run

    # Run even though a batch already ran today
    finance-recurring --owner alice run --force

    # What falls due in the next two weeks
    finance-recurring --owner alice upcoming --days 14

Exit codes: 0 success, 1 one or more rules reported errors,
2 invalid configuration or arguments, 3 not authorized.
"""

from __future__ import annotations

import argparse
import os
import sys
from collections.abc import Sequence
from pathlib import Path

import yaml

from finance_recurring.config import EngineSettings, load_settings
from finance_recurring.domain.types import BatchRunResult, UpcomingOccurrence
from finance_recurring.exceptions import AuthorizationError, ConfigurationError
from finance_recurring.logging_config import configure_logging, get_logger

logger = get_logger("cli")

EXIT_OK = 0
EXIT_RULE_ERRORS = 1
EXIT_CONFIG = 2
EXIT_NOT_AUTHORIZED = 3

OWNER_ENV = "FINANCE_RECURRING_OWNER"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="finance-recurring",
        description="Materialize due recurring transactions and savings contributions.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="YAML settings file (default: built-in settings).",
    )
    parser.add_argument(
        "--owner",
        default=os.environ.get(OWNER_ENV),
        help=f"Owner whose rules are processed (default: ${OWNER_ENV}).",
    )
    parser.add_argument(
        "--database-url",
        default=None,
        help="Database URL; overrides database_url from the settings file.",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    run = commands.add_parser("run", help="Process every due occurrence.")
    run.add_argument(
        "--force",
        action="store_true",
        help="Skip the once-per-day gating check.",
    )

    commands.add_parser("reset", help="Clear the last-run marker.")

    upcoming = commands.add_parser("upcoming", help="List upcoming due dates.")
    upcoming.add_argument(
        "--days",
        type=int,
        default=None,
        help="Look-ahead window in days (default: upcoming_days setting).",
    )
    return parser


# =============================================================================
# Output
# =============================================================================


def _print_run(result: BatchRunResult) -> None:
    if result.run_skipped:
        print(f"Skipped: {result.skip_reason}")
        return
    print(f"Created {result.total_created} transaction(s) (run_id={result.run_id})")
    for tx in result.transactions:
        print(
            f"  {tx.occurrence_date.isoformat()}  {tx.kind.value:<7}  "
            f"{tx.amount:>10}  {tx.description}"
        )
    for err in result.errors:
        print(f"  ! {err['source']} {err['rule_id']}: {err['outcome']}", file=sys.stderr)
        for message in err["errors"]:
            print(f"      {message}", file=sys.stderr)
        if err["skipped_dates"]:
            print(f"      skipped: {', '.join(err['skipped_dates'])}", file=sys.stderr)


def _print_upcoming(items: Sequence[UpcomingOccurrence]) -> None:
    if not items:
        print("Nothing due.")
        return
    for item in items:
        print(
            f"{item.next_due_date.isoformat()}  (in {item.days_until:>3} d)  "
            f"{item.kind:<7}  {item.amount:>10}  {item.description}"
        )


# =============================================================================
# Main
# =============================================================================


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.owner:
        print(f"ERROR: --owner is required (or set ${OWNER_ENV}).", file=sys.stderr)
        return EXIT_CONFIG

    try:
        settings = load_settings(args.config) if args.config else EngineSettings()
    except (OSError, yaml.YAMLError, ConfigurationError) as e:
        print(f"ERROR: Failed to load settings: {e}", file=sys.stderr)
        return EXIT_CONFIG

    configure_logging(level=settings.log_level_value)

    # Lazy imports so argument errors do not pay for SQLAlchemy setup
    from finance_recurring.db.engine import create_tables, init_engine_from_url, session_scope
    from finance_recurring.orchestrator import BatchOrchestrator

    init_engine_from_url(args.database_url or settings.database_url)
    create_tables()

    try:
        with session_scope() as session:
            orchestrator = BatchOrchestrator.from_session(
                session, args.owner, settings=settings,
            )
            if args.command == "run":
                result = orchestrator.run_batch(force=args.force)
                _print_run(result)
                return EXIT_RULE_ERRORS if result.errors else EXIT_OK
            if args.command == "reset":
                orchestrator.reset_run_marker()
                print("Run marker cleared.")
                return EXIT_OK
            _print_upcoming(orchestrator.list_upcoming(args.days))
            return EXIT_OK
    except AuthorizationError as e:
        logger.error("cli_not_authorized", extra={"owner_id": args.owner})
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_NOT_AUTHORIZED


if __name__ == "__main__":
    sys.exit(main())
