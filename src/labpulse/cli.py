"""Command-line interface for LabPulse.

Runs the lab report pipeline once from the terminal or a scheduler.

Usage:
    labpulse run
    labpulse run --dry-run
    labpulse run --format json --export-timeout 1800
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Optional

from pydantic import ValidationError

from labpulse import __version__
from labpulse.config import Settings
from labpulse.errors import LabPulseError
from labpulse.logging_utils import configure_logging
from labpulse.notify import ConsoleNotifier
from labpulse.pipeline.runner import PipelineRunner

logger = logging.getLogger(__name__)


def create_parser() -> argparse.ArgumentParser:
    """Create the CLI argument parser.

    Returns:
        Configured ArgumentParser with all commands and arguments.
    """
    parser = argparse.ArgumentParser(
        prog="labpulse",
        description="LabPulse: FHIR bulk export lab result reports",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  labpulse run
  labpulse run --dry-run
  labpulse run --format json

Configuration is read from environment variables or .env
(FHIR_CLIENT_ID, FHIR_GROUP_ID, PRIVATE_KEY_PATH, SMTP_HOST, ...).
        """,
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # run command
    run_parser = subparsers.add_parser(
        "run",
        help="Run the export pipeline once and deliver the report",
        description="Export Patients and Observations, classify results, send the report",
    )
    run_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the report instead of e-mailing it",
    )
    run_parser.add_argument(
        "--format",
        type=str,
        choices=["text", "json"],
        default="text",
        help="Summary format printed after the run (default: text)",
    )
    run_parser.add_argument(
        "--export-timeout",
        type=float,
        default=None,
        help="Seconds to wait for the export job (default: from settings)",
    )
    run_parser.add_argument(
        "--poll-interval",
        type=float,
        default=None,
        help="Seconds between status polls (default: from settings)",
    )

    # version command
    subparsers.add_parser(
        "version",
        help="Show version information",
    )

    return parser


def _run_async(coro):
    """Run an async coroutine from synchronous CLI context.

    The coroutine runs as the main task of a fresh event loop in this
    thread, so Ctrl-C cancels it (stopping polls and open streams) before
    KeyboardInterrupt reaches the caller.
    """
    return asyncio.run(coro)


def cmd_run(args: argparse.Namespace) -> int:
    """Execute the run command.

    Args:
        args: Parsed command-line arguments

    Returns:
        Exit code (0 success, 1 pipeline failure, 2 configuration error)
    """
    try:
        settings = Settings()
    except ValidationError as e:
        print(f"Configuration error:\n{e}", file=sys.stderr)
        return 2

    overrides = {}
    if args.export_timeout is not None:
        overrides["export_timeout_seconds"] = args.export_timeout
    if args.poll_interval is not None:
        overrides["poll_interval_seconds"] = args.poll_interval
    if overrides:
        settings = settings.model_copy(update=overrides)

    configure_logging(settings.log_level, force=True)

    notifier = ConsoleNotifier() if args.dry_run else None
    runner = PipelineRunner(settings, notifier=notifier)

    try:
        result = _run_async(runner.run())
    except KeyboardInterrupt:
        logger.warning("Interrupted by user")
        return 130
    except LabPulseError as e:
        logger.error("Run failed, no report sent: %s", e)
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        logger.error("Run failed: %s", e, exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1

    summary = {
        "delivered": result.delivered,
        "delivery_detail": result.delivery.detail,
        "partial": result.report.partial,
        "patients": result.patients.records,
        "observations": result.observations.records,
        "abnormal": len(result.report.abnormal),
        "normal": len(result.report.normal),
        "unresolved_subjects": result.unresolved_subjects,
    }
    if args.format == "json":
        print(json.dumps(summary, indent=2))
    else:
        for key, value in summary.items():
            print(f"{key}: {value}")

    return 0 if result.delivered else 1


def cmd_version(args: argparse.Namespace) -> int:
    """Execute the version command.

    Args:
        args: Parsed command-line arguments

    Returns:
        Exit code (0 for success)
    """
    print(f"LabPulse v{__version__}")
    print("FHIR bulk export lab result reports")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    """Main CLI entry point.

    Args:
        argv: Command-line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    configure_logging("INFO")
    parser = create_parser()
    args = parser.parse_args(argv)

    # Route to command handler
    if args.command == "run":
        return cmd_run(args)
    elif args.command == "version":
        return cmd_version(args)
    else:
        # No command specified
        parser.print_help()
        return 0


def cli_entry() -> None:
    """Console script entry point for setuptools."""
    sys.exit(main())


if __name__ == "__main__":
    cli_entry()
