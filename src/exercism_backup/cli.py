"""Command-line entry point: ``exercism-backup backup PATH [options]``."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

from . import __version__
from .backup.engine import BackupEngine
from .backup.options import (
    BackupOptions,
    IterationsSyncPolicy,
    OverwritePolicy,
    SolutionStatus,
)
from .config import load_config
from .config_loader import load_hierarchical_config
from .config_schema import UnifiedConfig, build_config
from .core.async_utils import ConcurrencyLimiter
from .core.client import ExercismClient
from .errors import BackupError
from .logger import setup_logging

logger = logging.getLogger(__name__)

# Alternate spellings accepted on the command line
_STATUS_ALIASES = {"started": SolutionStatus.ANY.value}
_OVERWRITE_ALIASES = {"if-new": OverwritePolicy.IF_NEWER.value}
_ITERATIONS_ALIASES = {
    "no": IterationsSyncPolicy.DO_NOT_SYNC.value,
    "full": IterationsSyncPolicy.FULL_SYNC.value,
    "f": IterationsSyncPolicy.FULL_SYNC.value,
}


def _choice(enum_cls, aliases: dict[str, str]):
    """Build an argparse ``type`` converting a string (or alias) to *enum_cls*."""

    def convert(value: str):
        value = value.strip().lower()
        try:
            return enum_cls(aliases.get(value, value))
        except ValueError:
            valid = [m.value for m in enum_cls] + sorted(aliases)
            raise argparse.ArgumentTypeError(
                f"invalid choice: {value!r} (choose from {', '.join(valid)})"
            ) from None

    convert.__name__ = enum_cls.__name__
    return convert


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="exercism-backup",
        description="Back up your Exercism solutions to a local directory",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Back up every solution (token from EXERCISM_API_TOKEN or the Exercism CLI)
  exercism-backup backup ~/exercism-backup

  # Only completed Rust and Python solutions, with all their iterations
  exercism-backup backup ~/exercism-backup -t rust -t python -s completed -i full-sync

  # See what would be backed up without writing anything
  exercism-backup backup ~/exercism-backup --dry-run -v
        """,
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"exercism-backup version {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    backup = subparsers.add_parser(
        "backup", help="Download solutions into a local directory"
    )
    backup.add_argument("path", type=Path, help="Output directory")
    backup.add_argument(
        "--token",
        help="Exercism API token (takes precedence over EXERCISM_API_TOKEN, "
        "config files and the Exercism CLI configuration)",
    )
    backup.add_argument(
        "--api-base-url",
        help="Exercism API root URL (default: https://exercism.org/api)",
    )
    backup.add_argument(
        "-t",
        "--track",
        dest="tracks",
        action="append",
        metavar="TRACK",
        help="Only back up solutions in this track (repeatable)",
    )
    backup.add_argument(
        "-e",
        "--exercise",
        dest="exercises",
        action="append",
        metavar="EXERCISE",
        help="Only back up solutions to this exercise (repeatable)",
    )
    backup.add_argument(
        "-s",
        "--status",
        type=_choice(SolutionStatus, _STATUS_ALIASES),
        help="Minimum solution status: any, submitted, completed or published",
    )
    backup.add_argument(
        "-o",
        "--overwrite",
        type=_choice(OverwritePolicy, _OVERWRITE_ALIASES),
        help="Existing solutions: always, if-newer (default) or never",
    )
    backup.add_argument(
        "-i",
        "--iterations-sync-policy",
        dest="iterations",
        type=_choice(IterationsSyncPolicy, _ITERATIONS_ALIASES),
        help="Iterations: do-not-sync (default), new, full-sync or clean-up",
    )
    backup.add_argument(
        "--dry-run",
        action="store_true",
        help="Determine what would be backed up without writing anything",
    )
    backup.add_argument(
        "-m",
        "--max-downloads",
        type=int,
        help="Maximum number of concurrent downloads (1-100, default: 4)",
    )
    backup.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="More output (repeatable)",
    )
    backup.add_argument(
        "-q",
        "--quiet",
        action="count",
        default=0,
        help="Less output (repeatable)",
    )
    backup.add_argument("--log-file", help="Also append log records to this file")
    backup.add_argument(
        "--log-format",
        choices=["text", "json"],
        help="Log record format (default: text)",
    )
    return parser


def build_options(
    args: argparse.Namespace, unified: UnifiedConfig, max_downloads: int
) -> BackupOptions:
    """Merge CLI arguments over the ``backup`` section of the config file."""
    defaults = unified.backup
    return BackupOptions(
        path=args.path,
        tracks=tuple(args.tracks or defaults.tracks),
        exercises=tuple(args.exercises or defaults.exercises),
        status=args.status or defaults.status,
        overwrite=args.overwrite or defaults.overwrite,
        iterations_sync_policy=args.iterations or defaults.iterations,
        dry_run=args.dry_run,
        max_downloads=max_downloads,
    )


async def main(args: argparse.Namespace, unified: UnifiedConfig) -> None:
    """Validate the API token, then run the backup."""
    config = load_config(
        token=args.token,
        api_base_url=args.api_base_url,
        max_downloads=args.max_downloads,
        yaml_fallbacks=unified.exercism.model_dump(exclude_none=True),
    )
    options = build_options(args, unified, config.max_downloads)
    client = ExercismClient(config)
    limiter = ConcurrencyLimiter(options.max_downloads)

    logger.debug("Validating API token against %s", config.api_base_url)
    await limiter.run(client.validate_token)

    await BackupEngine(client, options, limiter).run()


def run(argv: list[str] | None = None) -> None:
    """Entry point that handles errors gracefully and parses CLI arguments."""
    parser = build_parser()
    args = parser.parse_args(argv)

    load_dotenv()

    try:
        unified = build_config(load_hierarchical_config())
    except Exception as exc:
        print(f"Error: invalid configuration: {exc}", file=sys.stderr)
        sys.exit(1)

    verbosity = args.verbose - args.quiet
    setup_logging(
        debug=unified.exercism.debug,
        verbosity=verbosity,
        log_file=args.log_file or unified.logging.file,
        log_format=args.log_format or unified.logging.format,
        default_level=unified.logging.level,
    )

    try:
        asyncio.run(main(args, unified))
    except (BackupError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    run()
