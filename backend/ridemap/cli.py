"""Command line entry point for fetching and preprocessing rides.

Usage examples:

    # Download every RideWithGPS trip not yet in the metadata store
    ridemap fetch

    # Generate the geometry tiers and metadata for all downloaded trips
    ridemap preprocess

    # Preprocess a different directory with more workers
    ridemap preprocess --source-dir /data/original_rides --workers 8
"""

from __future__ import annotations

import argparse
import logging
import pathlib
from typing import TYPE_CHECKING

from ridemap.core import config
from ridemap.db import database
from ridemap.services import ingest_rides, rwgps

if TYPE_CHECKING:
    from collections.abc import Sequence

logger = logging.getLogger("ridemap")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ridemap",
        description="Fetch RideWithGPS trips and build their geometry tiers.",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Logging verbosity (defaults to the LOG_LEVEL setting).",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser(
        "fetch",
        help="Download trips that are not yet in the metadata store.",
    )

    preprocess = subparsers.add_parser(
        "preprocess",
        help="Generate tier artifacts and metadata for raw trips.",
    )
    preprocess.add_argument(
        "--source-dir",
        type=pathlib.Path,
        default=None,
        help="Directory of raw trip JSON files (defaults to RAW_RIDES_DIR).",
    )
    preprocess.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Rides processed concurrently (defaults to INGEST_WORKERS).",
    )
    return parser


def run_fetch(
    settings: config.Settings,
    repo: database.RideRepositoryProtocol,
) -> int:
    """Download new rides; returns the process exit code."""
    try:
        with rwgps.RideWithGPSClient(settings) as client:
            fetched = rwgps.download_new_rides(client, repo)
    except rwgps.FetchError as exc:
        logger.error("Fetch failed: %s", exc)
        return 1
    print(f"Fetched {len(fetched)} new ride(s)")
    return 0


def run_preprocess(
    settings: config.Settings,
    repo: database.RideRepositoryProtocol,
    source_dir: pathlib.Path | None = None,
) -> int:
    """Preprocess raw rides; returns the process exit code.

    Per-ride failures are reported in the summary line and do not change the
    exit code.
    """
    outcomes = ingest_rides.ingest_directory(
        source_dir or settings.raw_rides_dir, repo, settings
    )
    summary = ingest_rides.summarize(outcomes)
    print(
        f"Processed {len(outcomes)} file(s): "
        + ", ".join(f"{status}={count}" for status, count in summary.items())
    )
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the ``ridemap`` command."""
    args = _build_parser().parse_args(argv)
    settings = config.get_settings()
    if getattr(args, "workers", None):
        settings = settings.model_copy(update={"ingest_workers": args.workers})

    logging.basicConfig(
        level=getattr(logging, args.log_level or settings.log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    repo = database.get_ride_repository(settings)
    if args.command == "fetch":
        return run_fetch(settings, repo)
    return run_preprocess(settings, repo, args.source_dir)


if __name__ == "__main__":
    raise SystemExit(main())
