# main.py

"""Entry point for the price refresh engine (headless CLI)."""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from src.config.logging_config import setup_logging
from src.config.settings import Settings

logger = logging.getLogger("price_refresh.main")


def _build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="price_refresh",
        description="Affiliate catalog price refresh for marketplace offers.",
    )
    parser.add_argument(
        "-f",
        "--format",
        choices=["json", "table"],
        default="table",
        dest="output_format",
        help="Summary output format (default: table).",
    )
    parser.add_argument(
        "--platform",
        default=None,
        help=f"Platform label of the offers to refresh "
        f"(default: {Settings.PLATFORM_LABEL}).",
    )
    parser.add_argument(
        "-c",
        "--concurrency",
        type=int,
        default=None,
        help=f"Parallel workers (default: {Settings.CONCURRENCY}).",
    )
    parser.add_argument(
        "-b",
        "--batch-size",
        type=int,
        default=None,
        dest="batch_size",
        help=f"Offers read per page (default: {Settings.BATCH_SIZE}).",
    )
    parser.add_argument(
        "--gate-threshold",
        type=int,
        default=None,
        dest="gate_threshold",
        help=f"Gate detections tolerated before the run stops early "
        f"(default: {Settings.GATE_THRESHOLD}).",
    )
    parser.add_argument(
        "--save",
        action="store_true",
        default=False,
        help="Also save the run summary as JSON under results/.",
    )
    parser.add_argument(
        "--import-offers",
        default=None,
        dest="import_offers",
        metavar="FILE",
        help="Import tracked offers from a JSON list and exit.",
    )
    parser.add_argument(
        "--health",
        action="store_true",
        default=False,
        help="Probe the session and one offer page, then exit.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        default=False,
        help="Echo per-offer outcomes to stderr, not only warnings.",
    )
    return parser


def _settings_from_args(args: argparse.Namespace) -> Settings:
    """Per-run settings with command-line overrides applied."""
    settings = Settings()
    if args.platform:
        settings.PLATFORM_LABEL = args.platform
    if args.concurrency is not None:
        settings.CONCURRENCY = max(1, args.concurrency)
    if args.batch_size is not None:
        settings.BATCH_SIZE = max(1, args.batch_size)
    if args.gate_threshold is not None:
        settings.GATE_THRESHOLD = max(0, args.gate_threshold)
    return settings


def _run_refresh(args: argparse.Namespace, settings: Settings) -> None:
    """Run one refresh batch and exit with its status code."""
    from src.cli.runner import cli_refresh

    exit_code = asyncio.run(
        cli_refresh(
            settings=settings,
            output_format=args.output_format,
            save=args.save,
        )
    )
    sys.exit(exit_code)


def _run_import_offers(path: str, settings: Settings) -> None:
    """Load tracked offers into the catalog."""
    from src.cli.runner import run_import_offers

    sys.exit(run_import_offers(Path(path), settings))


def _run_health_check(settings: Settings) -> None:
    """Run the session health probe."""
    from src.cli.runner import run_health_check

    sys.exit(run_health_check(settings))


def main() -> None:
    """Route to import, health probe or a refresh run."""
    parser = _build_parser()
    args = parser.parse_args()
    log_file = setup_logging(verbose=args.verbose)
    logger.info("price_refresh starting, log file: %s", log_file)
    settings = _settings_from_args(args)

    if args.import_offers:
        _run_import_offers(args.import_offers, settings)
    elif args.health:
        _run_health_check(settings)
    else:
        _run_refresh(args, settings)


if __name__ == "__main__":
    main()
