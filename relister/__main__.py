"""Relister process entry-point.

Usage:
    python -m relister [--log-level LEVEL] [--log-format FORMAT] [--max-iterations N]

Runs the reconciliation loop until ``SIGTERM`` (or the iteration limit).
A normal end logs ``Worker ended.``; an unhandled error logs the failure
with its name, message and stack trace and exits with status 1.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from relister.core import configure_logging, events
from relister.core.exceptions import ConfigError
from relister.core.settings import load_settings


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="relister",
        description="Keep marketplace listings in sync with their origin items.",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        metavar="LEVEL",
        help="Override LOG_LEVEL env var (DEBUG|INFO|WARNING|ERROR).",
    )
    parser.add_argument(
        "--log-format",
        default=None,
        metavar="FORMAT",
        help="Override LOG_FORMAT env var (text|json).",
    )
    parser.add_argument(
        "--max-iterations",
        type=int,
        default=None,
        metavar="N",
        help="Stop after N loop iterations (default: run until SIGTERM).",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entry-point registered in ``pyproject.toml``."""
    args = _build_parser().parse_args(argv)

    try:
        configure_logging(level=args.log_level, fmt=args.log_format)
    except ValueError as exc:
        print(f"relister: configuration error: {exc}", file=sys.stderr)  # noqa: T201
        sys.exit(1)

    logger = logging.getLogger(__name__)

    try:
        settings = load_settings()
    except ConfigError as exc:
        logger.critical("Configuration error: %s", exc)
        sys.exit(1)

    # Values from .env apply when the flags are absent.
    configure_logging(
        level=args.log_level or settings.log_level,
        fmt=args.log_format or settings.log_format,
        force=True,
    )

    # Lazy import keeps --help fast.
    from relister.orchestrator.runner import run_worker  # noqa: PLC0415

    try:
        stats = asyncio.run(run_worker(settings, max_iterations=args.max_iterations))
    except KeyboardInterrupt:
        logger.info("Interrupted; exiting.")
        sys.exit(0)
    except Exception as exc:  # noqa: BLE001
        logger.critical(
            "Worker crashed.",
            exc_info=True,
            extra={
                "event": events.WORKER_CRASHED,
                "error_name": type(exc).__name__,
                "error_message": str(exc),
            },
        )
        sys.exit(1)

    logger.info(
        "Worker ended. %s",
        stats.format_summary(),
        extra={"event": events.WORKER_ENDED},
    )


if __name__ == "__main__":
    main()
