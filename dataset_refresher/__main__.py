"""
Entry point for the dataset refresher.

Without flags the scheduler runs forever; `--once` and `--force` run a
single cycle and exit non-zero if any part of it failed.
"""

import argparse
import asyncio
import logging
import sys
from typing import Optional

from .application.exceptions import RefresherError
from .infrastructure.containers import Container

logger = logging.getLogger(__name__)


def setup_logging(
    level: str = "INFO",
    fmt: Optional[str] = None,
    datefmt: Optional[str] = None,
):
    """Applies timestamped logging configuration."""
    logging.basicConfig(
        level=level,
        format=fmt or "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt=datefmt or "%Y-%m-%d %H:%M:%S",
        force=True,
    )


async def run_application(args: argparse.Namespace) -> int:
    """Wires and runs the application using the DI container."""

    container = Container()
    container.cli_args.from_dict(vars(args))

    try:
        settings = container.config()
        setup_logging(
            level=settings.logging.level,
            fmt=settings.logging.get("format"),
            datefmt=settings.logging.get("datefmt"),
        )
        orchestrator = container.orchestrator()
    except RefresherError as e:
        logger.error(f"Startup failed: {e}")
        return 1

    try:
        if args.force or args.once:
            report = await orchestrator.run_cycle(force=args.force)
            return 0 if report.succeeded else 1
        await container.scheduler().run_forever()
    except RefresherError as e:
        logger.error(f"An application error occurred: {e}")
        return 1
    finally:
        await orchestrator.close()
        await container.http_client().aclose()
    return 0


def main():
    parser = argparse.ArgumentParser(description="Dataset Refresher")

    parser.add_argument(
        "--force",
        action="store_true",
        help="Download every artifact regardless of age, run one cycle, exit.",
    )

    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single refresh cycle instead of the periodic scheduler.",
    )

    parser.add_argument(
        "--force-check",
        action="store_true",
        help="Re-verify archives even if they were verified before.",
    )

    cli_args = parser.parse_args()
    setup_logging()

    sys.exit(asyncio.run(run_application(cli_args)))


if __name__ == "__main__":
    main()
