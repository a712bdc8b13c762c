#!/usr/bin/env python3
"""Command-line interface for the status poller.

Runs the poll path outside the web process, for example from cron, so
intents whose callback never arrived are still settled.

Usage:
    python -m payhero_sdk.reconciliation.cli poll --grace-seconds 120
    python -m payhero_sdk.reconciliation.cli poll --format text --output poll.txt
    python -m payhero_sdk.reconciliation.cli check GPY12345678ABC123
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Optional

from ..config import PayHeroConfig, ConfigurationError
from ..connectors.base import ConnectorBase
from ..connectors.payhero_connector import PayHeroConnector
from ..database import (
    Base,
    create_async_engine,
    get_async_session_factory,
    get_database_url,
)
from .models import PollAction, PollRequest, ReconciliationStatus
from .poller import StatusPoller
from .report import ReportGenerator, REPORT_FORMATS

logger = logging.getLogger(__name__)


def build_connector() -> ConnectorBase:
    """Build the PayHero connector from environment variables.

    Raises:
        ConfigurationError: If credentials are missing or malformed.
    """
    return PayHeroConnector(PayHeroConfig.from_env())


async def run_poll_async(
    grace_seconds: Optional[int] = None,
    limit: int = 100,
    output_file: Optional[str] = None,
    output_format: str = "json",
    include_details: bool = True,
    connector: Optional[ConnectorBase] = None,
    database_url: Optional[str] = None,
) -> int:
    """Run one poll pass over stale pending intents.

    Returns:
        0 when every candidate was checked, 1 when some status checks failed,
        2 when the run itself failed.
    """
    if connector is None:
        config = PayHeroConfig.from_env()
        connector = PayHeroConnector(config)
        if grace_seconds is None:
            grace_seconds = config.poll_grace_seconds

    request = PollRequest(limit=limit) if grace_seconds is None else PollRequest(
        grace_seconds=grace_seconds, limit=limit
    )

    engine = create_async_engine(database_url=database_url or get_database_url())

    # Create tables if they don't exist
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = get_async_session_factory(engine)

    try:
        async with session_factory() as session:
            poller = StatusPoller(session, connector)
            report = await poller.poll_pending(request)

        output = ReportGenerator(report).render(output_format, include_details=include_details)
        if output_file:
            with open(output_file, "w") as f:
                f.write(output)
            logger.info(f"Report written to {output_file}")
        else:
            print(output)

        if report.status != ReconciliationStatus.COMPLETED:
            logger.error(f"Poll run failed: {report.error_message}")
            return 2
        if report.total_check_failed > 0:
            logger.warning(f"{report.total_check_failed} status checks failed")
            return 1
        return 0
    finally:
        await engine.dispose()


async def run_check_async(
    reference: str,
    connector: Optional[ConnectorBase] = None,
    database_url: Optional[str] = None,
) -> int:
    """Poll a single intent regardless of its age and print the outcome."""
    connector = connector or build_connector()
    engine = create_async_engine(database_url=database_url or get_database_url())

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = get_async_session_factory(engine)

    try:
        async with session_factory() as session:
            outcome = await StatusPoller(session, connector).poll_intent(reference)
            await session.commit()

        print(json.dumps(outcome.model_dump(mode="json"), indent=2))
        if outcome.action in (PollAction.NOT_FOUND, PollAction.CHECK_FAILED):
            return 1
        return 0
    finally:
        await engine.dispose()


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="payhero-poll",
        description="Settle pending M-Pesa payments by asking PayHero for their status.",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    poll_parser = subparsers.add_parser(
        "poll",
        help="Check all intents pending longer than the grace period",
    )
    poll_parser.add_argument(
        "--grace-seconds", "-g",
        type=int,
        default=None,
        help="Minimum age of a pending intent before it is polled (default: POLL_GRACE_SECONDS or 120)",
    )
    poll_parser.add_argument(
        "--limit", "-l",
        type=int,
        default=100,
        help="Maximum intents checked in one run (default: 100)",
    )
    poll_parser.add_argument(
        "--output", "-o",
        help="Output file path (default: stdout)",
    )
    poll_parser.add_argument(
        "--format", "-f",
        choices=REPORT_FORMATS,
        default="json",
        help="Output format (default: json)",
    )
    poll_parser.add_argument(
        "--summary-only",
        action="store_true",
        help="Only include summary statistics in JSON output",
    )

    check_parser = subparsers.add_parser(
        "check",
        help="Poll one intent by reference",
    )
    check_parser.add_argument("reference", help="Payment intent reference")

    return parser


def main(args: Optional[list] = None) -> int:
    """Main entry point for the CLI.

    Args:
        args: Optional list of command-line arguments (for testing).

    Returns:
        Exit code.
    """
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    parser = create_parser()
    parsed_args = parser.parse_args(args)

    if not parsed_args.command:
        parser.print_help()
        return 1

    if parsed_args.command == "poll" and parsed_args.grace_seconds is not None and parsed_args.grace_seconds < 0:
        logger.error("--grace-seconds must not be negative")
        return 1

    try:
        if parsed_args.command == "poll":
            return asyncio.run(run_poll_async(
                grace_seconds=parsed_args.grace_seconds,
                limit=parsed_args.limit,
                output_file=parsed_args.output,
                output_format=parsed_args.format,
                include_details=not parsed_args.summary_only,
            ))
        if parsed_args.command == "check":
            return asyncio.run(run_check_async(parsed_args.reference))
    except ConfigurationError as e:
        logger.error(str(e))
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
