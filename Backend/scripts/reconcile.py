#!/usr/bin/env python3
"""
Run the appointment reconciler once.

Marks no-shows as absence, closes checked-in appointments whose end time
has passed, and sends the 24h reminders. Safe to run as often as you like;
reminders are deduplicated.

Usage:
    python Backend/scripts/reconcile.py

    # Catch up as if it were a given salon-local time:
    python Backend/scripts/reconcile.py --at 2026-03-02T10:00:00

Requirements:
    - Database connection (DATABASE_URL env var)
"""

import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime

from dotenv import load_dotenv

load_dotenv()

from lumina.availability import get_local_now, salon_tz
from lumina.core.db import AsyncSessionLocal, engine
from lumina.reconciler import run_reconciliation

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


def parse_at(value: str) -> datetime:
    moment = datetime.fromisoformat(value)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=salon_tz())
    return moment


async def run(now: datetime) -> dict:
    try:
        async with AsyncSessionLocal() as session:
            report = await run_reconciliation(session, now)
    finally:
        await engine.dispose()
    return report.to_dict()


def main():
    parser = argparse.ArgumentParser(description="Run the appointment reconciler once")
    parser.add_argument(
        "--at",
        type=parse_at,
        default=None,
        help="Salon-local ISO datetime to reconcile as of (default: now)",
    )
    args = parser.parse_args()

    now = args.at or get_local_now()
    logger.info(f"Reconciling as of {now.isoformat()}")
    try:
        report = asyncio.run(run(now))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(130)

    print(json.dumps(report, indent=2))
    if report["failed_steps"]:
        sys.exit(1)


if __name__ == "__main__":
    main()
