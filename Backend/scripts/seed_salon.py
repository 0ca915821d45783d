#!/usr/bin/env python3
"""
Create tables and seed the salon's reference data.

Inserts the service menu, the stylists and the launch promotions into
tables that are still empty. Existing rows are never touched.

Usage:
    python Backend/scripts/seed_salon.py

    # Report what would be inserted without writing:
    python Backend/scripts/seed_salon.py --dry-run
"""

import argparse
import asyncio
import logging
import sys

from dotenv import load_dotenv

load_dotenv()

from lumina.availability import local_today
from lumina.core.db import AsyncSessionLocal, Base, engine
from lumina.seed import seed_initial_data

import lumina.models  # noqa: F401  registers tables on Base.metadata

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


async def run(dry_run: bool) -> dict:
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        async with AsyncSessionLocal() as session:
            return await seed_initial_data(session, local_today(), commit=not dry_run)
    finally:
        await engine.dispose()


def main():
    parser = argparse.ArgumentParser(description="Seed Lumina reference data")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Roll back instead of committing",
    )
    args = parser.parse_args()

    try:
        inserted = asyncio.run(run(args.dry_run))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(130)

    verb = "Would insert" if args.dry_run else "Inserted"
    for table, count in inserted.items():
        logger.info(f"{verb} {count} {table}")


if __name__ == "__main__":
    main()
