#!/usr/bin/env python3
"""
Fail transformations stuck in ``processing`` past the processing timeout.

Status reads already do this lazily; run this from cron (or by hand) to clean
up jobs that nobody is polling any more.

Usage:
    # Report what would be failed
    python -m scripts.reap_stale --dry-run

    # Fail them
    python -m scripts.reap_stale

Exit codes:
    0 - Success
    2 - Complete failure or invalid configuration
"""

import argparse
import asyncio
import logging
import os
import sys

# Make app package importable when run from scripts/ or repo root
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.core.config import get_settings
from app.core.database import Database
from app.core.storage import create_artifact_store
from app.transformations.dependencies import build_transformation_service
from app.transformations.models import TransformationStatus, utc_now
from app.transformations.repository import MongoTransformationRepository


# Configure logging for cron-friendly output
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


async def list_stale(repository: MongoTransformationRepository, timeout_seconds: float) -> list:
    now = utc_now()
    return [
        record
        for record in await repository.list_all()
        if record.status == TransformationStatus.PROCESSING
        and (now - record.started_at).total_seconds() > timeout_seconds
    ]


async def main():
    parser = argparse.ArgumentParser(
        description="Fail stale transformations",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Only list stale transformations",
    )
    args = parser.parse_args()

    settings = get_settings()
    if (settings.JOB_STORE_BACKEND or "").strip().lower() != "mongo":
        logger.error("JOB_STORE_BACKEND must be 'mongo' to reap from a script")
        sys.exit(2)

    await Database.connect()
    repository = MongoTransformationRepository()
    start_time = utc_now()
    logger.info(f"Stale reap started at {start_time.isoformat()}")

    try:
        if args.dry_run:
            stale = await list_stale(repository, settings.PROCESSING_TIMEOUT_SECONDS)
            for record in stale:
                logger.info(f"Stale: {record.id} (started {record.started_at.isoformat()})")
            logger.info(f"{len(stale)} stale transformation(s) found")
            sys.exit(0)

        service = build_transformation_service(repository, create_artifact_store())
        try:
            reaped = await service.reap_stale()
        except Exception as e:
            logger.error(f"Reap failed: {e}")
            sys.exit(2)

        elapsed = (utc_now() - start_time).total_seconds()
        logger.info(f"Reap complete: {reaped} failed, elapsed {elapsed:.1f}s")
        sys.exit(0)

    finally:
        await Database.disconnect()


if __name__ == "__main__":
    asyncio.run(main())
