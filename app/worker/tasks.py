"""Celery tasks (sync wrappers around the async pipeline)."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict

from app.worker.celery_app import celery_app

logger = logging.getLogger(__name__)


def _run_async(coro):
    """Run async function in sync Celery task."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


async def _with_database(fn):
    """Connect, run ``fn()`` and disconnect inside one event loop."""
    from app.core.config import get_settings
    from app.core.database import Database

    uses_mongo = (get_settings().JOB_STORE_BACKEND or "").strip().lower() == "mongo"
    if uses_mongo:
        await Database.connect()
    try:
        return await fn()
    finally:
        if uses_mongo:
            await Database.disconnect()


@celery_app.task(name="app.worker.tasks.process_transformation", acks_late=True)
def process_transformation(job_id: str) -> Dict[str, Any]:
    """
    Run the pipeline for one job.

    Only the job id travels through SQS; inputs are read from the job record.
    Redelivery is harmless: the claim makes a second run a no-op.
    """
    from app.core.exceptions import GenerationError
    from app.transformations.dependencies import build_pipeline, build_settings_provider
    from app.core.storage import create_artifact_store
    from app.transformations.repository import create_transformation_repository

    logger.info(f"Processing transformation {job_id} on worker")

    async def run():
        pipeline = build_pipeline(
            create_transformation_repository(),
            create_artifact_store(),
            build_settings_provider(),
        )
        return await pipeline.process(job_id)

    try:
        result = _run_async(_with_database(run))
    except GenerationError as e:
        # The record is already marked failed; redelivering would not help.
        logger.error(f"Transformation {job_id} failed on worker: {e.detail}")
        return {"id": job_id, "status": "failed", "error": e.detail}

    return result.model_dump(mode="json", exclude_none=True)


@celery_app.task(name="app.worker.tasks.reap_stale_transformations", acks_late=True)
def reap_stale_transformations() -> Dict[str, Any]:
    """Fail every job stuck in processing past the timeout."""
    from app.core.storage import create_artifact_store
    from app.transformations.dependencies import build_transformation_service
    from app.transformations.repository import create_transformation_repository

    async def run():
        service = build_transformation_service(create_transformation_repository(), create_artifact_store())
        return await service.reap_stale()

    try:
        reaped = _run_async(_with_database(run))
    except Exception as e:
        logger.error(f"Failed to reap stale transformations: {e}")
        raise

    if reaped:
        logger.info(f"Reaped {reaped} stale transformation(s)")
    return {"reaped": reaped}
