"""Transformations API endpoints."""

from __future__ import annotations

import base64
import logging
from typing import List

from fastapi import APIRouter, Depends, Path, Query, Response, status

from app.admin.dependencies import require_admin_api_key
from app.core.config import get_settings
from app.core.exceptions import BadRequestException
from app.generation.base import SpeechSynthesizer
from app.runtime_settings.service import AppSettingsProvider
from app.transformations.dependencies import (
    get_pipeline,
    get_settings_provider,
    get_speech_synthesizer,
    get_transformation_service,
)
from app.transformations.models import (
    FeedbackListResponse,
    FeedbackRequest,
    FeedbackResponse,
    MyTransformationsResponse,
    ProcessResult,
    RetryResponse,
    SpeechRequest,
    TransformationCreateRequest,
    TransformationCreateResponse,
    TransformationStatus,
    TransformationView,
)
from app.transformations.pipeline import PipelineCoordinator
from app.transformations.service import TransformationService


router = APIRouter(tags=["Transformations"])
settings = get_settings()
logger = logging.getLogger(__name__)

PROCESSING_CACHE_CONTROL = "no-store, no-cache, must-revalidate"
TERMINAL_CACHE_CONTROL = "private, max-age=0, stale-while-revalidate=60"

TRACKING_PIXEL = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)
TRACKING_PIXEL_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, proxy-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


def _dispatch_to_worker(job_id: str) -> bool:
    """Enqueue ``process`` on the Celery worker. Returns False if that is not possible."""
    try:
        from app.worker.celery_app import celery_app, DEFAULT_QUEUE

        celery_app.send_task(
            "app.worker.tasks.process_transformation", args=[job_id], queue=DEFAULT_QUEUE
        )
        return True
    except Exception as e:
        # The client's POST /process trigger still starts the job.
        logger.error(f"Failed to enqueue transformation {job_id}: {type(e).__name__}: {e}")
        return False


@router.post(
    "/transformations",
    response_model=TransformationCreateResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_transformation(
    body: TransformationCreateRequest,
    service: TransformationService = Depends(get_transformation_service),
):
    """
    Submit a room photo.

    The record is created in ``processing``. Work starts when the client calls
    ``POST /process/{id}`` (or immediately on the worker when dispatch is on).
    """
    record = await service.create(body)
    if settings.DISPATCH_TO_WORKER:
        _dispatch_to_worker(record.id)
    return TransformationCreateResponse(id=record.id, status=record.status, before_image=record.before_image)


@router.get("/transformations", response_model=List[TransformationView])
async def list_transformations(
    response: Response,
    _admin: str = Depends(require_admin_api_key),
    service: TransformationService = Depends(get_transformation_service),
):
    """All transformations, newest first (admin)."""
    records = await service.list_all()
    response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, proxy-revalidate"
    return [record.to_view() for record in records]


@router.get("/transformations/mine", response_model=MyTransformationsResponse)
async def list_my_transformations(
    owner_id: str = Query(default="", alias="ownerId"),
    service: TransformationService = Depends(get_transformation_service),
):
    records = await service.list_mine(owner_id)
    return MyTransformationsResponse(transformations=[record.to_view() for record in records])


@router.get("/transformations/{job_id}", response_model=TransformationView)
async def get_transformation(
    response: Response,
    job_id: str = Path(..., description="Transformation ID"),
    expedite: bool = Query(default=False),
    service: TransformationService = Depends(get_transformation_service),
):
    record = await service.get_status(job_id, expedite=expedite)
    response.headers["Cache-Control"] = (
        PROCESSING_CACHE_CONTROL if record.status == TransformationStatus.PROCESSING else TERMINAL_CACHE_CONTROL
    )
    return record.to_view()


@router.post("/process/{job_id}", response_model=ProcessResult, response_model_exclude_none=True)
async def process_transformation(
    job_id: str = Path(..., description="Transformation ID"),
    pipeline: PipelineCoordinator = Depends(get_pipeline),
):
    """Start (or no-op) the pipeline for a job. Safe to call repeatedly."""
    return await pipeline.process(job_id)


@router.post("/retry/{job_id}", response_model=RetryResponse)
async def retry_transformation(
    job_id: str = Path(..., description="Transformation ID"),
    service: TransformationService = Depends(get_transformation_service),
):
    record = await service.retry(job_id)
    if settings.DISPATCH_TO_WORKER:
        _dispatch_to_worker(record.id)
    return RetryResponse(id=record.id, status=record.status, message="Transformation queued for retry")


@router.post("/feedback", response_model=FeedbackResponse)
async def submit_feedback(
    body: FeedbackRequest,
    service: TransformationService = Depends(get_transformation_service),
):
    record = await service.submit_feedback(body)
    return FeedbackResponse(success=True, id=record.id)


@router.get("/feedback", response_model=FeedbackListResponse)
async def list_feedback(
    limit: int = Query(default=50, ge=1, le=500),
    _admin: str = Depends(require_admin_api_key),
    service: TransformationService = Depends(get_transformation_service),
):
    """Submitted feedback, most recent first (admin)."""
    return await service.list_feedback(limit=limit)


@router.get("/track-email/{job_id}", include_in_schema=False)
async def track_email_open(
    job_id: str = Path(..., description="Transformation ID"),
    service: TransformationService = Depends(get_transformation_service),
):
    """1x1 PNG embedded in the completion email; each fetch counts as an open."""
    await service.record_email_open(job_id)
    return Response(content=TRACKING_PIXEL, media_type="image/png", headers=TRACKING_PIXEL_HEADERS)


@router.post("/tts", response_class=Response)
async def text_to_speech(
    body: SpeechRequest,
    synthesizer: SpeechSynthesizer = Depends(get_speech_synthesizer),
    settings_provider: AppSettingsProvider = Depends(get_settings_provider),
):
    """Narrate arbitrary text with the configured voice; returns mp3 audio."""
    text = (body.text or "").strip()
    if not text:
        raise BadRequestException("No text provided")
    app_settings = await settings_provider.get()
    audio = await synthesizer.synthesize(text, app_settings.models.tts_voice, app_settings)
    return Response(content=audio, media_type="audio/mpeg")
