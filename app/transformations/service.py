"""Transformations service: submission, status reads, retry, feedback."""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime
from typing import Callable, List, Tuple

from app.core.exceptions import BadRequestException, ConflictException, NotFoundException
from app.core.storage import ArtifactError, ArtifactStore
from app.transformations.images import (
    InvalidImageError,
    decode_image_payload,
    resize_for_generation,
    to_data_url,
)
from app.transformations.models import (
    FeedbackEntry,
    FeedbackListResponse,
    FeedbackRequest,
    TransformationCreateRequest,
    TransformationOptions,
    TransformationRecord,
    TransformationStatus,
    failure_fields,
    utc_now,
)
from app.transformations.repository import TransformationRepository

logger = logging.getLogger(__name__)

OWNER_LIST_LIMIT = 20
FEEDBACK_LIST_LIMIT = 50


class TransformationService:
    def __init__(
        self,
        repository: TransformationRepository,
        artifacts: ArtifactStore,
        processing_timeout: float = 360,
        access_touch_interval: float = 300,
        max_dimension: int = 1024,
        jpeg_quality: int = 85,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._repository = repository
        self._artifacts = artifacts
        self._processing_timeout = float(processing_timeout)
        self._access_touch_interval = float(access_touch_interval)
        self._max_dimension = max_dimension
        self._jpeg_quality = jpeg_quality
        self._clock = clock

    async def create(self, request: TransformationCreateRequest) -> TransformationRecord:
        """Store the before image and create a record already in ``processing``."""
        try:
            mime_type, raw = decode_image_payload(request.image_base64)
            data, mime_type, _ = await asyncio.to_thread(
                resize_for_generation, raw, self._max_dimension, self._jpeg_quality
            )
        except InvalidImageError as e:
            raise BadRequestException(str(e))

        now = self._clock()
        job_id = str(uuid.uuid4())
        extension = "png" if mime_type == "image/png" else "jpg"
        before_ref = await self._artifacts.put(
            f"uploads/before-{job_id}-{int(now.timestamp() * 1000)}.{extension}", data, mime_type
        )

        record = TransformationRecord(
            id=job_id,
            status=TransformationStatus.PROCESSING,
            before_image=before_ref,
            original_image_payload=to_data_url(data, mime_type),
            created_at=now,
            started_at=now,
            updated_at=now,
            options=TransformationOptions(
                creativity_level=request.creativity_level,
                keep_items=request.keep_items,
                first_name=request.first_name,
                last_name=request.last_name,
                email=request.email,
                owner_id=request.owner_id,
            ),
        )
        await self._repository.save(record)
        logger.info(f"Created transformation {job_id}")
        return record

    def _is_stale(self, record: TransformationRecord, now: datetime) -> bool:
        return (
            record.status == TransformationStatus.PROCESSING
            and (now - record.started_at).total_seconds() > self._processing_timeout
        )

    async def _reap_if_stale(self, record: TransformationRecord, now: datetime) -> Tuple[TransformationRecord, bool]:
        """
        Fail ``record`` if it has been processing too long.

        The write only lands if the stored job is still the attempt we looked
        at; when it has moved on (completed, retried) the stored record wins.
        """
        if not self._is_stale(record, now):
            return record, False
        fields = failure_fields("Processing timed out", now)
        reaped = await self._repository.update(
            record.id,
            fields,
            {"status": TransformationStatus.PROCESSING, "started_at": record.started_at},
        )
        if not reaped:
            logger.info(f"Transformation {record.id} changed before it could be reaped; keeping stored state")
            return await self._repository.get(record.id) or record, False
        logger.warning(f"Marked stale transformation {record.id} as failed (started {record.started_at.isoformat()})")
        record.apply(fields)
        return record, True

    async def _reap_all(self, records: List[TransformationRecord]) -> List[TransformationRecord]:
        now = self._clock()
        return [(await self._reap_if_stale(record, now))[0] for record in records]

    async def get_status(self, job_id: str, expedite: bool = False) -> TransformationRecord:
        """
        Read a record, failing it first if it has been processing too long.

        Completed records get ``last_accessed_at`` refreshed at most once per
        touch interval; ``expedite`` skips that write.
        """
        record = await self._repository.get(job_id)
        if record is None:
            raise NotFoundException("Transformation not found")

        now = self._clock()
        record, _ = await self._reap_if_stale(record, now)

        if not expedite and record.status == TransformationStatus.COMPLETED:
            last = record.last_accessed_at
            if last is None or (now - last).total_seconds() > self._access_touch_interval:
                try:
                    if await self._repository.update(
                        job_id, {"last_accessed_at": now}, {"status": TransformationStatus.COMPLETED}
                    ):
                        record.last_accessed_at = now
                except Exception as e:
                    logger.error(f"Failed to update last_accessed_at for {job_id}: {e}")

        return record

    async def list_all(self) -> List[TransformationRecord]:
        return await self._reap_all(await self._repository.list_all())

    async def list_mine(self, owner_id: str, limit: int = OWNER_LIST_LIMIT) -> List[TransformationRecord]:
        if not owner_id or not owner_id.strip():
            raise BadRequestException("ownerId is required")
        return await self._reap_all(await self._repository.list_for_owner(owner_id.strip(), limit=limit))

    async def reap_stale(self) -> int:
        """Fail every stale processing record. Used by the optional sweeper."""
        now = self._clock()
        reaped = 0
        for record in await self._repository.list_all():
            _, was_reaped = await self._reap_if_stale(record, now)
            if was_reaped:
                reaped += 1
        return reaped

    async def retry(self, job_id: str) -> TransformationRecord:
        """Reset a terminal job to a fresh ``processing`` state from its before image."""
        record = await self._repository.get(job_id)
        if record is None:
            raise NotFoundException("Transformation not found")
        if not record.is_terminal:
            raise ConflictException("Only completed or failed transformations can be retried.")
        if not record.before_image:
            raise BadRequestException("Cannot retry - original image not available")

        try:
            data = await self._artifacts.get(record.before_image)
        except ArtifactError as e:
            logger.error(f"Failed to retrieve original image for retry of {job_id}: {e}")
            raise BadRequestException("Cannot retry - failed to retrieve original image")
        if not data:
            raise BadRequestException("Cannot retry - original image is empty")

        mime_type = "image/png" if record.before_image.endswith(".png") else "image/jpeg"
        now = self._clock()
        fields = {
            "original_image_payload": to_data_url(data, mime_type),
            "status": TransformationStatus.PROCESSING,
            "claimed_at": None,
            "plan": "",
            "after_image": None,
            "audio": None,
            "error": None,
            "started_at": now,
            "updated_at": now,
        }
        if not await self._repository.update(job_id, fields, {"status": record.status}):
            raise ConflictException("Transformation changed while preparing the retry; try again.")
        record.apply(fields)
        logger.info(f"Transformation {job_id} reset for retry")
        return record

    async def submit_feedback(self, request: FeedbackRequest) -> TransformationRecord:
        record = await self._repository.get(request.transformation_id)
        if record is None:
            raise NotFoundException("Transformation not found")
        now = self._clock()
        fields = {
            "feedback_helpful": request.helpful,
            "feedback_comment": request.comment or "",
            "feedback_submitted_at": now,
            "updated_at": now,
        }
        if not await self._repository.update(record.id, fields):
            raise NotFoundException("Transformation not found")
        record.apply(fields)
        logger.info(f"Saved feedback for transformation {record.id}")
        return record

    async def list_feedback(self, limit: int = FEEDBACK_LIST_LIMIT) -> FeedbackListResponse:
        records = await self._repository.list_feedback(limit=limit)
        entries = [
            FeedbackEntry(
                transformation_id=record.id,
                helpful=record.feedback_helpful,
                comment=record.feedback_comment or "",
                created_at=record.feedback_submitted_at,
            )
            for record in records
        ]
        return FeedbackListResponse(feedback=entries, total=len(entries))

    async def record_email_open(self, job_id: str) -> None:
        """Count an open of the completion email. Never raises; the pixel is served regardless."""
        try:
            if await self._repository.record_email_open(job_id, self._clock()):
                logger.info(f"Email opened for transformation {job_id}")
            else:
                logger.warning(f"Email open tracked for unknown transformation {job_id}")
        except Exception as e:
            logger.error(f"Failed to record email open for {job_id}: {e}")
