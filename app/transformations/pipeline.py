"""
Transformation pipeline coordinator.

Turns a submitted photo into a plan, an "after" image and (best-effort) a
narration, exactly once in effect. ``process`` is safe to call redundantly:
terminal jobs are no-ops and a live claim turns concurrent callers away.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from app.core.exceptions import GenerationError, NotFoundException
from app.core.storage import ArtifactStore
from app.generation.base import ImageEditor, PlanGenerator, SpeechSynthesizer
from app.generation.prompts import personalized_narration
from app.runtime_settings.models import AppSettings
from app.runtime_settings.service import AppSettingsProvider
from app.transformations.models import (
    ProcessResult,
    TransformationRecord,
    TransformationStatus,
    failure_fields,
    utc_now,
)
from app.transformations.notifier import CompletionNotifier
from app.transformations.repository import TransformationRepository

logger = logging.getLogger(__name__)


class _ClaimLost(Exception):
    """The job left our claim (reaped, retried or re-claimed) while we worked on it."""


def _owned_by(record: TransformationRecord) -> Dict[str, Any]:
    return {"status": TransformationStatus.PROCESSING, "claimed_at": record.claimed_at}


def _terminal_result(record: TransformationRecord) -> ProcessResult:
    if record.status == TransformationStatus.COMPLETED:
        return ProcessResult(
            id=record.id,
            status=record.status,
            after_image=record.after_image,
            plan=record.plan,
            message="Already processed",
        )
    return ProcessResult(
        id=record.id,
        status=record.status,
        plan=record.plan or None,
        message=record.error or "Processing previously failed",
    )


class PipelineCoordinator:
    def __init__(
        self,
        repository: TransformationRepository,
        artifacts: ArtifactStore,
        plan_generator: PlanGenerator,
        image_editor: ImageEditor,
        speech_synthesizer: SpeechSynthesizer,
        settings_provider: AppSettingsProvider,
        notifier: Optional[CompletionNotifier] = None,
        claim_timeout: float = 300,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._repository = repository
        self._artifacts = artifacts
        self._plan_generator = plan_generator
        self._image_editor = image_editor
        self._speech_synthesizer = speech_synthesizer
        self._settings_provider = settings_provider
        self._notifier = notifier
        self._claim_timeout = float(claim_timeout)
        self._clock = clock

    async def process(self, job_id: str) -> ProcessResult:
        record = await self._repository.get(job_id)
        if record is None:
            raise NotFoundException("Transformation not found")
        if record.is_terminal:
            return _terminal_result(record)

        claimed = await self._repository.claim(job_id, self._clock(), self._claim_timeout)
        if claimed is None:
            current = await self._repository.get(job_id) or record
            if current.is_terminal:
                return _terminal_result(current)
            logger.info(f"Transformation {job_id} is already being processed; returning current status")
            return ProcessResult(
                id=job_id,
                status=TransformationStatus.PROCESSING,
                plan=current.plan or None,
                message="Processing is already in progress",
            )

        record = claimed
        if not record.original_image_payload:
            # A concurrent run consumed the payload (or it was never stored).
            logger.warning(f"Transformation {job_id} has no working payload; assuming another run owns it")
            return ProcessResult(
                id=job_id,
                status=TransformationStatus.PROCESSING,
                plan=record.plan or None,
                message="Transformation is being processed",
            )

        logger.info(f"Claimed transformation {job_id} ({len(record.original_image_payload)} payload chars)")
        try:
            record = await self._generate(record)
        except _ClaimLost:
            current = await self._repository.get(job_id) or record
            logger.warning(
                f"Transformation {job_id} moved to {current.status.value} while it was being processed; "
                f"discarding this run's result"
            )
            if current.is_terminal:
                return _terminal_result(current)
            return ProcessResult(
                id=job_id,
                status=current.status,
                plan=current.plan or None,
                message="Processing is already in progress",
            )
        except Exception as e:
            await self._mark_failed(job_id, record, e)
            if isinstance(e, GenerationError):
                raise
            raise GenerationError(str(e) or type(e).__name__) from e

        if self._notifier is not None:
            await self._notify(record)

        return ProcessResult(
            id=record.id,
            status=record.status,
            after_image=record.after_image,
            plan=record.plan,
        )

    async def _generate(self, record: TransformationRecord) -> TransformationRecord:
        app_settings = await self._settings_provider.get()
        payload = record.original_image_payload

        # Plan first; both the edit and the narration consume it.
        if record.plan:
            logger.info(f"Reusing existing plan for transformation {record.id}")
            plan = record.plan
        else:
            plan = (await self._plan_generator.analyze(payload, record.options, app_settings) or "").strip()
            if not plan:
                raise GenerationError("Plan generation returned no text")
            # Persist now so pollers can show the plan while the edit runs.
            await self._write_owned(record, {"plan": plan, "updated_at": self._clock()})
            logger.info(f"Generated plan for transformation {record.id} ({len(plan)} chars)")

        narration = personalized_narration(plan, record.options)
        image_result, audio_bytes = await asyncio.gather(
            self._image_editor.edit(payload, plan, record.options, app_settings),
            self._synthesize_best_effort(record.id, narration, app_settings),
            return_exceptions=True,
        )
        if isinstance(image_result, BaseException):
            raise image_result
        if not image_result:
            raise GenerationError("Image edit returned no image")

        stamp = int(self._clock().timestamp() * 1000)
        after_ref = await self._artifacts.put(
            f"uploads/after-{record.id}-{stamp}.png", image_result, "image/png"
        )
        audio_ref = None
        if isinstance(audio_bytes, (bytes, bytearray)) and audio_bytes:
            try:
                audio_ref = await self._artifacts.put(
                    f"uploads/audio-{record.id}-{stamp}.mp3", bytes(audio_bytes), "audio/mpeg"
                )
            except Exception:
                logger.exception(f"Failed to store narration for transformation {record.id}")

        await self._write_owned(
            record,
            {
                "after_image": after_ref,
                "audio": audio_ref,
                "status": TransformationStatus.COMPLETED,
                "original_image_payload": None,
                "error": None,
                "updated_at": self._clock(),
            },
        )
        logger.info(f"Transformation {record.id} completed")
        return record

    async def _write_owned(self, record: TransformationRecord, fields: Dict[str, Any]) -> None:
        """Write ``fields`` only while the job is still processing under our claim."""
        if not await self._repository.update(record.id, fields, _owned_by(record)):
            raise _ClaimLost(record.id)
        record.apply(fields)

    async def _synthesize_best_effort(
        self, job_id: str, text: str, app_settings: AppSettings
    ) -> Optional[bytes]:
        try:
            return await self._speech_synthesizer.synthesize(text, app_settings.models.tts_voice, app_settings)
        except Exception as e:
            logger.warning(f"Speech synthesis failed for transformation {job_id}; continuing without audio: {e}")
            return None

    async def _mark_failed(self, job_id: str, record: TransformationRecord, error: Exception) -> None:
        message = getattr(error, "detail", None) or str(error) or type(error).__name__
        logger.error(f"Transformation {job_id} failed: {message}")
        try:
            written = await self._repository.update(
                job_id, failure_fields(message, self._clock()), _owned_by(record)
            )
            if not written:
                logger.warning(f"Transformation {job_id} left our claim before the failure could be recorded")
        except Exception:
            logger.exception(f"Failed to save failed status for transformation {job_id}")

    async def _notify(self, record: TransformationRecord) -> None:
        try:
            await self._notifier.notify(record)
        except Exception:
            logger.exception(f"Notifier raised for transformation {record.id}")
