"""Service wiring for the transformation routes and worker tasks.

Builders return new instances; the ``get_*`` getters are cached so the API
process shares one instance. Tests replace the getters through
``app.dependency_overrides``.
"""

from __future__ import annotations

from functools import lru_cache

from app.core.config import get_settings
from app.core.storage import ArtifactStore, create_artifact_store
from app.generation.openai_service import (
    OpenAIImageEditor,
    OpenAIPlanGenerator,
    OpenAISpeechSynthesizer,
)
from app.runtime_settings.service import (
    AppSettingsProvider,
    InMemorySettingsStore,
    MongoSettingsStore,
)
from app.transformations.notifier import CompletionNotifier
from app.transformations.pipeline import PipelineCoordinator
from app.transformations.repository import (
    TransformationRepository,
    create_transformation_repository,
)
from app.transformations.service import TransformationService


def build_transformation_service(repository: TransformationRepository, artifacts: ArtifactStore) -> TransformationService:
    settings = get_settings()
    return TransformationService(
        repository=repository,
        artifacts=artifacts,
        processing_timeout=settings.PROCESSING_TIMEOUT_SECONDS,
        access_touch_interval=settings.ACCESS_TOUCH_INTERVAL_SECONDS,
        max_dimension=settings.IMAGE_MAX_DIMENSION,
        jpeg_quality=settings.IMAGE_JPEG_QUALITY,
    )


def build_pipeline(
    repository: TransformationRepository,
    artifacts: ArtifactStore,
    settings_provider: AppSettingsProvider,
) -> PipelineCoordinator:
    """A coordinator with fresh OpenAI clients (the worker builds one per task)."""
    settings = get_settings()
    return PipelineCoordinator(
        repository=repository,
        artifacts=artifacts,
        plan_generator=OpenAIPlanGenerator(),
        image_editor=OpenAIImageEditor(),
        speech_synthesizer=OpenAISpeechSynthesizer(),
        settings_provider=settings_provider,
        notifier=CompletionNotifier(),
        claim_timeout=settings.CLAIM_TIMEOUT_SECONDS,
    )


def build_settings_provider() -> AppSettingsProvider:
    settings = get_settings()
    if (settings.JOB_STORE_BACKEND or "").strip().lower() == "memory":
        store = InMemorySettingsStore()
    else:
        store = MongoSettingsStore()
    return AppSettingsProvider(store, ttl_seconds=settings.SETTINGS_CACHE_TTL_SECONDS)


@lru_cache
def get_transformation_repository() -> TransformationRepository:
    return create_transformation_repository()


@lru_cache
def get_artifact_store() -> ArtifactStore:
    return create_artifact_store()


@lru_cache
def get_settings_provider() -> AppSettingsProvider:
    return build_settings_provider()


@lru_cache
def get_transformation_service() -> TransformationService:
    return build_transformation_service(get_transformation_repository(), get_artifact_store())


@lru_cache
def get_pipeline() -> PipelineCoordinator:
    return build_pipeline(get_transformation_repository(), get_artifact_store(), get_settings_provider())


@lru_cache
def get_speech_synthesizer() -> OpenAISpeechSynthesizer:
    return OpenAISpeechSynthesizer()
