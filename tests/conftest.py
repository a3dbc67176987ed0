import asyncio
import os
import tempfile

# Settings are read once and cached; point everything at local, in-process backends first.
_MEDIA_DIR = tempfile.mkdtemp(prefix="declutter-media-")
os.environ.setdefault("JOB_STORE_BACKEND", "memory")
os.environ.setdefault("STORAGE_BACKEND", "local")
os.environ.setdefault("LOCAL_STORAGE_DIR", _MEDIA_DIR)
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")
os.environ.setdefault("OPENAI_API_KEY", "")

import pytest

from app.core.storage import LocalArtifactStore
from app.runtime_settings.service import AppSettingsProvider, InMemorySettingsStore
from app.transformations.images import to_data_url
from app.transformations.models import TransformationOptions, TransformationRecord
from app.transformations.pipeline import PipelineCoordinator
from app.transformations.repository import InMemoryTransformationRepository
from app.transformations.service import TransformationService

from tests.fakes import (
    FakeClock,
    FakeImageEditor,
    FakeNotifier,
    FakePlanGenerator,
    FakeSpeechSynthesizer,
    make_jpeg,
)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def repository():
    return InMemoryTransformationRepository()


@pytest.fixture
def artifacts(tmp_path):
    return LocalArtifactStore(root=str(tmp_path / "media"), url_prefix="/media")


@pytest.fixture
def settings_provider():
    return AppSettingsProvider(InMemorySettingsStore(), ttl_seconds=30)


@pytest.fixture
def plan_generator():
    return FakePlanGenerator()


@pytest.fixture
def image_editor():
    return FakeImageEditor()


@pytest.fixture
def speech_synthesizer():
    return FakeSpeechSynthesizer()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def pipeline(repository, artifacts, plan_generator, image_editor, speech_synthesizer, settings_provider, notifier, clock):
    return PipelineCoordinator(
        repository=repository,
        artifacts=artifacts,
        plan_generator=plan_generator,
        image_editor=image_editor,
        speech_synthesizer=speech_synthesizer,
        settings_provider=settings_provider,
        notifier=notifier,
        claim_timeout=300,
        clock=clock,
    )


@pytest.fixture
def service(repository, artifacts, clock):
    return TransformationService(
        repository=repository,
        artifacts=artifacts,
        processing_timeout=360,
        access_touch_interval=300,
        clock=clock,
    )


@pytest.fixture
def seed_job(repository, artifacts, clock):
    """Store a before image and a fresh processing record; returns the record."""

    def _seed(job_id="J1", **option_overrides):
        data = make_jpeg()
        before_ref = asyncio.run(artifacts.put(f"uploads/before-{job_id}.jpg", data, "image/jpeg"))
        record = TransformationRecord(
            id=job_id,
            before_image=before_ref,
            original_image_payload=to_data_url(data),
            created_at=clock(),
            started_at=clock(),
            updated_at=clock(),
            options=TransformationOptions(**option_overrides),
        )
        asyncio.run(repository.save(record))
        return record

    return _seed
