import asyncio
import base64
import io

import pytest
from PIL import Image

from app.core.exceptions import BadRequestException, NotFoundException
from app.transformations.models import (
    FeedbackRequest,
    TransformationCreateRequest,
    TransformationStatus,
)

from tests.fakes import make_jpeg


def test_create_stores_before_image_and_payload(service, repository, artifacts):
    image = base64.b64encode(make_jpeg()).decode()
    request = TransformationCreateRequest(image_base64=image, first_name="Asha", owner_id="device-1")

    record = asyncio.run(service.create(request))

    assert record.status == TransformationStatus.PROCESSING
    assert record.before_image.startswith(f"/media/uploads/before-{record.id}-")
    assert record.original_image_payload.startswith("data:image/jpeg;base64,")
    assert record.started_at == record.created_at
    stored = asyncio.run(repository.get(record.id))
    assert stored.options.owner_id == "device-1"
    assert asyncio.run(artifacts.get(record.before_image))


def test_create_downscales_large_images(service, artifacts):
    image = base64.b64encode(make_jpeg(3000, 1500)).decode()

    record = asyncio.run(service.create(TransformationCreateRequest(image_base64=image)))

    with Image.open(io.BytesIO(asyncio.run(artifacts.get(record.before_image)))) as img:
        assert max(img.size) == 1024


def test_create_rejects_non_images(service):
    request = TransformationCreateRequest(image_base64=base64.b64encode(b"definitely not an image").decode())

    with pytest.raises(BadRequestException):
        asyncio.run(service.create(request))


def test_get_status_unknown_job(service):
    with pytest.raises(NotFoundException):
        asyncio.run(service.get_status("nope"))


def test_fresh_processing_job_is_left_alone(service, seed_job, clock):
    seed_job("J1")
    clock.advance(359)

    record = asyncio.run(service.get_status("J1"))

    assert record.status == TransformationStatus.PROCESSING


def test_stale_processing_job_is_failed_on_read(service, repository, seed_job, clock):
    seed_job("J1")
    clock.advance(361)

    record = asyncio.run(service.get_status("J1"))

    assert record.status == TransformationStatus.FAILED
    assert record.error == "Processing timed out"
    stored = asyncio.run(repository.get("J1"))
    assert stored.status == TransformationStatus.FAILED
    assert stored.original_image_payload is None


def test_reaper_measures_from_latest_start(service, repository, seed_job, clock):
    record = seed_job("J1")
    clock.advance(1000)
    record.started_at = clock()
    asyncio.run(repository.save(record))
    clock.advance(100)

    assert asyncio.run(service.get_status("J1")).status == TransformationStatus.PROCESSING


def test_terminal_jobs_are_never_reaped(pipeline, service, seed_job, clock):
    seed_job("J1")
    asyncio.run(pipeline.process("J1"))
    clock.advance(10_000)

    assert asyncio.run(service.get_status("J1")).status == TransformationStatus.COMPLETED


def test_completed_read_touches_last_accessed_at_once_per_interval(pipeline, service, repository, seed_job, clock):
    seed_job("J1")
    asyncio.run(pipeline.process("J1"))

    asyncio.run(service.get_status("J1"))
    first = asyncio.run(repository.get("J1")).last_accessed_at
    assert first == clock()

    clock.advance(60)
    asyncio.run(service.get_status("J1"))
    assert asyncio.run(repository.get("J1")).last_accessed_at == first

    clock.advance(301)
    asyncio.run(service.get_status("J1"))
    assert asyncio.run(repository.get("J1")).last_accessed_at == clock()


def test_expedited_read_skips_touch(pipeline, service, repository, seed_job):
    seed_job("J1")
    asyncio.run(pipeline.process("J1"))

    asyncio.run(service.get_status("J1", expedite=True))

    assert asyncio.run(repository.get("J1")).last_accessed_at is None


def test_expedited_read_still_reaps(service, seed_job, clock):
    seed_job("J1")
    clock.advance(400)

    assert asyncio.run(service.get_status("J1", expedite=True)).status == TransformationStatus.FAILED


def test_list_all_reaps_stale_jobs(service, seed_job, clock):
    seed_job("J1")
    clock.advance(400)
    seed_job("J2")

    records = {r.id: r for r in asyncio.run(service.list_all())}

    assert records["J1"].status == TransformationStatus.FAILED
    assert records["J2"].status == TransformationStatus.PROCESSING


def test_reap_stale_counts_failed_jobs(service, seed_job, clock):
    seed_job("J1")
    seed_job("J2")
    clock.advance(400)
    seed_job("J3")

    assert asyncio.run(service.reap_stale()) == 2
    assert asyncio.run(service.reap_stale()) == 0


def test_list_mine_filters_by_owner(service, seed_job):
    seed_job("J1", owner_id="device-1")
    seed_job("J2", owner_id="device-2")
    seed_job("J3", owner_id="device-1")

    records = asyncio.run(service.list_mine("device-1"))

    assert sorted(r.id for r in records) == ["J1", "J3"]


def test_list_mine_requires_owner(service):
    with pytest.raises(BadRequestException):
        asyncio.run(service.list_mine("  "))


def test_submit_feedback(service, repository, seed_job):
    seed_job("J1")

    asyncio.run(service.submit_feedback(FeedbackRequest(transformation_id="J1", helpful=True, comment="Great")))

    record = asyncio.run(repository.get("J1"))
    assert record.feedback_helpful is True
    assert record.feedback_comment == "Great"
    assert record.feedback_submitted_at is not None


def test_submit_feedback_unknown_job(service):
    with pytest.raises(NotFoundException):
        asyncio.run(service.submit_feedback(FeedbackRequest(transformation_id="nope", helpful=False)))


def test_reaper_with_an_outdated_snapshot_leaves_completed_job_alone(pipeline, service, repository, seed_job, clock):
    seed_job("J1")
    snapshot = asyncio.run(repository.get("J1"))
    asyncio.run(pipeline.process("J1"))
    clock.advance(400)

    record, reaped = asyncio.run(service._reap_if_stale(snapshot, clock()))

    assert reaped is False
    assert record.status == TransformationStatus.COMPLETED
    stored = asyncio.run(repository.get("J1"))
    assert stored.status == TransformationStatus.COMPLETED
    assert stored.after_image
    assert stored.error is None
