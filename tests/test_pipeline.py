import asyncio

import pytest

from app.core.exceptions import GenerationError, NotFoundException
from app.generation.base import RateLimited
from app.transformations.models import TransformationStatus

from tests.fakes import FakeImageEditor, FakeNotifier, FakePlanGenerator, FakeSpeechSynthesizer


def test_process_completes_job(pipeline, repository, artifacts, seed_job, notifier):
    seed_job("J1")

    result = asyncio.run(pipeline.process("J1"))

    assert result.status == TransformationStatus.COMPLETED
    assert result.plan == "1. Clear the desk. 2. Fold the blanket."
    record = asyncio.run(repository.get("J1"))
    assert record.status == TransformationStatus.COMPLETED
    assert record.after_image == result.after_image
    assert record.after_image.startswith("/media/uploads/after-J1-")
    assert record.audio.startswith("/media/uploads/audio-J1-")
    assert record.original_image_payload is None
    assert record.error is None
    assert asyncio.run(artifacts.get(record.after_image)) == b"\x89PNG after"
    assert notifier.notified == ["J1"]


def test_strict_job_completes_without_audio_when_speech_is_rate_limited(
    repository, artifacts, settings_provider, clock, seed_job
):
    from app.transformations.pipeline import PipelineCoordinator

    speech = FakeSpeechSynthesizer(error=RateLimited("429 Too Many Requests"))
    editor = FakeImageEditor()
    pipeline = PipelineCoordinator(
        repository=repository,
        artifacts=artifacts,
        plan_generator=FakePlanGenerator(),
        image_editor=editor,
        speech_synthesizer=speech,
        settings_provider=settings_provider,
        claim_timeout=300,
        clock=clock,
    )
    seed_job("J1", creativity_level="strict")

    result = asyncio.run(pipeline.process("J1"))

    assert result.status == TransformationStatus.COMPLETED
    assert result.plan == "1. Clear the desk. 2. Fold the blanket."
    record = asyncio.run(repository.get("J1"))
    assert record.audio is None
    assert record.after_image
    assert editor.plans == ["1. Clear the desk. 2. Fold the blanket."]


def test_process_unknown_job_raises_not_found(pipeline):
    with pytest.raises(NotFoundException):
        asyncio.run(pipeline.process("missing"))


def test_process_is_a_no_op_for_completed_jobs(pipeline, seed_job, plan_generator, image_editor):
    seed_job("J1")
    first = asyncio.run(pipeline.process("J1"))

    second = asyncio.run(pipeline.process("J1"))

    assert second.status == TransformationStatus.COMPLETED
    assert second.after_image == first.after_image
    assert second.message == "Already processed"
    assert plan_generator.calls == 1
    assert image_editor.calls == 1


def test_concurrent_triggers_run_generation_once(pipeline, seed_job, plan_generator, image_editor, speech_synthesizer):
    seed_job("J1")

    async def race():
        return await asyncio.gather(pipeline.process("J1"), pipeline.process("J1"))

    results = asyncio.run(race())

    statuses = sorted(r.status.value for r in results)
    assert statuses == ["completed", "processing"]
    assert plan_generator.calls == 1
    assert image_editor.calls == 1
    assert speech_synthesizer.calls == 1


def test_live_claim_turns_away_second_caller(pipeline, repository, seed_job, clock, image_editor):
    seed_job("J1")
    asyncio.run(repository.claim("J1", clock(), 300))
    clock.advance(60)

    result = asyncio.run(pipeline.process("J1"))

    assert result.status == TransformationStatus.PROCESSING
    assert result.message == "Processing is already in progress"
    assert image_editor.calls == 0


def test_expired_claim_can_be_taken_over(pipeline, repository, seed_job, clock):
    seed_job("J1")
    asyncio.run(repository.claim("J1", clock(), 300))
    clock.advance(301)

    result = asyncio.run(pipeline.process("J1"))

    assert result.status == TransformationStatus.COMPLETED


def test_plan_is_visible_while_image_is_generating(
    repository, artifacts, settings_provider, clock, seed_job
):
    from app.transformations.pipeline import PipelineCoordinator

    seed_job("J1")
    observed = {}

    async def scenario():
        gate = asyncio.Event()
        pipeline = PipelineCoordinator(
            repository=repository,
            artifacts=artifacts,
            plan_generator=FakePlanGenerator(),
            image_editor=FakeImageEditor(gate=gate),
            speech_synthesizer=FakeSpeechSynthesizer(),
            settings_provider=settings_provider,
            clock=clock,
        )
        task = asyncio.create_task(pipeline.process("J1"))
        for _ in range(20):
            await asyncio.sleep(0)
            current = await repository.get("J1")
            if current.plan:
                break
        observed["status"] = current.status
        observed["plan"] = current.plan
        observed["after_image"] = current.after_image
        gate.set()
        return await task

    result = asyncio.run(scenario())

    assert observed == {
        "status": TransformationStatus.PROCESSING,
        "plan": "1. Clear the desk. 2. Fold the blanket.",
        "after_image": None,
    }
    assert result.status == TransformationStatus.COMPLETED


def test_existing_plan_is_reused(pipeline, repository, seed_job, plan_generator, image_editor):
    record = seed_job("J1")
    record.plan = "1. Stack the books."
    asyncio.run(repository.save(record))

    result = asyncio.run(pipeline.process("J1"))

    assert result.plan == "1. Stack the books."
    assert plan_generator.calls == 0
    assert image_editor.plans == ["1. Stack the books."]


def test_image_failure_marks_job_failed(repository, artifacts, settings_provider, clock, seed_job):
    from app.transformations.pipeline import PipelineCoordinator

    notifier = FakeNotifier()
    pipeline = PipelineCoordinator(
        repository=repository,
        artifacts=artifacts,
        plan_generator=FakePlanGenerator(),
        image_editor=FakeImageEditor(error=RuntimeError("edit model exploded")),
        speech_synthesizer=FakeSpeechSynthesizer(),
        settings_provider=settings_provider,
        notifier=notifier,
        clock=clock,
    )
    seed_job("J1")

    with pytest.raises(GenerationError):
        asyncio.run(pipeline.process("J1"))

    record = asyncio.run(repository.get("J1"))
    assert record.status == TransformationStatus.FAILED
    assert record.error == "edit model exploded"
    assert record.original_image_payload is None
    assert record.after_image is None
    assert record.plan == "1. Clear the desk. 2. Fold the blanket."
    assert notifier.notified == []


def test_failed_job_is_not_reprocessed(repository, artifacts, settings_provider, clock, seed_job):
    from app.transformations.pipeline import PipelineCoordinator

    plan_generator = FakePlanGenerator(error=GenerationError("Plan generation failed: boom"))
    pipeline = PipelineCoordinator(
        repository=repository,
        artifacts=artifacts,
        plan_generator=plan_generator,
        image_editor=FakeImageEditor(),
        speech_synthesizer=FakeSpeechSynthesizer(),
        settings_provider=settings_provider,
        clock=clock,
    )
    seed_job("J1")
    with pytest.raises(GenerationError):
        asyncio.run(pipeline.process("J1"))

    result = asyncio.run(pipeline.process("J1"))

    assert result.status == TransformationStatus.FAILED
    assert result.message == "Plan generation failed: boom"
    assert plan_generator.calls == 1


def test_empty_plan_fails_job(repository, artifacts, settings_provider, clock, seed_job):
    from app.transformations.pipeline import PipelineCoordinator

    pipeline = PipelineCoordinator(
        repository=repository,
        artifacts=artifacts,
        plan_generator=FakePlanGenerator(plan="   "),
        image_editor=FakeImageEditor(),
        speech_synthesizer=FakeSpeechSynthesizer(),
        settings_provider=settings_provider,
        clock=clock,
    )
    seed_job("J1")

    with pytest.raises(GenerationError):
        asyncio.run(pipeline.process("J1"))

    assert asyncio.run(repository.get("J1")).status == TransformationStatus.FAILED


def test_missing_payload_returns_processing_without_generating(pipeline, repository, seed_job, image_editor):
    record = seed_job("J1")
    record.original_image_payload = None
    asyncio.run(repository.save(record))

    result = asyncio.run(pipeline.process("J1"))

    assert result.status == TransformationStatus.PROCESSING
    assert image_editor.calls == 0


def test_notifier_errors_do_not_affect_result(repository, artifacts, settings_provider, clock, seed_job):
    from app.transformations.pipeline import PipelineCoordinator

    pipeline = PipelineCoordinator(
        repository=repository,
        artifacts=artifacts,
        plan_generator=FakePlanGenerator(),
        image_editor=FakeImageEditor(),
        speech_synthesizer=FakeSpeechSynthesizer(),
        settings_provider=settings_provider,
        notifier=FakeNotifier(error=RuntimeError("smtp down")),
        clock=clock,
    )
    seed_job("J1")

    result = asyncio.run(pipeline.process("J1"))

    assert result.status == TransformationStatus.COMPLETED
    assert asyncio.run(repository.get("J1")).status == TransformationStatus.COMPLETED


def test_narration_greets_user_by_name(pipeline, seed_job, speech_synthesizer):
    seed_job("J1", first_name="Asha")

    asyncio.run(pipeline.process("J1"))

    assert speech_synthesizer.texts == ["Hi Asha! 1. Clear the desk. 2. Fold the blanket."]


def _gated_pipeline(repository, artifacts, settings_provider, clock, gate, notifier=None):
    from app.transformations.pipeline import PipelineCoordinator

    editor = FakeImageEditor(gate=gate)
    pipeline = PipelineCoordinator(
        repository=repository,
        artifacts=artifacts,
        plan_generator=FakePlanGenerator(),
        image_editor=editor,
        speech_synthesizer=FakeSpeechSynthesizer(),
        settings_provider=settings_provider,
        notifier=notifier,
        claim_timeout=300,
        clock=clock,
    )
    return pipeline, editor


async def _wait_for_edit(editor):
    for _ in range(50):
        if editor.calls:
            return
        await asyncio.sleep(0)
    raise AssertionError("image edit never started")


def test_reaped_job_stays_failed_when_the_edit_finishes_late(
    repository, artifacts, settings_provider, service, clock, seed_job
):
    seed_job("J1")
    notifier = FakeNotifier()

    async def scenario():
        gate = asyncio.Event()
        pipeline, editor = _gated_pipeline(repository, artifacts, settings_provider, clock, gate, notifier)
        task = asyncio.create_task(pipeline.process("J1"))
        await _wait_for_edit(editor)
        clock.advance(400)
        reaped = await service.get_status("J1")
        gate.set()
        return reaped, await task

    reaped, result = asyncio.run(scenario())

    assert reaped.status == TransformationStatus.FAILED
    assert result.status == TransformationStatus.FAILED
    assert result.message == "Processing timed out"
    stored = asyncio.run(repository.get("J1"))
    assert stored.status == TransformationStatus.FAILED
    assert stored.after_image is None
    assert stored.original_image_payload is None
    assert notifier.notified == []


def test_superseded_run_does_not_complete_a_retried_job(
    repository, artifacts, settings_provider, service, clock, seed_job
):
    seed_job("J1")

    async def scenario():
        gate = asyncio.Event()
        pipeline, editor = _gated_pipeline(repository, artifacts, settings_provider, clock, gate)
        task = asyncio.create_task(pipeline.process("J1"))
        await _wait_for_edit(editor)
        clock.advance(400)
        await service.get_status("J1")
        await service.retry("J1")
        gate.set()
        return await task

    result = asyncio.run(scenario())

    assert result.status == TransformationStatus.PROCESSING
    stored = asyncio.run(repository.get("J1"))
    assert stored.status == TransformationStatus.PROCESSING
    assert stored.plan == ""
    assert stored.claimed_at is None
    assert stored.original_image_payload


def test_failure_after_reaping_keeps_the_reaper_message(
    repository, artifacts, settings_provider, service, clock, seed_job
):
    from app.transformations.pipeline import PipelineCoordinator

    seed_job("J1")

    async def scenario():
        gate = asyncio.Event()
        editor = FakeImageEditor(gate=gate, error=RuntimeError("edit model exploded"))
        pipeline = PipelineCoordinator(
            repository=repository,
            artifacts=artifacts,
            plan_generator=FakePlanGenerator(),
            image_editor=editor,
            speech_synthesizer=FakeSpeechSynthesizer(),
            settings_provider=settings_provider,
            clock=clock,
        )
        task = asyncio.create_task(pipeline.process("J1"))
        await _wait_for_edit(editor)
        clock.advance(400)
        await service.get_status("J1")
        gate.set()
        with pytest.raises(GenerationError):
            await task

    asyncio.run(scenario())

    stored = asyncio.run(repository.get("J1"))
    assert stored.status == TransformationStatus.FAILED
    assert stored.error == "Processing timed out"
