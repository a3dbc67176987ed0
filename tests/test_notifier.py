import asyncio

from app.core.email_service import EmailService
from app.core.email_templates import get_transformation_ready_email
from app.transformations.models import TransformationOptions, TransformationRecord, TransformationStatus
from app.transformations.notifier import CompletionNotifier


class RecordingEmailService:
    def __init__(self, result=True, error=None):
        self.result = result
        self.error = error
        self.sent = []

    async def send_transformation_ready_email(self, **kwargs):
        self.sent.append(kwargs)
        if self.error:
            raise self.error
        return self.result


def _completed(email="asha@example.com"):
    return TransformationRecord(
        id="J1",
        status=TransformationStatus.COMPLETED,
        before_image="/media/uploads/before-J1.jpg",
        after_image="/media/uploads/after-J1.png",
        plan="1. Clear the desk.",
        options=TransformationOptions(email=email, first_name="Asha"),
    )


def test_notifies_user_with_email():
    email_service = RecordingEmailService()

    assert asyncio.run(CompletionNotifier(email_service).notify(_completed())) is True
    assert email_service.sent[0]["to_email"] == "asha@example.com"
    assert email_service.sent[0]["after_image_url"] == "/media/uploads/after-J1.png"


def test_skips_jobs_without_email():
    email_service = RecordingEmailService()

    assert asyncio.run(CompletionNotifier(email_service).notify(_completed(email=None))) is False
    assert email_service.sent == []


def test_send_failures_are_swallowed():
    notifier = CompletionNotifier(RecordingEmailService(error=RuntimeError("ses down")))

    assert asyncio.run(notifier.notify(_completed())) is False


def test_unsent_email_reports_false():
    notifier = CompletionNotifier(RecordingEmailService(result=False))

    assert asyncio.run(notifier.notify(_completed())) is False


def test_email_template_escapes_plan_and_greets_user():
    html, text = get_transformation_ready_email(
        first_name="Asha",
        before_image_url="https://example.com/before.jpg",
        after_image_url="https://example.com/after.png",
        plan="1. Move <b>books</b>\n2. Fold the blanket",
        results_url="https://example.com/results/J1",
    )

    assert "Hi Asha," in html
    assert "&lt;b&gt;books&lt;/b&gt;" in html
    assert "https://example.com/after.png" in html
    assert "https://example.com/results/J1" in text


def test_local_refs_become_absolute_links():
    assert EmailService._absolute("https://declutter.example", "/media/a.png") == "https://declutter.example/media/a.png"
    assert EmailService._absolute("https://declutter.example", "https://cdn/a.png") == "https://cdn/a.png"


def test_email_template_embeds_tracking_pixel_when_given():
    html, _ = get_transformation_ready_email(
        first_name=None,
        before_image_url="https://example.com/before.jpg",
        after_image_url="https://example.com/after.png",
        plan="1. Clear the desk.",
        results_url="https://example.com/results/J1",
        tracking_pixel_url="https://api.example.com/api/track-email/J1",
    )
    untracked, _ = get_transformation_ready_email(
        first_name=None,
        before_image_url="https://example.com/before.jpg",
        after_image_url="https://example.com/after.png",
        plan="1. Clear the desk.",
        results_url="https://example.com/results/J1",
    )

    assert '<img src="https://api.example.com/api/track-email/J1" width="1" height="1"' in html
    assert "track-email" not in untracked


def test_completion_email_carries_tracking_pixel(monkeypatch):
    captured = {}

    async def fake_send_email(cls, to_email, subject, html_body, text_body):
        captured.update(to_email=to_email, html_body=html_body)
        return True

    monkeypatch.setattr(EmailService, "send_email", classmethod(fake_send_email))

    sent = asyncio.run(
        EmailService.send_transformation_ready_email(
            to_email="asha@example.com",
            first_name="Asha",
            transformation_id="J1",
            before_image_url="/media/uploads/before-J1.jpg",
            after_image_url="/media/uploads/after-J1.png",
            plan="1. Clear the desk.",
        )
    )

    assert sent is True
    assert "/api/track-email/J1" in captured["html_body"]
    assert "http://localhost:8000/media/uploads/after-J1.png" in captured["html_body"]
