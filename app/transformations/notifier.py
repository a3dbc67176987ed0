"""Completion notification (best-effort)."""

from __future__ import annotations

import logging

from app.core.email_service import EmailService
from app.transformations.models import TransformationRecord

logger = logging.getLogger(__name__)


class CompletionNotifier:
    """Emails the user when their transformation completes. Never raises."""

    def __init__(self, email_service=EmailService):
        self._email_service = email_service

    async def notify(self, record: TransformationRecord) -> bool:
        email = (record.options.email or "").strip()
        if not email:
            return False
        try:
            sent = await self._email_service.send_transformation_ready_email(
                to_email=email,
                first_name=record.options.first_name,
                transformation_id=record.id,
                before_image_url=record.before_image,
                after_image_url=record.after_image or "",
                plan=record.plan,
            )
        except Exception:
            logger.exception(f"Failed to send completion email for transformation {record.id}")
            return False
        if not sent:
            logger.warning(f"Completion email for transformation {record.id} was not sent")
        return bool(sent)
