"""Email service for sending emails via AWS SES."""

import asyncio
import boto3
from botocore.exceptions import ClientError
from typing import Optional
import logging

from app.core.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)


class EmailService:
    """Service for sending emails via AWS SES."""

    @staticmethod
    def _get_ses_client():
        """Get boto3 SES client."""
        return boto3.client(
            'ses',
            region_name=settings.AWS_SES_REGION,
            aws_access_key_id=settings.AWS_ACCESS_KEY_ID or None,
            aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY or None,
        )

    @staticmethod
    def _send_email_sync(
        to_email: str,
        subject: str,
        html_body: str,
        text_body: str,
    ) -> tuple[bool, Optional[str], Optional[str]]:
        """
        Synchronous wrapper for sending email via AWS SES.

        Returns:
            Tuple of (success: bool, message_id: Optional[str], error_message: Optional[str])
        """
        if not settings.EMAIL_FROM_ADDRESS:
            return False, None, "EMAIL_FROM_ADDRESS is not configured"

        ses_client = EmailService._get_ses_client()

        try:
            response = ses_client.send_email(
                Source=f"{settings.EMAIL_FROM_NAME} <{settings.EMAIL_FROM_ADDRESS}>",
                Destination={
                    'ToAddresses': [to_email]
                },
                Message={
                    'Subject': {
                        'Data': subject,
                        'Charset': 'UTF-8'
                    },
                    'Body': {
                        'Text': {
                            'Data': text_body,
                            'Charset': 'UTF-8'
                        },
                        'Html': {
                            'Data': html_body,
                            'Charset': 'UTF-8'
                        }
                    }
                }
            )
            return True, response.get('MessageId'), None

        except ClientError as e:
            # MessageRejected usually means the address is unverified (SES sandbox).
            error_code = e.response['Error']['Code']
            error_message = e.response['Error']['Message']
            return False, None, f"{error_code} - {error_message}"

    @classmethod
    async def send_email(
        cls,
        to_email: str,
        subject: str,
        html_body: str,
        text_body: str,
    ) -> bool:
        """
        Send an email via AWS SES.

        Returns:
            True if email sent successfully, False otherwise
        """
        logger.info(f"Attempting to send email to {to_email} with subject: {subject}")

        # Run the blocking boto3 call in a thread pool to avoid blocking the event loop
        try:
            success, message_id, error = await asyncio.to_thread(
                cls._send_email_sync,
                to_email,
                subject,
                html_body,
                text_body
            )
        except Exception:
            logger.exception(f"Exception in send_email for {to_email}")
            return False

        if success:
            logger.info(f"Email sent successfully to {to_email}. MessageId: {message_id}")
            return True
        logger.error(f"Failed to send email to {to_email}. Error: {error}")
        return False

    @classmethod
    async def send_transformation_ready_email(
        cls,
        to_email: str,
        first_name: Optional[str],
        transformation_id: str,
        before_image_url: str,
        after_image_url: str,
        plan: str,
    ) -> bool:
        """Send the completion email with both images and the plan."""
        from app.core.email_templates import get_transformation_ready_email

        base_url = (settings.PUBLIC_BASE_URL or "").rstrip("/")
        api_base_url = (settings.PUBLIC_API_BASE_URL or "").rstrip("/")
        html_body, text_body = get_transformation_ready_email(
            first_name=first_name,
            before_image_url=cls._absolute(api_base_url, before_image_url),
            after_image_url=cls._absolute(api_base_url, after_image_url),
            plan=plan,
            results_url=f"{base_url}/results/{transformation_id}",
            tracking_pixel_url=f"{api_base_url}/api/track-email/{transformation_id}",
        )

        return await cls.send_email(
            to_email=to_email,
            subject="Your Room Transformation is Ready!",
            html_body=html_body,
            text_body=text_body,
        )

    @staticmethod
    def _absolute(base_url: str, ref: str) -> str:
        # Local storage refs are path-only.
        if ref and ref.startswith("/"):
            return f"{base_url}{ref}"
        return ref
