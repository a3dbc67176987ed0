"""OpenAI-backed generation services: plan (vision), image edit, narration."""

from __future__ import annotations

import base64
import logging
from typing import Optional

from openai import AsyncOpenAI

from app.core.config import get_settings
from app.core.exceptions import GenerationError
from app.generation.base import with_rate_limit_retry
from app.generation.prompts import build_image_prompt, build_plan_prompt
from app.runtime_settings.models import AppSettings
from app.transformations.images import decode_image_payload
from app.transformations.models import TransformationOptions

settings = get_settings()
logger = logging.getLogger(__name__)

TTS_MAX_INPUT_CHARS = 4096

_IMAGE_EXTENSIONS = {"image/png": "png", "image/webp": "webp", "image/jpeg": "jpg"}


def _client() -> AsyncOpenAI:
    if not settings.OPENAI_API_KEY:
        raise GenerationError("OPENAI_API_KEY is not configured")
    return AsyncOpenAI(api_key=settings.OPENAI_API_KEY)


def _wrap_error(label: str, e: Exception) -> GenerationError:
    error_msg = str(e)
    if "api key" in error_msg.lower() or "authentication" in error_msg.lower():
        return GenerationError("OpenAI API key is missing or invalid. Please set OPENAI_API_KEY in your environment.")
    return GenerationError(f"{label} failed: {error_msg}")


class _OpenAIService:
    def __init__(self, client: Optional[AsyncOpenAI] = None, max_retries: Optional[int] = None,
                 base_delay: Optional[float] = None):
        self._client = client
        self.max_retries = settings.GENERATION_MAX_RETRIES if max_retries is None else max_retries
        self.base_delay = settings.GENERATION_RETRY_BASE_DELAY_SECONDS if base_delay is None else base_delay

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = _client()
        return self._client

    async def _call(self, label: str, fn):
        try:
            return await with_rate_limit_retry(
                fn, max_retries=self.max_retries, base_delay=self.base_delay, label=label
            )
        except GenerationError:
            raise
        except Exception as e:
            raise _wrap_error(label, e) from e


class OpenAIPlanGenerator(_OpenAIService):
    """Writes the decluttering plan from the room photo."""

    async def analyze(self, image: str, options: TransformationOptions, app_settings: AppSettings) -> str:
        prompt = build_plan_prompt(app_settings, options)

        async def _request():
            return await self.client.chat.completions.create(
                model=app_settings.models.plan_model,
                messages=[
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": prompt},
                            {"type": "image_url", "image_url": {"url": image, "detail": "high"}},
                        ],
                    }
                ],
                max_tokens=1500,
                temperature=0.7,
            )

        response = await self._call("Plan generation", _request)

        if not response.choices or not response.choices[0].message.content:
            raise GenerationError("Plan generation returned an empty response")
        return response.choices[0].message.content.strip()


class OpenAIImageEditor(_OpenAIService):
    """Edits the room photo into its organized "after" version."""

    async def edit(self, image: str, plan: str, options: TransformationOptions, app_settings: AppSettings) -> bytes:
        mime_type, image_bytes = decode_image_payload(image)
        filename = f"room.{_IMAGE_EXTENSIONS.get(mime_type, 'jpg')}"
        prompt = build_image_prompt(app_settings, plan, options)

        async def _request():
            return await self.client.images.edit(
                model=app_settings.models.image_model,
                image=(filename, image_bytes, mime_type),
                prompt=prompt,
            )

        response = await self._call("Image edit", _request)

        if not response.data or not response.data[0].b64_json:
            raise GenerationError("No image returned from the image edit model")
        return base64.b64decode(response.data[0].b64_json)


class OpenAISpeechSynthesizer(_OpenAIService):
    """Reads the plan aloud."""

    async def synthesize(self, text: str, voice: str, app_settings: AppSettings) -> bytes:
        if len(text) > TTS_MAX_INPUT_CHARS:
            text = text[: TTS_MAX_INPUT_CHARS - 1].rsplit(" ", 1)[0]

        async def _request():
            return await self.client.audio.speech.create(
                model=app_settings.models.tts_model,
                voice=voice,
                input=text,
                speed=app_settings.models.tts_speed,
            )

        response = await self._call("Speech synthesis", _request)
        return response.content
