"""Generation service interfaces and the shared rate-limit retry policy."""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional, Protocol, TypeVar

import openai

from app.runtime_settings.models import AppSettings
from app.transformations.models import TransformationOptions

logger = logging.getLogger(__name__)

T = TypeVar("T")

RATE_LIMIT_MARKERS = ("quota", "too many requests", "rate limit")


class RateLimited(Exception):
    """A generation backend asked us to slow down."""


class PlanGenerator(Protocol):
    async def analyze(self, image: str, options: TransformationOptions, app_settings: AppSettings) -> str:
        """Return decluttering plan text for a base64 data URL image."""


class ImageEditor(Protocol):
    async def edit(self, image: str, plan: str, options: TransformationOptions, app_settings: AppSettings) -> bytes:
        """Return the edited ("after") image bytes."""


class SpeechSynthesizer(Protocol):
    async def synthesize(self, text: str, voice: str, app_settings: AppSettings) -> bytes:
        """Return narration audio bytes (mp3)."""


def is_rate_limit_error(exc: BaseException) -> bool:
    if isinstance(exc, (RateLimited, openai.RateLimitError)):
        return True
    if getattr(exc, "status_code", None) == 429:
        return True
    message = str(exc).lower()
    return any(marker in message for marker in RATE_LIMIT_MARKERS)


async def with_rate_limit_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    max_retries: int = 3,
    base_delay: float = 2.0,
    label: str = "generation",
    sleep: Optional[Callable[[float], Awaitable[None]]] = None,
) -> T:
    """
    Call ``fn`` and retry with exponential backoff while it is rate limited.

    Any other error is raised immediately. After ``max_retries`` retries the
    last rate-limit error is raised.
    """
    sleep = sleep or asyncio.sleep
    attempt = 0
    while True:
        try:
            return await fn()
        except Exception as e:
            if not is_rate_limit_error(e) or attempt >= max_retries:
                raise
            delay = base_delay * (2 ** attempt) + random.uniform(0, base_delay / 2)
            attempt += 1
            logger.warning(f"{label} rate limited; retrying in {delay:.1f}s (attempt {attempt}/{max_retries})")
            await sleep(delay)
