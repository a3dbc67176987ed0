"""Runtime-editable generation settings (prompts, models, voice)."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, Field


DEFAULT_PLAN_PROMPT = """You are a calm, warm, supportive home decluttering guide.

Look carefully at this photo and write a decluttering plan for the space.

OUTPUT FORMAT:
1. Start with a short, friendly greeting that names the room type (not numbered).
2. Then give 5-8 numbered, actionable steps. More cluttered spaces get more steps.
   - Be specific about items you can see ("the shoes by the door", not "items on the floor").
   - Say where each thing should go: closet, drawer, shelf, donate bin, recycling, trash.
   - Give clear decision criteria (used in the last year, duplicates, broken, no clear home).
3. Weave in at most two short lines of encouragement.
4. End with a brief warm closing (not numbered).

Put a blank line between steps. Do not suggest moving furniture or redecorating.
Use plain text only, no HTML or markdown headings."""

DEFAULT_IMAGE_PROMPT = """EDIT THIS PHOTO to show the same room tidy and organized.
This is a photo editing task, not a new image: keep the exact same camera angle,
walls, windows, lighting and furniture positions.

Organize, don't remove: every item visible in the original stays in the picture,
put away neatly in its logical place. Clothes folded or hung, books shelved,
shoes lined up, papers stacked, beds made. Only obvious trash may disappear.
The result must look like a real photograph of the same room."""


class PromptSettings(BaseModel):
    declutter_plan: str = DEFAULT_PLAN_PROMPT
    image_transformation: str = DEFAULT_IMAGE_PROMPT


class ModelSettings(BaseModel):
    plan_model: str = "gpt-4o"
    image_model: str = "gpt-image-1"
    tts_model: str = "tts-1"
    tts_voice: Literal["alloy", "echo", "fable", "onyx", "nova", "shimmer"] = "nova"
    tts_speed: float = Field(default=0.95, ge=0.25, le=4.0)


class AppSettings(BaseModel):
    prompts: PromptSettings = Field(default_factory=PromptSettings)
    models: ModelSettings = Field(default_factory=ModelSettings)
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class PromptSettingsUpdate(BaseModel):
    declutter_plan: Optional[str] = Field(default=None, min_length=1)
    image_transformation: Optional[str] = Field(default=None, min_length=1)


class ModelSettingsUpdate(BaseModel):
    plan_model: Optional[str] = None
    image_model: Optional[str] = None
    tts_model: Optional[str] = None
    tts_voice: Optional[Literal["alloy", "echo", "fable", "onyx", "nova", "shimmer"]] = None
    tts_speed: Optional[float] = Field(default=None, ge=0.25, le=4.0)


class AppSettingsUpdate(BaseModel):
    prompts: Optional[PromptSettingsUpdate] = None
    models: Optional[ModelSettingsUpdate] = None
