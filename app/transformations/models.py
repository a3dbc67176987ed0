"""Transformation job record and API models."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class TransformationStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = {TransformationStatus.COMPLETED, TransformationStatus.FAILED}


class CreativityLevel(str, Enum):
    STRICT = "strict"
    BALANCED = "balanced"
    CREATIVE = "creative"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def failure_fields(error: str, now: datetime) -> Dict[str, Any]:
    """Fields written when a job fails; the working payload and any partial result go."""
    return {
        "status": TransformationStatus.FAILED,
        "original_image_payload": None,
        "after_image": None,
        "error": error,
        "updated_at": now,
    }


class TransformationOptions(BaseModel):
    """User-supplied generation parameters."""
    creativity_level: CreativityLevel = CreativityLevel.BALANCED
    keep_items: str = Field(default="", max_length=1000)
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    email: Optional[str] = Field(default=None, max_length=320)
    owner_id: Optional[str] = Field(default=None, max_length=200)


class TransformationRecord(BaseModel):
    """Persisted state of one transformation. Only the pipeline and retry mutate it."""
    id: str
    status: TransformationStatus = TransformationStatus.PROCESSING
    before_image: str
    original_image_payload: Optional[str] = None
    plan: str = ""
    after_image: Optional[str] = None
    audio: Optional[str] = None
    claimed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utc_now)
    started_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    last_accessed_at: Optional[datetime] = None
    error: Optional[str] = None
    options: TransformationOptions = Field(default_factory=TransformationOptions)
    feedback_helpful: Optional[bool] = None
    feedback_comment: str = ""
    feedback_submitted_at: Optional[datetime] = None
    email_opened_at: Optional[datetime] = None
    email_open_count: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def mark_failed(self, error: str, now: datetime) -> None:
        self.apply(failure_fields(error, now))

    def apply(self, fields: Dict[str, Any]) -> None:
        for name, value in fields.items():
            setattr(self, name, value)

    def to_view(self) -> "TransformationView":
        return TransformationView(**self.model_dump(exclude={"original_image_payload"}))


class TransformationView(BaseModel):
    """Public view of a record; the working payload is never exposed."""
    id: str
    status: TransformationStatus
    before_image: str
    plan: str = ""
    after_image: Optional[str] = None
    audio: Optional[str] = None
    claimed_at: Optional[datetime] = None
    created_at: datetime
    started_at: datetime
    updated_at: datetime
    last_accessed_at: Optional[datetime] = None
    error: Optional[str] = None
    options: TransformationOptions
    feedback_helpful: Optional[bool] = None
    feedback_comment: str = ""
    feedback_submitted_at: Optional[datetime] = None
    email_opened_at: Optional[datetime] = None
    email_open_count: int = 0


class TransformationCreateRequest(BaseModel):
    image_base64: str = Field(..., min_length=16, description="Raw base64 or data URL")
    email: Optional[str] = Field(default=None, max_length=320)
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    creativity_level: CreativityLevel = CreativityLevel.BALANCED
    keep_items: str = Field(default="", max_length=1000)
    owner_id: Optional[str] = Field(default=None, max_length=200)


class TransformationCreateResponse(BaseModel):
    id: str
    status: TransformationStatus
    before_image: str


class ProcessResult(BaseModel):
    id: str
    status: TransformationStatus
    after_image: Optional[str] = None
    plan: Optional[str] = None
    message: Optional[str] = None


class RetryResponse(BaseModel):
    id: str
    status: TransformationStatus
    message: Optional[str] = None


class MyTransformationsResponse(BaseModel):
    transformations: List[TransformationView]


class FeedbackRequest(BaseModel):
    transformation_id: str
    helpful: Optional[bool] = None
    comment: str = Field(default="", max_length=2000)


class FeedbackResponse(BaseModel):
    success: bool
    id: str


class FeedbackEntry(BaseModel):
    transformation_id: str
    helpful: Optional[bool] = None
    comment: str = ""
    created_at: datetime


class FeedbackListResponse(BaseModel):
    feedback: List[FeedbackEntry]
    total: int


class SpeechRequest(BaseModel):
    text: str = Field(default="", max_length=20000)
