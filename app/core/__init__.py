"""Core module - config, database, exceptions, storage."""

from app.core.config import get_settings, Settings
from app.core.database import Database
from app.core.exceptions import (
    AppException,
    NotFoundException,
    ForbiddenException,
    BadRequestException,
    ConflictException,
    GenerationError,
)

__all__ = [
    "get_settings",
    "Settings",
    "Database",
    "AppException",
    "NotFoundException",
    "ForbiddenException",
    "BadRequestException",
    "ConflictException",
    "GenerationError",
]
