"""
Application configuration using Pydantic Settings.
Loads from environment variables / .env file.
"""

from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # App
    APP_NAME: str = "Declutter API"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"
    PUBLIC_BASE_URL: str = "http://localhost:3000"
    PUBLIC_API_BASE_URL: str = "http://localhost:8000"

    # Job records: "mongo" or "memory" (single process only)
    JOB_STORE_BACKEND: str = "mongo"
    MONGO_URI: str = "mongodb://localhost:27017"
    MONGO_DB_NAME: str = "declutter"

    # Artifacts: "s3" or "local"
    STORAGE_BACKEND: str = "local"
    LOCAL_STORAGE_DIR: str = "data/artifacts"
    LOCAL_STORAGE_URL_PREFIX: str = "/media"

    # AWS
    AWS_ACCESS_KEY_ID: str = ""
    AWS_SECRET_ACCESS_KEY: str = ""
    AWS_REGION: str = "us-east-1"
    AWS_S3_BUCKET: str = ""
    AWS_SES_REGION: str = "us-east-1"

    # Email
    EMAIL_FROM_NAME: str = "Declutter"
    EMAIL_FROM_ADDRESS: str = ""

    # OpenAI
    OPENAI_API_KEY: str = ""

    # Generation retry policy (rate limits only)
    GENERATION_MAX_RETRIES: int = 3
    GENERATION_RETRY_BASE_DELAY_SECONDS: float = 2.0

    # Pipeline timing
    CLAIM_TIMEOUT_SECONDS: int = 300
    PROCESSING_TIMEOUT_SECONDS: int = 360
    ACCESS_TOUCH_INTERVAL_SECONDS: int = 300
    SETTINGS_CACHE_TTL_SECONDS: int = 30

    # Uploads
    MAX_REQUEST_BODY_BYTES: int = 20_000_000
    IMAGE_MAX_DIMENSION: int = 1024
    IMAGE_JPEG_QUALITY: int = 85

    # Admin
    ADMIN_API_KEY: str = ""

    # Celery (optional)
    DISPATCH_TO_WORKER: bool = False
    STALE_SWEEP_ENABLED: bool = False
    CELERY_BROKER_URL: str = "sqs://"
    CELERY_QUEUE_PREFIX: str = "declutter-"
    SQS_DEFAULT_QUEUE_URL: str = ""
    CELERY_VISIBILITY_TIMEOUT: int = 900
    CELERY_POLLING_INTERVAL: float = 1.0
    CELERY_WAIT_TIME_SECONDS: int = 10
    # Both stay under PROCESSING_TIMEOUT_SECONDS; a run is stopped before the reaper fails it.
    CELERY_TASK_TIME_LIMIT: int = 330
    CELERY_TASK_SOFT_TIME_LIMIT: int = 300

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Cached settings instance."""
    return Settings()
