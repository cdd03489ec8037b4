"""Application configuration settings.

All configuration values are loaded from environment variables (.env file).
No sensitive values should be hardcoded here.
"""

from typing import Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    PROJECT_NAME: str = "Voicecast API"
    VERSION: str = "0.1.0"
    API_V1_PREFIX: str = "/api/v1"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"

    # Database - REQUIRED
    DATABASE_URL: str

    # Redis - REQUIRED
    REDIS_URL: str

    # Celery (falls back to REDIS_URL when empty)
    CELERY_BROKER_URL: str = ""
    CELERY_RESULT_BACKEND: str = ""

    # CORS
    CORS_ORIGINS: list[str] = []

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    # Tracing
    OTLP_ENDPOINT: Optional[str] = None

    # Broadcast fan-out
    BROADCAST_TIMEZONE: str = "Asia/Seoul"
    BROADCAST_DEFAULT_RECIPIENTS: int = 5
    BROADCAST_MAX_RECIPIENTS: int = 10
    BROADCAST_BULK_MAX_RECIPIENTS: int = 100
    BROADCAST_COST: int = 100
    BROADCAST_CONTENT_MAX_LENGTH: int = 200
    BROADCAST_DEFAULT_CONTENT: str = "New voice message"
    BROADCAST_AUDIO_MAX_BYTES: int = 10 * 1024 * 1024
    BROADCAST_ALLOWED_AUDIO_TYPES: list[str] = [
        "audio/mpeg",
        "audio/wav",
        "audio/m4a",
        "audio/mp4",
    ]
    BROADCAST_SELECTION_STRATEGY: str = "random"
    BROADCAST_LOCK_TIMEOUT_SECONDS: int = 30

    # Used when no broadcast_limits row is stored
    BROADCAST_DAILY_LIMIT: int = 20
    BROADCAST_HOURLY_LIMIT: int = 5
    BROADCAST_COOLDOWN_MINUTES: int = 10
    BROADCAST_BYPASS_ROLES: list[str] = ["admin"]

    # Push notifications (Expo)
    PUSH_ENABLED: bool = False
    EXPO_PUSH_URL: str = "https://exp.host/--/api/v2/push/send"
    PUSH_TIMEOUT_SECONDS: float = 10.0

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


settings = Settings()
