"""
Application Configuration
Loads settings from environment variables.
"""

from typing import List
from pydantic_settings import BaseSettings
from pydantic import field_validator
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # App
    APP_NAME: str = "Model Proxy API"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    API_BASE_URL: str = "http://localhost:8000"  # Base URL for file serving

    # Generation provider (Tripo AI v2 OpenAPI)
    PROVIDER_API_URL: str = "https://api.tripo3d.ai"
    PROVIDER_TIMEOUT: float = 30.0  # Seconds per submit/poll call
    PROVIDER_DOWNLOAD_TIMEOUT: float = 60.0  # Downloads carry larger payloads
    PROVIDER_MAX_RETRIES: int = 3
    PROVIDER_RETRY_DELAY: float = 1.0  # Base backoff delay in seconds
    PROVIDER_RETRY_MAX_DELAY: float = 30.0
    PROVIDER_RETRY_JITTER: float = 0.1  # Fraction of the delay, 0 disables jitter

    # Job loop
    JOB_TIMEOUT: float = 300.0  # Overall wall-clock budget per job (5 minutes)
    POLL_INTERVAL: float = 5.0
    POLL_BACKOFF_FACTOR: float = 1.2
    POLL_ERROR_BACKOFF_FACTOR: float = 1.5
    POLL_MAX_INTERVAL: float = 30.0
    POLL_MAX_ATTEMPTS: int = 60
    JOB_RETENTION_SECONDS: int = 24 * 60 * 60
    SWEEP_INTERVAL: float = 3600.0
    SHUTDOWN_GRACE_PERIOD: float = 30.0

    # Redis status cache (optional)
    REDIS_URL: str = "redis://localhost:6379"
    USE_STATUS_CACHE: bool = False
    STATUS_CACHE_TTL: int = 3600

    # Storage - S3 settings (optional)
    S3_BUCKET: str = ""
    S3_ENDPOINT: str = ""
    S3_ACCESS_KEY: str = ""
    S3_SECRET_KEY: str = ""
    S3_REGION: str = "us-east-1"

    # Local storage fallback
    LOCAL_STORAGE_PATH: str = "./uploads"
    USE_LOCAL_STORAGE: bool = True

    # Google Cloud Storage
    USE_GCS: bool = False
    GCS_BUCKET_MODELS: str = "modelproxy-models"
    GCP_PROJECT_ID: str = ""

    # Public URL prefix for stored assets; empty means serve through /files/
    ASSET_PUBLIC_BASE_URL: str = ""
    MAX_ASSET_SIZE: int = 200 * 1024 * 1024

    # Input limits
    MAX_FILE_SIZE: int = 10 * 1024 * 1024  # 10MB
    ALLOWED_IMAGE_TYPES: List[str] = ["image/jpeg", "image/png", "image/webp"]
    MAX_TEXT_LENGTH: int = 1000

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:5173"]

    @field_validator('S3_ACCESS_KEY', 'S3_SECRET_KEY', mode='before')
    @classmethod
    def strip_secrets(cls, v):
        """Strip whitespace and newlines from keys loaded from secrets."""
        if isinstance(v, str):
            return v.strip()
        return v

    @field_validator('PROVIDER_API_URL', 'API_BASE_URL', 'ASSET_PUBLIC_BASE_URL')
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
