"""Application configuration settings.

All configuration values are loaded from environment variables (.env file).
No credentials are hardcoded here; every provider credential defaults to empty.
"""

from typing import Optional
from pydantic_settings import BaseSettings


MIB = 1024 * 1024


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    PROJECT_NAME: str = "Video Host Uploader"
    VERSION: str = "0.1.0"
    ENVIRONMENT: str = "development"
    DEBUG: bool = False

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    # Redis (session store and Celery broker)
    REDIS_URL: str = "redis://localhost:6379/0"

    # Mux
    MUX_TOKEN_ID: str = ""
    MUX_TOKEN_SECRET: str = ""
    MUX_API_URL: str = "https://api.mux.com"

    # Vimeo
    VIMEO_ACCESS_TOKEN: str = ""
    VIMEO_API_URL: str = "https://api.vimeo.com"
    VIMEO_DEFAULT_FOLDER: Optional[str] = None

    # Provider selection
    DEFAULT_PROVIDER: str = "vimeo"
    DEFAULT_CORS_ORIGIN: str = "*"

    # HTTP
    HTTP_TIMEOUT_SECONDS: float = 30.0
    TRANSFER_TIMEOUT_SECONDS: float = 300.0

    # Transfer engine
    UPLOAD_CHUNK_SIZE: int = 5 * MIB
    UPLOAD_MAX_ATTEMPTS: int = 3
    UPLOAD_RETRY_DELAY_SECONDS: float = 1.0
    UPLOAD_RETRY_MAX_DELAY_SECONDS: float = 30.0
    UPLOAD_RETRY_STRATEGY: str = "linear"  # linear, exponential

    # Status polling
    STATUS_POLL_INTERVAL_SECONDS: float = 2.0
    STATUS_POLL_TIMEOUT_SECONDS: float = 240.0

    # Session persistence
    # SESSION_STORE_BACKEND: redis, file, memory
    SESSION_STORE_BACKEND: str = "redis"
    SESSION_STORE_PATH: str = "./.upload_state.json"
    UPLOAD_CACHE_KEY: str = "video-upload.upload_cache"

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


settings = Settings()
