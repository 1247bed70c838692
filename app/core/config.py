"""
Configuration management for MediaRelay application.
"""
import os
from typing import Optional

from app.core.exceptions import ConfigurationError


class Settings:
    """Application settings with environment variable support."""

    # Chunked transfer configuration
    # The destination only accepts chunks that are multiples of 256 KiB (except the last one)
    chunk_granularity: int = int(os.getenv("CHUNK_GRANULARITY", "262144"))
    max_chunk_size: int = int(os.getenv("MAX_CHUNK_SIZE", str(8 * 1024 * 1024)))
    max_chunk_attempts: int = int(os.getenv("MAX_CHUNK_ATTEMPTS", "5"))
    retry_base_delay: float = float(os.getenv("RETRY_BASE_DELAY", "1.0"))
    retry_max_delay: float = float(os.getenv("RETRY_MAX_DELAY", "60.0"))
    retry_jitter: bool = os.getenv("RETRY_JITTER", "true").lower() == "true"
    request_timeout: float = float(os.getenv("REQUEST_TIMEOUT", "60.0"))
    probe_timeout: float = float(os.getenv("PROBE_TIMEOUT", "15.0"))
    probe_attempts: int = int(os.getenv("PROBE_ATTEMPTS", "3"))
    prefetch_enabled: bool = os.getenv("PREFETCH_ENABLED", "true").lower() == "true"

    # Destination (YouTube Data API v3)
    upload_endpoint: str = os.getenv(
        "UPLOAD_ENDPOINT", "https://www.googleapis.com/upload/youtube/v3/videos"
    )
    thumbnail_endpoint: str = os.getenv(
        "THUMBNAIL_ENDPOINT", "https://www.googleapis.com/upload/youtube/v3/thumbnails/set"
    )
    channels_endpoint: str = os.getenv(
        "CHANNELS_ENDPOINT", "https://www.googleapis.com/youtube/v3/channels"
    )
    completion_id_field: str = os.getenv("COMPLETION_ID_FIELD", "id")

    # Google OAuth
    auth_endpoint: str = os.getenv("AUTH_ENDPOINT", "https://accounts.google.com/o/oauth2/v2/auth")
    token_endpoint: str = os.getenv("TOKEN_ENDPOINT", "https://oauth2.googleapis.com/token")
    google_client_id: Optional[str] = os.getenv("GOOGLE_CLIENT_ID")
    google_client_secret: Optional[str] = os.getenv("GOOGLE_CLIENT_SECRET")
    google_redirect_uri: Optional[str] = os.getenv("GOOGLE_REDIRECT_URI")
    youtube_scopes: str = os.getenv(
        "YOUTUBE_SCOPES",
        "https://www.googleapis.com/auth/youtube.readonly https://www.googleapis.com/auth/youtube.upload"
    )
    credentials_path: str = os.getenv("CREDENTIALS_PATH", "tokens.json")

    # Redis Configuration
    redis_url: str = os.getenv("REDIS_URL", "redis://localhost:6379")
    redis_host: str = os.getenv("REDIS_HOST", "localhost")
    redis_port: int = int(os.getenv("REDIS_PORT", "6379"))
    redis_db: int = int(os.getenv("REDIS_DB", "0"))
    redis_password: Optional[str] = os.getenv("REDIS_PASSWORD")
    transfer_status_ttl: int = int(os.getenv("TRANSFER_STATUS_TTL", "86400"))  # 24 hours

    # Transfer manager
    max_concurrent_transfers: int = int(os.getenv("MAX_CONCURRENT_TRANSFERS", "3"))
    task_ttl: int = int(os.getenv("TASK_TTL", "3600"))  # 1 hour
    cleanup_interval: int = int(os.getenv("CLEANUP_INTERVAL", "600"))  # 10 minutes

    # Application settings
    environment: str = os.getenv("ENVIRONMENT", "development")
    debug: bool = os.getenv("DEBUG", "false").lower() == "true"
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()

    def validate_chunk_size(self, chunk_size: int) -> int:
        """
        Check that a chunk size respects the destination granularity.

        Args:
            chunk_size: Candidate chunk size in bytes

        Returns:
            The validated chunk size

        Raises:
            ConfigurationError: If the size is not a positive multiple of the granularity
        """
        if chunk_size <= 0 or chunk_size % self.chunk_granularity != 0:
            raise ConfigurationError(
                setting="max_chunk_size",
                reason=f"{chunk_size} is not a positive multiple of {self.chunk_granularity} bytes"
            )
        return chunk_size


# Global settings instance
settings = Settings()
