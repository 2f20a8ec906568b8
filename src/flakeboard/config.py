"""Configuration settings for flakeboard."""

from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables.

    Only factory functions read these; the ingestion pipeline itself is
    handed an explicit ``OrchestratorConfig``.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_prefix="FLAKEBOARD_",
    )

    # Database
    database_url: str | None = None
    debug: bool = False

    # Blob storage (Supabase-compatible storage API)
    storage_url: str | None = None
    storage_service_key: str | None = None
    screenshot_bucket: str = "test-screenshots"
    steps_bucket: str = "test-steps"
    signed_url_ttl_seconds: int = 31536000

    # Upload behaviour
    duplicate_check_scope_project: bool = True
    materialize_concurrency: int = 8
    compress_images: bool = False
    image_quality: int = 80

    # Retry
    retry_max_retries: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 60.0

    # Logging
    log_level: str = "INFO"
    log_json_format: bool = True

    @property
    def blob_storage_configured(self) -> bool:
        """Return True when both the storage URL and key are present."""
        return bool(self.storage_url and self.storage_service_key)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
