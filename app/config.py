"""
Application configuration using pydantic-settings.
Loads from environment variables / .env file.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "codrider"
    app_env: Literal["development", "staging", "production"] = "development"
    debug: bool = False

    # API Server
    host: str = "0.0.0.0"
    port: int = 8000

    # Postgres (asyncpg) in production, aiosqlite locally
    database_url: str = "sqlite+aiosqlite:///./codrider.db"
    db_pool_size: int = 5
    db_max_overflow: int = 10

    # Redis (webhook fast-path dedupe + Celery broker)
    redis_url: str = ""
    processed_event_ttl_seconds: int = 86400

    # PayRex webhook. Empty secret disables signature verification.
    payrex_webhook_secret: str = ""

    # Static QRPH image provisioned in the PayRex dashboard
    static_qrph_image_url: str = "/static-qrph.png"

    # Cloudinary (proof-of-delivery photos)
    cloudinary_cloud_name: str = ""
    cloudinary_api_key: str = ""
    cloudinary_api_secret: str = ""
    pod_upload_folder: str = "codrider/pod"

    # Admin
    admin_api_key: str = ""

    # Rider client polling
    status_poll_interval_seconds: int = Field(default=10, ge=10)

    # Offline action replay
    action_replay_batch_size: int = 100
    action_max_attempts: int = 5

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def cloudinary_configured(self) -> bool:
        return bool(
            self.cloudinary_cloud_name
            and self.cloudinary_api_key
            and self.cloudinary_api_secret
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
