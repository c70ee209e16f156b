"""Environment configuration using pydantic-settings."""

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Client settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Backend (tunnel endpoint pasted by the operator)
    backend_url: str | None = None
    request_timeout_seconds: float = 30.0
    connect_timeout_seconds: float = 10.0
    health_timeout_seconds: float = 10.0
    upload_timeout_seconds: float = 600.0

    # Tunnel interstitial bypass
    tunnel_bypass_header: str = "ngrok-skip-browser-warning"
    user_agent: str = "VideoSearchApp/1.0"

    # Job polling
    poll_interval_seconds: float = 2.0

    # Upload validation
    max_upload_bytes: int = 500 * 1024 * 1024  # 500 MiB
    accepted_video_extensions: list[str] = ["mp4", "avi", "mov", "mkv", "webm"]
    accepted_video_types: list[str] = [
        "video/mp4",
        "video/avi",
        "video/mov",
        "video/mkv",
        "video/webm",
        "video/quicktime",
        "video/x-msvideo",
        "video/x-matroska",
    ]
    upload_concurrent_legs: bool = False

    # Durable storage (unsigned Cloudinary upload)
    cloudinary_cloud_name: str = ""
    cloudinary_upload_preset: str = ""
    cloudinary_folder: str = "video-search"
    cloudinary_tags: str = "surveillance,video-search"
    cloudinary_api_base: str = "https://api.cloudinary.com/v1_1"

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    environment: Literal["development", "production"] = "development"

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == "development"

    @property
    def has_durable_storage(self) -> bool:
        """Check if the unsigned durable-storage upload is configured."""
        return bool(self.cloudinary_cloud_name and self.cloudinary_upload_preset)

    @property
    def cloudinary_upload_url(self) -> str:
        """Unsigned video upload endpoint for the configured cloud."""
        base = self.cloudinary_api_base.rstrip("/")
        return f"{base}/{self.cloudinary_cloud_name}/video/upload"

    @property
    def tunnel_headers(self) -> dict[str, str]:
        """Headers sent with every backend request."""
        return {
            self.tunnel_bypass_header: "true",
            "User-Agent": self.user_agent,
        }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
