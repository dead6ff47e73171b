"""
Application configuration and settings.
"""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Remote service
    api_base_url: str = "https://berealapi.fly.dev"
    http_timeout: float = 30.0  # Applies to API calls and asset downloads

    # Login handshake
    phone_min_length: int = 8
    phone_max_length: int = 20
    code_length: int = 6  # One-time codes are fixed-length digits

    # Encoding engine
    ffmpeg_binary: str = "ffmpeg"
    work_root: Path | None = None  # Parent of the engine workspace (default: system temp)
    encode_preset: str = "slideshow"
    frame_recipe: str = "primary_only"  # or "primary_then_secondary"
    frame_duration: float | None = None  # Seconds per still image in the manifest

    # Asset downloads
    download_concurrency: int = 8
    asset_fetch_attempts: int = 1  # 1 = no automatic retry

    # Logging
    log_level: str = "INFO"
    log_format: str = "structured"  # "simple" or "structured"

    # Per-module log levels (optional overrides)
    log_level_remote: str | None = None
    log_level_engine: str | None = None
    log_level_assembler: str | None = None
    log_level_pipeline: str | None = None
    log_level_perf: str | None = None  # PERF timing lines (recap.perf)

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
