"""Core configuration for the threat engine."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="THREATSCAN_",
        case_sensitive=False,
        extra="ignore",
    )

    # ── App ──────────────────────────────────────────────────────────────
    app_name: str = "threatscan"
    app_env: Literal["development", "staging", "production"] = "development"
    log_level: str = "INFO"

    # ── Detectors ────────────────────────────────────────────────────────
    enable_detectors: bool = True
    detector_timeout_seconds: float = Field(default=5.0, gt=0)

    # ── Patterns ─────────────────────────────────────────────────────────
    custom_patterns_path: str = ""  # YAML file with extra rule patterns

    # ── Notifications ────────────────────────────────────────────────────
    event_queue_size: int = Field(default=1000, ge=1)
    slack_webhook_url: str = ""
    discord_webhook_url: str = ""
    generic_webhook_url: str = ""
    webhook_min_severity: Literal["low", "medium", "high", "critical"] = "high"
    webhook_timeout_seconds: float = 10.0


@lru_cache
def get_settings() -> Settings:
    """Return cached settings singleton."""
    return Settings()
