"""Application configuration."""

import os

from pydantic_settings import BaseSettings, SettingsConfigDict

_ENVIRONMENT = os.getenv("ENVIRONMENT", "local")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    api_key: str
    openai_api_key: str
    openai_ocr_model: str = "gpt-4o-mini"
    openai_grading_model: str = "gpt-4o"
    openai_reasoning_effort: str | None = None
    openai_store: bool = False
    session_ttl_seconds: int = 1800
    max_image_bytes: int = 10 * 1024 * 1024
    grading_timeout_seconds: float = 90.0
    estimated_grading_time_ms: int = 25000
    max_score: int = 10
    sweep_interval_seconds: float = 120.0
    sweep_retention_seconds: int = 300
    session_store_dir: str | None = None
    supabase_url: str | None = None
    supabase_service_key: str | None = None
    environment: str = _ENVIRONMENT

    model_config = SettingsConfigDict(
        env_file=(f".env.{_ENVIRONMENT}", ".env"),
        extra="ignore",
    )


def use_supabase(settings: Settings) -> bool:
    """Return true when both Supabase settings are configured."""
    return bool(settings.supabase_url and settings.supabase_service_key)
