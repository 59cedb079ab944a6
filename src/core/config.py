"""Central runtime configuration for NanoThumbnail."""

from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


PROVIDER_REPLICATE = "replicate"
PROVIDER_GEMINI = "gemini"
PROVIDER_OPENROUTER = "openrouter"
SUPPORTED_PROVIDERS = (PROVIDER_REPLICATE, PROVIDER_GEMINI, PROVIDER_OPENROUTER)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    env: str = "development"
    log_level: str = "INFO"
    app_name: str = "nano_thumbnail"
    app_version: str = "0.1.0"
    database_url: str = "sqlite+pysqlite:///data/nano_thumbnail.sqlite"
    relay_url: str = ""
    thumbnail_relay_url: str = ""
    relay_allowed_origins: str = (
        "https://api.replicate.com,https://replicate.delivery,https://generativelanguage.googleapis.com"
    )
    youtube_thumbnail_base_url: str = "https://img.youtube.com/vi"
    default_provider: str = PROVIDER_REPLICATE
    replicate_api_base_url: str = "https://api.replicate.com/v1"
    replicate_model: str = "google/nano-banana-pro"
    replicate_poll_interval_seconds: float = 1.0
    replicate_max_transient_poll_failures: int = 10
    gemini_api_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    gemini_model: str = "gemini-3-pro-image-preview"
    openrouter_api_url: str = "https://openrouter.ai/api/v1/chat/completions"
    openrouter_model: str = "google/gemini-3-pro-image-preview"
    openrouter_referer: str = "https://nanothumbnail.com"
    openrouter_title: str = "NanoThumbnail"
    http_timeout_seconds: int = 120
    history_limit: int = 10
    reference_image_limit: int = 14
    metrics_enabled: bool = True

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def allowed_relay_origins(self) -> list[str]:
        return [origin.strip().rstrip("/") for origin in self.relay_allowed_origins.split(",") if origin.strip()]


def _validate(settings: Settings) -> Settings:
    if settings.default_provider.strip().lower() not in SUPPORTED_PROVIDERS:
        raise ValueError("DEFAULT_PROVIDER must be one of: replicate, gemini, openrouter.")
    if settings.replicate_poll_interval_seconds <= 0:
        raise ValueError("REPLICATE_POLL_INTERVAL_SECONDS must be positive.")
    if settings.replicate_max_transient_poll_failures < 1:
        raise ValueError("REPLICATE_MAX_TRANSIENT_POLL_FAILURES must be at least 1.")
    if settings.http_timeout_seconds <= 0:
        raise ValueError("HTTP_TIMEOUT_SECONDS must be positive.")
    if settings.history_limit <= 0:
        raise ValueError("HISTORY_LIMIT must be positive.")
    if settings.reference_image_limit <= 0:
        raise ValueError("REFERENCE_IMAGE_LIMIT must be positive.")
    if not settings.replicate_model.strip():
        raise ValueError("REPLICATE_MODEL must not be empty.")
    if not settings.gemini_model.strip():
        raise ValueError("GEMINI_MODEL must not be empty.")
    if not settings.openrouter_model.strip():
        raise ValueError("OPENROUTER_MODEL must not be empty.")
    return settings


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return validated settings as a cached singleton."""

    return _validate(Settings())
