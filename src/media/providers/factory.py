"""Factory to build the adapter for the selected provider."""

from __future__ import annotations

from typing import Optional

import httpx

from src.core.config import PROVIDER_GEMINI, PROVIDER_OPENROUTER, PROVIDER_REPLICATE, Settings, get_settings
from src.core.diagnostics import DiagnosticSurface
from src.core.errors import ValidationError
from src.media.providers.base import ImageProvider
from src.media.providers.gemini_provider import GeminiImageProvider
from src.media.providers.openrouter_provider import OpenRouterImageProvider
from src.media.providers.replicate_provider import ReplicateImageProvider
from src.media.providers.transport import RelayRouter


def build_image_provider(
    provider: str,
    *,
    api_key: str,
    settings: Optional[Settings] = None,
    diagnostics: Optional[DiagnosticSurface] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> ImageProvider:
    settings = settings or get_settings()
    normalized = provider.strip().lower()
    if normalized == PROVIDER_REPLICATE:
        return ReplicateImageProvider(
            api_key=api_key,
            model=settings.replicate_model,
            base_url=settings.replicate_api_base_url,
            relay=RelayRouter(settings.relay_url),
            diagnostics=diagnostics,
            poll_interval_seconds=settings.replicate_poll_interval_seconds,
            max_transient_failures=settings.replicate_max_transient_poll_failures,
            timeout_seconds=settings.http_timeout_seconds,
            client=client,
        )
    if normalized == PROVIDER_GEMINI:
        return GeminiImageProvider(
            api_key=api_key,
            model=settings.gemini_model,
            base_url=settings.gemini_api_base_url,
            diagnostics=diagnostics,
            timeout_seconds=settings.http_timeout_seconds,
            client=client,
        )
    if normalized == PROVIDER_OPENROUTER:
        return OpenRouterImageProvider(
            api_key=api_key,
            model=settings.openrouter_model,
            api_url=settings.openrouter_api_url,
            referer=settings.openrouter_referer,
            title=settings.openrouter_title,
            diagnostics=diagnostics,
            timeout_seconds=settings.http_timeout_seconds,
            client=client,
        )
    raise ValidationError("unknown_provider", details={"provider": provider})
