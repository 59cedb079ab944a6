"""OpenRouter image provider (chat-completion shaped request)."""

from __future__ import annotations

from typing import Any, Dict, List, NoReturn, Optional

import httpx

from src.core.diagnostics import DiagnosticSurface, LoggingDiagnosticSurface
from src.core.errors import ExtractionError, GenerationError, ProviderLogicalError, ValidationError
from src.core.logger import get_logger
from src.media.providers.base import GenerationRequest, GenerationResult, ProgressCallback
from src.media.providers.responses import ChatCompletionResponse
from src.media.providers.transport import (
    client_scope,
    describe_url,
    json_headers,
    network_error,
    parse_error_body,
    raise_for_upstream,
    read_json,
    report_and_raise,
)


SYSTEM_PROMPT = (
    "You are an image generation assistant. "
    "Generate high-quality YouTube thumbnails based on the user's prompt."
)

ASPECT_RATIO_MAP: Dict[str, str] = {
    "16:9": "16:9",
    "9:16": "9:16",
    "1:1": "1:1",
    "4:3": "4:3",
    "match_input_image": "16:9",
}
RESOLUTION_MAP: Dict[str, str] = {
    "1K": "1K",
    "2K": "2K",
    "4K": "4K",
    "144p": "1K",
    "240p": "1K",
    "360p": "1K",
    "480p": "1K",
    "720p": "1K",
    "1080p": "2K",
    "1440p": "2K",
    "2160p": "4K",
}
FALLBACK_ASPECT_RATIO = "16:9"
FALLBACK_IMAGE_SIZE = "1K"


class OpenRouterImageProvider:
    provider_name = "openrouter"
    polls_for_completion = False

    def __init__(
        self,
        *,
        api_key: str,
        model: str = "google/gemini-3-pro-image-preview",
        api_url: str = "https://openrouter.ai/api/v1/chat/completions",
        referer: str = "https://nanothumbnail.com",
        title: str = "NanoThumbnail",
        diagnostics: Optional[DiagnosticSurface] = None,
        timeout_seconds: int = 120,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._api_key = api_key.strip()
        self._model = model.strip()
        self._api_url = api_url.strip()
        self._referer = referer.strip()
        self._title = title.strip()
        self._diagnostics = diagnostics or LoggingDiagnosticSurface()
        self._timeout_seconds = max(1, timeout_seconds)
        self._client = client
        self._logger = get_logger("nano.providers.openrouter")

    def _headers(self) -> Dict[str, str]:
        if not self._api_key:
            raise ValidationError("api_key_missing", message="OpenRouter API key is not set")
        return json_headers(
            {
                "Authorization": f"Bearer {self._api_key}",
                "HTTP-Referer": self._referer,
                "X-Title": self._title,
            }
        )

    def build_body(self, request: GenerationRequest) -> Dict[str, Any]:
        user_content: List[Dict[str, Any]] = [{"type": "text", "text": request.prompt}]
        for image in request.reference_images:
            user_content.append({"type": "image_url", "image_url": {"url": image}})

        return {
            "model": self._model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": user_content},
            ],
            "modalities": ["image"],
            "image_config": {
                "aspect_ratio": ASPECT_RATIO_MAP.get(request.aspect_ratio, FALLBACK_ASPECT_RATIO),
                "image_size": RESOLUTION_MAP.get(request.resolution, FALLBACK_IMAGE_SIZE),
            },
        }

    def _report(self, error: GenerationError) -> NoReturn:
        report_and_raise(error, self._diagnostics)

    async def generate(
        self,
        request: GenerationRequest,
        *,
        on_progress: Optional[ProgressCallback] = None,
    ) -> GenerationResult:
        del on_progress
        headers = self._headers()

        async with client_scope(self._client, timeout_seconds=self._timeout_seconds) as client:
            try:
                response = await client.post(self._api_url, headers=headers, json=self.build_body(request))
            except httpx.HTTPError as exc:
                self._report(network_error(self.provider_name, exc, self._api_url))

        raise_for_upstream(response, provider=self.provider_name, diagnostics=self._diagnostics)

        body = read_json(response)
        if body is None:
            self._report(
                ExtractionError(
                    "openrouter_invalid_json_response",
                    message="OpenRouter response is not JSON",
                    details=parse_error_body(response.text),
                )
            )

        try:
            parsed = ChatCompletionResponse.parse(body)
        except ExtractionError as exc:
            self._report(exc)

        if parsed.error is not None:
            self._report(
                ProviderLogicalError(
                    "openrouter_error",
                    message=f"API error: {parsed.error.get('message') or 'unknown'}",
                    details=parsed.error,
                )
            )

        try:
            result = parsed.to_result(self.provider_name)
        except ExtractionError as exc:
            self._report(exc)

        self._logger.info("openrouter_image_generated", url=describe_url(self._api_url), mime_type=result.mime_type)
        return result
