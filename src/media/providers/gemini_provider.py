"""Gemini image generation provider (single ``generateContent`` call)."""

from __future__ import annotations

from typing import Any, Dict, List, NoReturn, Optional

import httpx

from src.core.diagnostics import DiagnosticSurface, LoggingDiagnosticSurface
from src.core.errors import ExtractionError, GenerationError, ProviderLogicalError, ValidationError
from src.core.logger import get_logger
from src.media.providers.base import GenerationRequest, GenerationResult, ProgressCallback
from src.media.providers.responses import InlineImageResponse
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
from src.media.references import split_data_uri


ASPECT_RATIO_MAP: Dict[str, str] = {
    "16:9": "16:9",
    "9:16": "9:16",
    "1:1": "1:1",
    "4:3": "4:3",
    "3:4": "3:4",
    "21:9": "21:9",
    "match_input_image": "16:9",
}
IMAGE_SIZE_MAP: Dict[str, str] = {
    "1K": "1K",
    "2K": "2K",
    "4K": "4K",
    "720p": "1K",
    "1080p": "2K",
    "1440p": "2K",
    "2160p": "4K",
}
FALLBACK_ASPECT_RATIO = "16:9"
FALLBACK_IMAGE_SIZE = "1K"


class GeminiImageProvider:
    provider_name = "gemini"
    polls_for_completion = False

    def __init__(
        self,
        *,
        api_key: str,
        model: str = "gemini-3-pro-image-preview",
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        diagnostics: Optional[DiagnosticSurface] = None,
        timeout_seconds: int = 120,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._api_key = api_key.strip()
        self._model = model.strip()
        self._base_url = base_url.rstrip("/")
        self._diagnostics = diagnostics or LoggingDiagnosticSurface()
        self._timeout_seconds = max(1, timeout_seconds)
        self._client = client
        self._logger = get_logger("nano.providers.gemini")

    def _endpoint(self) -> str:
        if not self._api_key:
            raise ValidationError("api_key_missing", message="Gemini API key is not set")
        return f"{self._base_url}/models/{self._model}:generateContent"

    @staticmethod
    def build_body(request: GenerationRequest) -> Dict[str, Any]:
        parts: List[Dict[str, Any]] = [{"text": request.prompt}]
        for image in request.reference_images:
            split = split_data_uri(image)
            if split is None:
                continue
            mime_type, data = split
            parts.append({"inlineData": {"mimeType": mime_type, "data": data}})

        return {
            "contents": [{"parts": parts}],
            "generationConfig": {
                "responseModalities": ["IMAGE", "TEXT"],
                "imageConfig": {
                    "aspectRatio": ASPECT_RATIO_MAP.get(request.aspect_ratio, FALLBACK_ASPECT_RATIO),
                    "imageSize": IMAGE_SIZE_MAP.get(request.resolution, FALLBACK_IMAGE_SIZE),
                },
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
        url = self._endpoint()
        headers = json_headers({"x-goog-api-key": self._api_key})

        async with client_scope(self._client, timeout_seconds=self._timeout_seconds) as client:
            try:
                response = await client.post(url, headers=headers, json=self.build_body(request))
            except httpx.HTTPError as exc:
                self._report(network_error(self.provider_name, exc, url))

        raise_for_upstream(response, provider=self.provider_name, diagnostics=self._diagnostics)

        body = read_json(response)
        if body is None:
            self._report(
                ExtractionError(
                    "gemini_invalid_json_response",
                    message="Gemini response is not JSON",
                    details=parse_error_body(response.text),
                )
            )

        try:
            parsed = InlineImageResponse.parse(body)
        except ExtractionError as exc:
            self._report(exc)

        if parsed.error is not None:
            code = parsed.error.get("code")
            self._report(
                ProviderLogicalError(
                    "gemini_error",
                    message=f"API error: {parsed.error.get('message') or 'unknown'}",
                    status_code=code if isinstance(code, int) else None,
                    details=parsed.error,
                )
            )

        try:
            result = parsed.to_result(self.provider_name)
        except ExtractionError as exc:
            self._report(exc)

        self._logger.info("gemini_image_generated", url=describe_url(url), mime_type=result.mime_type)
        return result
