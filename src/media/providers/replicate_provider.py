"""Replicate job-based image provider (create prediction, then poll)."""

from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, NoReturn, Optional

import httpx

from src.core.diagnostics import DiagnosticSurface, LoggingDiagnosticSurface
from src.core.errors import (
    ExtractionError,
    GenerationError,
    ProviderLogicalError,
    TransportError,
    ValidationError,
)
from src.core.logger import get_logger
from src.core.metrics import record_poll_tick
from src.media.providers.base import GenerationRequest, GenerationResult, JobProgress, ProgressCallback
from src.media.providers.responses import JobResponse
from src.media.providers.transport import (
    RelayRouter,
    client_scope,
    describe_url,
    is_success,
    json_headers,
    network_error,
    parse_error_body,
    raise_for_upstream,
    read_json,
    report_and_raise,
    with_cache_buster,
)


ASPECT_RATIO_MAP: Dict[str, str] = {
    "1:1": "1:1",
    "2:3": "2:3",
    "3:2": "3:2",
    "3:4": "3:4",
    "4:3": "4:3",
    "4:5": "4:5",
    "5:4": "5:4",
    "9:16": "9:16",
    "16:9": "16:9",
    "21:9": "21:9",
    "match_input_image": "match_input_image",
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
OUTPUT_FORMAT_MAP: Dict[str, str] = {"png": "png", "jpg": "jpg", "jpeg": "jpg"}
SAFETY_LEVELS = {"block_low_and_above", "block_medium_and_above", "block_only_high"}

FALLBACK_ASPECT_RATIO = "16:9"
FALLBACK_RESOLUTION = "2K"
FALLBACK_OUTPUT_FORMAT = "png"
FALLBACK_SAFETY_LEVEL = "block_only_high"


def _now_ms() -> int:
    return int(time.time() * 1000)


class ReplicateImageProvider:
    provider_name = "replicate"
    polls_for_completion = True

    def __init__(
        self,
        *,
        api_key: str,
        model: str = "google/nano-banana-pro",
        base_url: str = "https://api.replicate.com/v1",
        relay: Optional[RelayRouter] = None,
        diagnostics: Optional[DiagnosticSurface] = None,
        poll_interval_seconds: float = 1.0,
        max_transient_failures: int = 10,
        timeout_seconds: int = 120,
        client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._api_key = api_key.strip()
        self._model = model.strip()
        self._base_url = base_url.rstrip("/")
        self._relay = relay or RelayRouter()
        self._diagnostics = diagnostics or LoggingDiagnosticSurface()
        self._poll_interval_seconds = poll_interval_seconds
        self._max_transient_failures = max(1, max_transient_failures)
        self._timeout_seconds = max(1, timeout_seconds)
        self._client = client
        self._sleep = sleep
        self._clock = clock
        self._logger = get_logger("nano.providers.replicate")

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Token {self._api_key}"}

    def _create_url(self) -> str:
        return f"{self._base_url}/models/{self._model}/predictions"

    @staticmethod
    def build_input(request: GenerationRequest) -> Dict[str, Any]:
        return {
            "prompt": request.prompt,
            "resolution": RESOLUTION_MAP.get(request.resolution, FALLBACK_RESOLUTION),
            "aspect_ratio": ASPECT_RATIO_MAP.get(request.aspect_ratio, FALLBACK_ASPECT_RATIO),
            "output_format": OUTPUT_FORMAT_MAP.get(request.output_format.lower(), FALLBACK_OUTPUT_FORMAT),
            "safety_filter_level": (
                request.safety_filter_level
                if request.safety_filter_level in SAFETY_LEVELS
                else FALLBACK_SAFETY_LEVEL
            ),
            "image_input": list(request.reference_images),
        }

    async def _create(self, client: httpx.AsyncClient, request: GenerationRequest) -> JobResponse:
        url = self._create_url()
        try:
            response = await client.post(
                self._relay.route(url),
                headers=json_headers(self._headers()),
                json={"input": self.build_input(request)},
            )
        except httpx.HTTPError as exc:
            self._report(network_error(self.provider_name, exc, url))

        raise_for_upstream(response, provider=self.provider_name, diagnostics=self._diagnostics)
        body = read_json(response)
        if body is None:
            self._report(
                ExtractionError(
                    "replicate_invalid_json_response",
                    message="Prediction response is not JSON",
                    details=parse_error_body(response.text),
                )
            )
        try:
            job = JobResponse.parse(body)
        except ExtractionError as exc:
            self._report(exc)
        if not job.is_terminal and not job.poll_url:
            self._report(
                ExtractionError(
                    "replicate_missing_poll_url",
                    message="Prediction response has no poll URL",
                    details=job.payload,
                )
            )
        self._logger.info("replicate_job_created", status=job.status, url=describe_url(url))
        return job

    async def _poll(
        self,
        client: httpx.AsyncClient,
        job: JobResponse,
        on_progress: Optional[ProgressCallback],
    ) -> JobResponse:
        started_at = self._clock()
        consecutive_failures = 0
        last_failure: Dict[str, Any] = {}

        while not job.is_terminal:
            if on_progress is not None:
                on_progress(JobProgress(status=job.status, elapsed_seconds=self._clock() - started_at))

            await self._sleep(self._poll_interval_seconds)

            poll_url = with_cache_buster(str(job.poll_url), _now_ms())
            try:
                response = await client.get(self._relay.route(poll_url), headers=self._headers())
            except httpx.HTTPError as exc:
                last_failure = {"error": str(exc) or exc.__class__.__name__}
                response = None

            body = None
            if response is not None:
                if is_success(response):
                    body = read_json(response)
                    if body is None:
                        last_failure = {"status_code": response.status_code, "body": parse_error_body(response.text)}
                else:
                    last_failure = {"status_code": response.status_code, "body": parse_error_body(response.text)}

            if not isinstance(body, dict):
                consecutive_failures += 1
                record_poll_tick(provider=self.provider_name, outcome="transient_failure")
                self._logger.warning(
                    "replicate_poll_transient_failure",
                    consecutive_failures=consecutive_failures,
                    limit=self._max_transient_failures,
                )
                if consecutive_failures >= self._max_transient_failures:
                    self._report(
                        TransportError(
                            "replicate_poll_failed",
                            message=f"Polling failed {consecutive_failures} times in a row",
                            status_code=last_failure.get("status_code"),
                            details={"last_failure": last_failure, "last_job": job.payload},
                        )
                    )
                continue

            consecutive_failures = 0
            record_poll_tick(provider=self.provider_name, outcome="ok")
            job = JobResponse.parse(body, fallback_poll_url=job.poll_url)
            if job.logs:
                self._logger.debug("replicate_job_logs", logs=job.logs)

        return job

    def _report(self, error: GenerationError) -> NoReturn:
        report_and_raise(error, self._diagnostics)

    async def generate(
        self,
        request: GenerationRequest,
        *,
        on_progress: Optional[ProgressCallback] = None,
    ) -> GenerationResult:
        if not self._api_key:
            raise ValidationError("api_key_missing", message="Replicate API key is not set")

        async with client_scope(self._client, timeout_seconds=self._timeout_seconds) as client:
            job = await self._create(client, request)
            job = await self._poll(client, job, on_progress)

        if not job.succeeded:
            self._report(
                ProviderLogicalError(
                    f"replicate_job_{job.status or 'unknown'}",
                    message=f"Generation error: {job.status}",
                    details=job.payload,
                )
            )

        try:
            return job.to_result(self.provider_name)
        except ExtractionError as exc:
            self._report(exc)
