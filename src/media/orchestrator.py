"""Generation orchestration: validate, submit, (poll), record.

One generation runs along a single path::

    idle -> submitting -> (polling) -> succeeded | failed

The orchestrator keeps no queue. Callers are expected to block a second
trigger while ``SessionContext.generating`` is set.
"""

from __future__ import annotations

import time
from typing import Callable, Optional
import uuid

import httpx

from src.core.diagnostics import DiagnosticReport, DiagnosticSurface, LoggingDiagnosticSurface
from src.core.errors import GenerationError, ValidationError
from src.core.logger import bind_generation_context, clear_generation_context, get_logger
from src.core.metrics import record_generation
from src.media.history import HistoryManager
from src.media.providers.base import GenerationRequest, ImageProvider, JobProgress
from src.media.providers.factory import build_image_provider
from src.schemas.history import GenerationParameters, HistoryItem
from src.session.state import SessionContext


PHASE_IDLE = "idle"
PHASE_SUBMITTING = "submitting"
PHASE_POLLING = "polling"
PHASE_SUCCEEDED = "succeeded"
PHASE_FAILED = "failed"

THUMBNAIL_PROMPT_TEMPLATE = (
    "YouTube thumbnail, catchy, high contrast, vibrant colors, 4k, highly detailed, "
    "{prompt}, cinematic lighting, expressive, viral style"
)

ProviderFactory = Callable[[str, str], ImageProvider]
PhaseListener = Callable[[str, Optional[JobProgress]], None]

logger = get_logger("nano.media.orchestrator")


def build_thumbnail_prompt(prompt: str) -> str:
    return THUMBNAIL_PROMPT_TEMPLATE.format(prompt=prompt.strip())


class GenerationOrchestrator:
    def __init__(
        self,
        session: SessionContext,
        history: HistoryManager,
        *,
        provider_factory: Optional[ProviderFactory] = None,
        diagnostics: Optional[DiagnosticSurface] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        on_phase: Optional[PhaseListener] = None,
    ) -> None:
        self._session = session
        self._history = history
        self._diagnostics = diagnostics or LoggingDiagnosticSurface()
        self._http_client = http_client
        self._provider_factory = provider_factory or self._default_provider_factory
        self._on_phase = on_phase
        self.phase = PHASE_IDLE

    def _default_provider_factory(self, provider: str, api_key: str) -> ImageProvider:
        return build_image_provider(
            provider,
            api_key=api_key,
            settings=self._session.settings,
            diagnostics=self._diagnostics,
            client=self._http_client,
        )

    def _set_phase(self, phase: str, progress: Optional[JobProgress] = None) -> None:
        self.phase = phase
        if self._on_phase is not None:
            self._on_phase(phase, progress)

    def _on_progress(self, progress: JobProgress) -> None:
        logger.info("generation_polling", status=progress.status, elapsed_seconds=round(progress.elapsed_seconds, 1))
        self._set_phase(PHASE_POLLING, progress)

    def _validate(self) -> str:
        prompt = self._session.pending.prompt.strip()
        if not prompt:
            raise ValidationError("prompt_missing", message="Please enter a prompt")
        if not self._session.credentials.active_key:
            raise ValidationError("api_key_missing", message="Please enter an API key")
        return prompt

    async def generate(self) -> HistoryItem:
        """Run one generation from the current session snapshot and record it in history."""

        try:
            prompt = self._validate()
        except ValidationError as exc:
            self._diagnostics.report(DiagnosticReport.from_error(exc, title="Missing input"))
            self._set_phase(PHASE_FAILED)
            raise

        pending = self._session.pending.snapshot()
        provider_name = self._session.credentials.provider
        api_key = self._session.credentials.active_key
        parameters = GenerationParameters(
            resolution=pending.resolution,
            aspect_ratio=pending.aspect_ratio,
            output_format=pending.output_format,
            safety_filter_level=pending.safety_filter_level,
            provider=provider_name,
        )
        request = GenerationRequest(
            prompt=build_thumbnail_prompt(prompt),
            aspect_ratio=pending.aspect_ratio,
            resolution=pending.resolution,
            output_format=pending.output_format,
            safety_filter_level=pending.safety_filter_level,
            reference_images=self._session.references.images,
            api_key=api_key,
        )

        generation_id = uuid.uuid4().hex
        bind_generation_context(generation_id, provider_name)
        started_at = time.monotonic()
        self._session.generating = True
        try:
            self._set_phase(PHASE_SUBMITTING)
            logger.info("generation_submitted", reference_images=len(request.reference_images))
            provider = self._provider_factory(provider_name, api_key)
            result = await provider.generate(request, on_progress=self._on_progress)
        except GenerationError as exc:
            self._set_phase(PHASE_FAILED)
            record_generation(
                provider=provider_name,
                outcome=exc.kind,
                duration_seconds=time.monotonic() - started_at,
            )
            logger.warning("generation_failed", kind=exc.kind, code=exc.code, status_code=exc.status_code)
            raise
        except ValidationError:
            self._set_phase(PHASE_FAILED)
            raise
        else:
            record_generation(
                provider=provider_name,
                outcome=PHASE_SUCCEEDED,
                duration_seconds=time.monotonic() - started_at,
            )
            item = await self._history.record_generation(prompt, result, parameters)
            self._set_phase(PHASE_SUCCEEDED)
            logger.info("generation_succeeded", local=item.is_local, data_uri=result.is_data_uri)
            return item
        finally:
            self._session.generating = False
            clear_generation_context()
