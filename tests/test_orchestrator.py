import json
from typing import List, Optional

import httpx
import pytest

from conftest import RecordingTransport, make_data_uri
from src.core.errors import ProviderLogicalError, ValidationError
from src.core.metrics import generation_count
from src.media.history import HistoryManager
from src.media.orchestrator import (
    PHASE_FAILED,
    PHASE_IDLE,
    PHASE_POLLING,
    PHASE_SUBMITTING,
    PHASE_SUCCEEDED,
    GenerationOrchestrator,
    build_thumbnail_prompt,
)
from src.media.providers.base import GenerationResult, JobProgress
from src.storage.keys import ImageKey


POLL_URL = "https://api.replicate.com/v1/predictions/p1"


def _replicate_handler(final_status: str, output: Optional[str] = None):
    statuses = ["processing", final_status]

    def _handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return httpx.Response(201, json={"id": "p1", "status": "starting", "urls": {"get": POLL_URL}})
        status = statuses.pop(0)
        body = {"id": "p1", "status": status, "urls": {"get": POLL_URL}}
        if status == "succeeded":
            body["output"] = output
        if status == "failed":
            body["error"] = "model crashed"
        return httpx.Response(200, json=body)

    return _handler


def _orchestrator(session, store, transport, diagnostics, phases: List[str]) -> GenerationOrchestrator:
    def _on_phase(phase: str, progress: Optional[JobProgress]) -> None:
        phases.append(phase)

    return GenerationOrchestrator(
        session,
        HistoryManager(session, store),
        diagnostics=diagnostics,
        http_client=transport.client(),
        on_phase=_on_phase,
    )


@pytest.mark.anyio
async def test_job_provider_success_adds_history_entry(session, store, diagnostics) -> None:
    session.credentials.save_api_key("r8_secret")
    session.pending.prompt = "cat astronaut"
    transport = RecordingTransport(_replicate_handler("succeeded", "https://x/img.png"))
    phases: List[str] = []
    orchestrator = _orchestrator(session, store, transport, diagnostics, phases)
    assert orchestrator.phase == PHASE_IDLE

    item = await orchestrator.generate()

    assert item.url == "https://x/img.png"
    assert item.prompt == "cat astronaut"
    assert item.parameters.provider == "replicate"
    assert item.parameters.resolution == "2K"
    assert session.history == [item]
    assert phases == [PHASE_SUBMITTING, PHASE_POLLING, PHASE_POLLING, PHASE_SUCCEEDED]
    assert session.generating is False
    assert generation_count(provider="replicate", outcome="succeeded") == 1

    create_body = json.loads(transport.requests[0].content)
    assert create_body["input"]["prompt"] == build_thumbnail_prompt("cat astronaut")
    assert create_body["input"]["prompt"].startswith("YouTube thumbnail, catchy")


@pytest.mark.anyio
async def test_job_provider_failure_leaves_history_untouched(session, store, diagnostics) -> None:
    session.credentials.save_api_key("r8_secret")
    session.pending.prompt = "cat astronaut"
    transport = RecordingTransport(_replicate_handler("failed"))
    phases: List[str] = []
    orchestrator = _orchestrator(session, store, transport, diagnostics, phases)

    with pytest.raises(ProviderLogicalError) as exc_info:
        await orchestrator.generate()

    assert exc_info.value.details["error"] == "model crashed"
    assert session.history == []
    assert orchestrator.phase == PHASE_FAILED
    assert phases[-1] == PHASE_FAILED
    assert session.generating is False
    assert generation_count(provider="replicate", outcome="provider") == 1
    assert diagnostics.last.status_code == 500


@pytest.mark.anyio
async def test_missing_prompt_never_reaches_provider(session, store, diagnostics) -> None:
    session.credentials.save_api_key("r8_secret")
    session.pending.prompt = "   "
    transport = RecordingTransport(_replicate_handler("succeeded", "https://x/img.png"))
    orchestrator = _orchestrator(session, store, transport, diagnostics, [])

    with pytest.raises(ValidationError) as exc_info:
        await orchestrator.generate()

    assert exc_info.value.code == "prompt_missing"
    assert transport.requests == []
    assert diagnostics.last.title == "Missing input"


@pytest.mark.anyio
async def test_missing_key_for_selected_provider(session, store, diagnostics) -> None:
    session.credentials.save_api_key("r8_secret")
    session.credentials.select_provider("gemini")
    session.pending.prompt = "cat astronaut"
    transport = RecordingTransport(_replicate_handler("succeeded", "https://x/img.png"))
    orchestrator = _orchestrator(session, store, transport, diagnostics, [])

    with pytest.raises(ValidationError) as exc_info:
        await orchestrator.generate()

    assert exc_info.value.code == "api_key_missing"
    assert transport.requests == []
    assert session.history == []


@pytest.mark.anyio
async def test_synchronous_provider_result_saved_locally(session, store, diagnostics) -> None:
    session.credentials.save_api_key("AIza-secret", provider="gemini")
    session.credentials.select_provider("gemini")
    session.set_save_locally(True)
    session.pending.prompt = "dog chef"
    session.references.add(make_data_uri("face"))

    def _handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={"candidates": [{"content": {"parts": [{"inlineData": {"mimeType": "image/png", "data": "QUJD"}}]}}]},
        )

    transport = RecordingTransport(_handler)
    phases: List[str] = []
    orchestrator = _orchestrator(session, store, transport, diagnostics, phases)

    item = await orchestrator.generate()

    assert phases == [PHASE_SUBMITTING, PHASE_SUCCEEDED]
    assert item.url == "data:image/png;base64,QUJD"
    assert item.is_local
    assert await store.get(ImageKey.history(item.local_id)) == "data:image/png;base64,QUJD"
    sent = json.loads(transport.requests[0].content)
    assert len(sent["contents"][0]["parts"]) == 2


@pytest.mark.anyio
async def test_custom_provider_factory_is_used(session, store, diagnostics) -> None:
    session.credentials.save_api_key("sk-or-secret", provider="openrouter")
    session.credentials.select_provider("openrouter")
    session.pending.prompt = "robot"
    seen = []

    class _StubProvider:
        provider_name = "openrouter"
        polls_for_completion = False

        async def generate(self, request, *, on_progress=None):
            seen.append(request)
            return GenerationResult(provider="openrouter", image="https://cdn.example/robot.png")

    orchestrator = GenerationOrchestrator(
        session,
        HistoryManager(session, store),
        provider_factory=lambda provider, api_key: _StubProvider(),
        diagnostics=diagnostics,
    )

    item = await orchestrator.generate()

    assert item.url == "https://cdn.example/robot.png"
    assert seen[0].api_key == "sk-or-secret"
    assert seen[0].prompt == build_thumbnail_prompt("robot")
