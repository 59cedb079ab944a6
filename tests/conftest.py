from __future__ import annotations

import base64
from typing import Callable, List

import httpx
import pytest

from src.core.config import Settings
from src.core.diagnostics import CollectingDiagnosticSurface
from src.core.metrics import reset_metrics_for_tests
from src.session.state import SessionContext
from src.storage.db import create_storage_engine
from src.storage.object_store import ObjectStore
from src.storage.preferences import PreferenceStore


PNG_BYTES = b"\x89PNG\r\n\x1a\nfake-png"
PNG_DATA_URI = "data:image/png;base64," + base64.b64encode(PNG_BYTES).decode("ascii")


def make_data_uri(label: str, mime_type: str = "image/png") -> str:
    return f"data:{mime_type};base64," + base64.b64encode(label.encode("utf-8")).decode("ascii")


class RecordingTransport:
    """``httpx.MockTransport`` handler that records every request it answers."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]) -> None:
        self._handler = handler
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self._handler(request)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


class CountingClock:
    def __init__(self, start: int = 1_700_000_000_000) -> None:
        self.value = start

    def __call__(self) -> int:
        self.value += 1
        return self.value


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
def _reset_metrics() -> None:
    reset_metrics_for_tests()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        env="test",
        database_url="sqlite+pysqlite:///:memory:",
        relay_url="",
        thumbnail_relay_url="",
        replicate_poll_interval_seconds=0.01,
        replicate_max_transient_poll_failures=3,
    )


@pytest.fixture
def engine():
    engine = create_storage_engine("sqlite+pysqlite:///:memory:")
    yield engine
    engine.dispose()


@pytest.fixture
def preferences(engine) -> PreferenceStore:
    return PreferenceStore(lambda: engine)


@pytest.fixture
def store(engine) -> ObjectStore:
    return ObjectStore(lambda: engine, clock=CountingClock())


@pytest.fixture
def diagnostics() -> CollectingDiagnosticSurface:
    return CollectingDiagnosticSurface()


@pytest.fixture
def session(preferences, settings) -> SessionContext:
    return SessionContext.load(preferences, settings)
