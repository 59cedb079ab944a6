"""HTTP plumbing shared by provider adapters: relay routing and upstream errors."""

from __future__ import annotations

from contextlib import asynccontextmanager
import json
from typing import Any, AsyncIterator, Dict, NoReturn, Optional
from urllib.parse import urlencode, urlsplit

import httpx

from src.core.diagnostics import DiagnosticReport, DiagnosticSurface
from src.core.errors import ErrorDetails, GenerationError, TransportError


ERROR_TITLE = "Generation failed"
MAX_MESSAGE_DETAIL = 240


class RelayRouter:
    """Prefix target URLs with the CORS relay when one is configured."""

    def __init__(self, relay_url: str = "") -> None:
        self._relay_url = relay_url.strip()

    @property
    def enabled(self) -> bool:
        return bool(self._relay_url)

    def route(self, target_url: str) -> str:
        if not self._relay_url:
            return target_url
        separator = "&" if "?" in self._relay_url else "?"
        return f"{self._relay_url}{separator}{urlencode({'url': target_url})}"


def with_cache_buster(url: str, timestamp_ms: int) -> str:
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}t={timestamp_ms}"


def describe_url(url: str) -> str:
    """Host and path only, so query-string credentials never reach the logs."""

    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}{parts.path}"


def parse_error_body(text: str) -> ErrorDetails:
    try:
        parsed: Any = json.loads(text)
    except ValueError:
        return {"rawResponse": text}
    if isinstance(parsed, dict):
        return parsed
    return {"response": parsed}


def _short(text: str) -> str:
    detail = text.strip()
    if len(detail) > MAX_MESSAGE_DETAIL:
        detail = detail[:MAX_MESSAGE_DETAIL] + "..."
    return detail


def is_success(response: httpx.Response) -> bool:
    return 200 <= response.status_code < 300


def report_and_raise(error: GenerationError, diagnostics: DiagnosticSurface) -> NoReturn:
    diagnostics.report(DiagnosticReport.from_error(error, title=ERROR_TITLE))
    raise error


def raise_for_upstream(
    response: httpx.Response,
    *,
    provider: str,
    diagnostics: DiagnosticSurface,
) -> None:
    """Report and raise a TransportError unless the response is 2xx."""

    if is_success(response):
        return
    text = response.text
    report_and_raise(
        TransportError(
            f"{provider}_request_failed",
            message=f"API error ({response.status_code}): {_short(text)}",
            status_code=response.status_code,
            details=parse_error_body(text),
        ),
        diagnostics,
    )


def network_error(provider: str, exc: httpx.HTTPError, url: str) -> TransportError:
    return TransportError(
        f"{provider}_network_error",
        message=f"Network error contacting {describe_url(url)}",
        details={"error": str(exc) or exc.__class__.__name__, "url": describe_url(url)},
    )


def read_json(response: httpx.Response) -> Optional[Any]:
    try:
        return response.json()
    except ValueError:
        return None


def json_headers(extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    headers = {"Content-Type": "application/json"}
    if extra:
        headers.update(extra)
    return headers


@asynccontextmanager
async def client_scope(
    client: Optional[httpx.AsyncClient],
    *,
    timeout_seconds: float,
) -> AsyncIterator[httpx.AsyncClient]:
    if client is not None:
        yield client
        return
    async with httpx.AsyncClient(timeout=timeout_seconds) as owned:
        yield owned
