"""FastAPI application entrypoint for the NanoThumbnail relays."""

from __future__ import annotations

from time import perf_counter
from typing import Optional
from urllib.parse import urlsplit
from uuid import uuid4

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
import httpx

from src.core.config import get_settings
from src.core.logger import bind_request_context, clear_request_context, get_logger
from src.core.metrics import record_http_request, record_relay_request, render_prometheus_metrics
from src.media.youtube import fetch_thumbnail_data_uri, is_valid_video_id
from src.storage.db import load_models
from src.storage.db import test_connection as test_db_connection


FORWARDED_HEADERS = ("authorization", "content-type", "x-goog-api-key")

settings = get_settings()
logger = get_logger("nano.api")

app = FastAPI(title=settings.app_name, version=settings.app_version)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "x-goog-api-key"],
)


def _build_upstream_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=settings.http_timeout_seconds)


def _target_origin(target_url: str) -> Optional[str]:
    parts = urlsplit(target_url)
    if parts.scheme not in {"http", "https"} or not parts.netloc:
        return None
    return f"{parts.scheme}://{parts.netloc}"


def _is_allowed_target(target_url: str) -> bool:
    origin = _target_origin(target_url)
    return origin is not None and origin in settings.allowed_relay_origins


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    started_at = perf_counter()
    request_id = request.headers.get("x-request-id", str(uuid4()))
    bind_request_context(request_id=request_id)

    status_code = 500
    try:
        response = await call_next(request)
        status_code = int(response.status_code)
    finally:
        duration = perf_counter() - started_at
        if settings.metrics_enabled:
            record_http_request(
                method=request.method,
                path=request.url.path,
                status_code=status_code,
                duration_seconds=duration,
            )
        clear_request_context()

    response.headers["x-request-id"] = request_id
    return response


@app.on_event("startup")
def on_startup() -> None:
    load_models()
    logger.info(
        "application_startup",
        env=settings.env,
        version=settings.app_version,
        metrics_enabled=settings.metrics_enabled,
        allowed_relay_origins=settings.allowed_relay_origins,
    )


@app.api_route("/relay", methods=["GET", "POST"])
async def relay(request: Request, url: Optional[str] = None) -> Response:
    if not url:
        return JSONResponse(status_code=400, content={"error": "Missing url parameter"})

    if not _is_allowed_target(url):
        record_relay_request(target_host=urlsplit(url).netloc or "invalid", status="forbidden")
        logger.warning("relay_target_forbidden", target_origin=_target_origin(url))
        return JSONResponse(status_code=403, content={"error": "Forbidden: target URL is not allowed"})

    target_host = urlsplit(url).netloc
    headers = {name: request.headers[name] for name in FORWARDED_HEADERS if name in request.headers}
    body = await request.body() if request.method != "GET" else None

    try:
        async with _build_upstream_client() as client:
            upstream = await client.request(request.method, url, headers=headers, content=body)
    except httpx.HTTPError as exc:
        record_relay_request(target_host=target_host, status="failed")
        logger.error("relay_upstream_failed", target_host=target_host, error=str(exc))
        return JSONResponse(
            status_code=502,
            content={"error": "Proxy request failed", "details": str(exc) or exc.__class__.__name__},
        )

    record_relay_request(target_host=target_host, status=str(upstream.status_code))
    return Response(
        content=upstream.content,
        status_code=upstream.status_code,
        media_type=upstream.headers.get("content-type") or "application/json",
    )


@app.get("/youtube-thumbnail")
async def youtube_thumbnail(videoId: Optional[str] = None) -> JSONResponse:
    if not is_valid_video_id(videoId):
        return JSONResponse(status_code=400, content={"error": "Missing or invalid videoId parameter"})

    async with _build_upstream_client() as client:
        data_uri = await fetch_thumbnail_data_uri(
            client,
            videoId,
            base_url=settings.youtube_thumbnail_base_url,
        )

    if data_uri is None:
        logger.info("youtube_thumbnail_not_found", video_id=videoId)
        return JSONResponse(status_code=404, content={"error": "Thumbnail not found"})
    return JSONResponse(status_code=200, content={"base64": data_uri})


@app.get("/health")
def health() -> JSONResponse:
    db_ok, db_error = test_db_connection()
    status = "ok" if db_ok else "degraded"

    payload = {
        "status": status,
        "env": settings.env,
        "services": {
            "database": {"ok": db_ok, "error": db_error},
        },
    }

    return JSONResponse(content=payload, status_code=200 if db_ok else 503)


@app.get("/version")
def version() -> dict[str, str]:
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "env": settings.env,
    }


@app.get("/metrics")
def metrics() -> PlainTextResponse:
    if not settings.metrics_enabled:
        return PlainTextResponse("metrics disabled\n", status_code=404)

    payload = render_prometheus_metrics(
        app_name=settings.app_name,
        app_version=settings.app_version,
        env=settings.env,
    )
    return PlainTextResponse(
        payload,
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
