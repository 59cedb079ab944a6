"""Resolve remote image locators into data URIs."""

from __future__ import annotations

import base64
from typing import Optional

import httpx

from src.core.config import Settings, get_settings
from src.core.errors import TransportError, ValidationError
from src.core.logger import get_logger
from src.media.providers.transport import RelayRouter, client_scope, describe_url, parse_error_body
from src.media.youtube import fetch_thumbnail_data_uri, is_valid_video_id


logger = get_logger("nano.media.fetcher")


class ImageFetcher:
    def __init__(
        self,
        *,
        settings: Optional[Settings] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._relay = RelayRouter(self._settings.relay_url)
        self._client = client

    async def fetch_as_data_uri(self, locator: str) -> str:
        """Data URIs pass through; http(s) URLs are downloaded (via the relay when configured)."""

        if locator.startswith("data:"):
            return locator
        if not (locator.startswith("http://") or locator.startswith("https://")):
            raise ValidationError("image_locator_unsupported", details={"locator": locator[:64]})

        async with client_scope(self._client, timeout_seconds=self._settings.http_timeout_seconds) as client:
            try:
                response = await client.get(self._relay.route(locator))
            except httpx.HTTPError as exc:
                raise TransportError(
                    "image_fetch_failed",
                    message="Failed to fetch image",
                    details={"error": str(exc) or exc.__class__.__name__, "url": describe_url(locator)},
                ) from exc

        if response.status_code < 200 or response.status_code >= 300:
            raise TransportError(
                "image_fetch_failed",
                message="Failed to fetch image via proxy",
                status_code=response.status_code,
                details=parse_error_body(response.text),
            )

        mime_type = response.headers.get("content-type", "image/png").split(";", 1)[0].strip()
        if not mime_type.startswith("image/"):
            mime_type = "image/png"
        encoded = base64.b64encode(response.content).decode("ascii")
        logger.debug("image_fetched", url=describe_url(locator), size_bytes=len(response.content))
        return f"data:{mime_type};base64,{encoded}"

    async def fetch_youtube_thumbnail(self, video_id: str) -> str:
        if not is_valid_video_id(video_id):
            raise ValidationError("invalid_video_id", details={"video_id": video_id})

        relay_url = self._settings.thumbnail_relay_url.strip()
        async with client_scope(self._client, timeout_seconds=self._settings.http_timeout_seconds) as client:
            if not relay_url:
                data_uri = await fetch_thumbnail_data_uri(
                    client,
                    video_id,
                    base_url=self._settings.youtube_thumbnail_base_url,
                )
                if data_uri is None:
                    raise TransportError("thumbnail_not_found", status_code=404, details={"video_id": video_id})
                return data_uri

            try:
                response = await client.get(relay_url, params={"videoId": video_id})
            except httpx.HTTPError as exc:
                raise TransportError(
                    "thumbnail_relay_failed",
                    details={"error": str(exc) or exc.__class__.__name__},
                ) from exc

        if response.status_code < 200 or response.status_code >= 300:
            raise TransportError(
                "thumbnail_relay_failed",
                status_code=response.status_code,
                details=parse_error_body(response.text),
            )
        try:
            body = response.json()
        except ValueError as exc:
            raise TransportError("thumbnail_relay_invalid_json", details=parse_error_body(response.text)) from exc
        data_uri = body.get("base64") if isinstance(body, dict) else None
        if not isinstance(data_uri, str) or not data_uri.startswith("data:"):
            raise TransportError("thumbnail_relay_missing_image", details=body)
        return data_uri
