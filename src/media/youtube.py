"""YouTube still lookup shared by the thumbnail relay and the direct fallback."""

from __future__ import annotations

import base64
import re
from typing import Optional, Tuple

import httpx


VIDEO_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_-]{11}$")
THUMBNAIL_QUALITIES: Tuple[str, ...] = ("maxresdefault", "hqdefault")


def is_valid_video_id(video_id: Optional[str]) -> bool:
    return bool(video_id) and VIDEO_ID_PATTERN.match(video_id or "") is not None


async def fetch_thumbnail_data_uri(
    client: httpx.AsyncClient,
    video_id: str,
    *,
    base_url: str = "https://img.youtube.com/vi",
) -> Optional[str]:
    """Return the best available still as a JPEG data URI, or ``None``."""

    for quality in THUMBNAIL_QUALITIES:
        url = f"{base_url.rstrip('/')}/{video_id}/{quality}.jpg"
        try:
            response = await client.get(url)
        except httpx.HTTPError:
            continue
        if response.status_code < 200 or response.status_code >= 300:
            continue
        encoded = base64.b64encode(response.content).decode("ascii")
        return f"data:image/jpeg;base64,{encoded}"
    return None
