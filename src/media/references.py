"""In-memory reference images supplied as conditioning input."""

from __future__ import annotations

import base64
import mimetypes
from pathlib import Path
import re
from typing import Iterable, List, Optional, Tuple, Union

import aiofiles

from src.core.errors import ReferenceLimitError, ValidationError


DEFAULT_REFERENCE_LIMIT = 14

DATA_URI_PATTERN = re.compile(r"^data:(image/[\w.+-]+);base64,(.+)$", re.DOTALL)


def split_data_uri(data_uri: str) -> Optional[Tuple[str, str]]:
    """Return ``(mime_type, base64_payload)`` or ``None`` if not an image data URI."""

    match = DATA_URI_PATTERN.match(data_uri or "")
    if match is None:
        return None
    return match.group(1), match.group(2)


def to_data_uri(content: bytes, mime_type: str) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(content).decode('ascii')}"


async def read_image_file(path: Union[str, Path], *, mime_type: Optional[str] = None) -> str:
    """Read an image file and return it as a data URI."""

    file_path = Path(path)
    resolved_type = mime_type or mimetypes.guess_type(file_path.name)[0] or ""
    if not resolved_type.startswith("image/"):
        raise ValidationError("not_an_image", details={"file": file_path.name, "mime_type": resolved_type})

    async with aiofiles.open(file_path, "rb") as handle:
        content = await handle.read()
    return to_data_uri(content, resolved_type)


class ReferenceImageSet:
    """Ordered data URIs, capped at ``limit``; order is sent verbatim to providers."""

    def __init__(self, images: Iterable[str] = (), *, limit: int = DEFAULT_REFERENCE_LIMIT) -> None:
        self._limit = limit
        self._images: List[str] = []
        for image in images:
            self.add(image)

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def images(self) -> Tuple[str, ...]:
        return tuple(self._images)

    @property
    def remaining(self) -> int:
        return max(self._limit - len(self._images), 0)

    @property
    def is_full(self) -> bool:
        return len(self._images) >= self._limit

    def __len__(self) -> int:
        return len(self._images)

    def __iter__(self):
        return iter(tuple(self._images))

    def add(self, data_uri: str) -> int:
        """Append one image and return the new count; the set is untouched when full."""

        if self.is_full:
            raise ReferenceLimitError(self._limit)
        if split_data_uri(data_uri) is None:
            raise ValidationError("reference_not_image_data_uri")
        self._images.append(data_uri)
        return len(self._images)

    def add_all(self, data_uris: Iterable[str]) -> int:
        """Append several images atomically: all fit or none are added."""

        pending = list(data_uris)
        if len(pending) > self.remaining:
            raise ReferenceLimitError(self._limit)
        for data_uri in pending:
            if split_data_uri(data_uri) is None:
                raise ValidationError("reference_not_image_data_uri")
        self._images.extend(pending)
        return len(self._images)

    async def add_file(self, path: Union[str, Path], *, mime_type: Optional[str] = None) -> int:
        # Checked again after the read: other adds may land while the file is loading.
        if self.is_full:
            raise ReferenceLimitError(self._limit)
        data_uri = await read_image_file(path, mime_type=mime_type)
        return self.add(data_uri)

    def remove(self, index: int) -> str:
        if index < 0 or index >= len(self._images):
            raise ValidationError("reference_index_out_of_range", details={"index": index})
        return self._images.pop(index)

    def clear(self) -> None:
        self._images.clear()
