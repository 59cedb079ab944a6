"""User-curated reference library stored under the ``lib_`` namespace."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from src.core.errors import ReferenceLimitError, ValidationError
from src.core.logger import get_logger
from src.media.fetcher import ImageFetcher
from src.media.references import ReferenceImageSet, split_data_uri
from src.storage.keys import LIBRARY_PREFIX, ImageKey, new_library_id
from src.storage.object_store import ObjectStore


logger = get_logger("nano.media.library")


@dataclass(frozen=True)
class LibraryEntry:
    id: str
    image: str
    timestamp: int


class LibraryManager:
    def __init__(
        self,
        store: ObjectStore,
        references: ReferenceImageSet,
        *,
        fetcher: Optional[ImageFetcher] = None,
    ) -> None:
        self._store = store
        self._references = references
        self._fetcher = fetcher

    async def save_image(self, data_uri: str) -> LibraryEntry:
        if split_data_uri(data_uri) is None:
            raise ValidationError("library_image_not_data_uri")
        entry_id = new_library_id()
        stored = await self._store.put(ImageKey.library(entry_id), data_uri)
        logger.info("library_entry_saved", entry_id=entry_id)
        return LibraryEntry(id=entry_id, image=data_uri, timestamp=stored.timestamp)

    async def save_locator(self, locator: str) -> LibraryEntry:
        """Save any image locator (remote URL or data URI) to the library."""

        if locator.startswith("data:"):
            return await self.save_image(locator)
        if self._fetcher is None:
            raise ValidationError("library_fetcher_missing")
        return await self.save_image(await self._fetcher.fetch_as_data_uri(locator))

    async def list_entries(self) -> List[LibraryEntry]:
        entries = await self._store.list_all(LIBRARY_PREFIX)
        return [LibraryEntry(id=entry.key.value, image=entry.payload, timestamp=entry.timestamp) for entry in entries]

    async def delete(self, entry_id: str) -> None:
        await self._store.delete(ImageKey.library(entry_id))
        logger.info("library_entry_deleted", entry_id=entry_id)

    async def add_to_references(self, entry_id: str) -> int:
        if self._references.is_full:
            raise ReferenceLimitError(self._references.limit)
        image = await self._store.get(ImageKey.library(entry_id))
        if image is None:
            raise ValidationError("library_entry_missing", details={"entry_id": entry_id})
        return self._references.add(image)
