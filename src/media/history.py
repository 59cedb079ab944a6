"""Generation history: capped list, eviction policy and reuse helpers."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence

from src.core.errors import ReferenceLimitError, StorageError, TransportError, ValidationError
from src.core.logger import get_logger
from src.media.fetcher import ImageFetcher
from src.media.providers.base import GenerationResult
from src.schemas.history import GenerationParameters, HistoryItem
from src.session.state import PendingRequest, SessionContext
from src.storage.keys import ImageKey, new_history_id
from src.storage.object_store import ObjectStore


logger = get_logger("nano.media.history")


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def evict_history(items: Sequence[HistoryItem], *, limit: int) -> List[HistoryItem]:
    """Trim ``items`` (newest first) to ``limit`` entries.

    Entries without a local copy go first, oldest of them first. Only when
    every entry is stored locally is the overall oldest entry dropped.
    """

    result = list(items)
    while len(result) > limit:
        for index in range(len(result) - 1, -1, -1):
            if not result[index].is_local:
                del result[index]
                break
        else:
            result.pop()
    return result


class HistoryManager:
    def __init__(
        self,
        session: SessionContext,
        store: ObjectStore,
        *,
        fetcher: Optional[ImageFetcher] = None,
        clock: Callable[[], datetime] = _now_utc,
    ) -> None:
        self._session = session
        self._store = store
        self._fetcher = fetcher or ImageFetcher(settings=session.settings)
        self._clock = clock
        self._lock = asyncio.Lock()

    @property
    def items(self) -> List[HistoryItem]:
        return list(self._session.history)

    async def add_to_history(
        self,
        prompt: str,
        url: str,
        *,
        local_id: Optional[str] = None,
        parameters: Optional[GenerationParameters] = None,
    ) -> HistoryItem:
        item = HistoryItem(
            prompt=prompt,
            url=url,
            date=self._clock(),
            local_id=local_id,
            parameters=parameters,
        )

        async with self._lock:
            previous = self._session.history
            updated = evict_history([item, *previous], limit=self._session.settings.history_limit)
            kept = {id(entry) for entry in updated}
            evicted = [entry for entry in previous if id(entry) not in kept]
            self._session.history = updated
            try:
                self._session.persist_history()
            except StorageError as exc:
                logger.warning("history_persist_failed", error=exc.code)

        for entry in evicted:
            logger.info("history_entry_evicted", local=entry.is_local)
            if entry.local_id:
                try:
                    await self._store.delete(ImageKey.history(entry.local_id))
                except StorageError as exc:
                    logger.warning("history_image_delete_failed", local_id=entry.local_id, error=exc.code)
        return item

    async def save_locally(self, locator: str) -> Optional[str]:
        """Store the image bytes; returns the local id or ``None`` when that was not possible."""

        try:
            data_uri = await self._fetcher.fetch_as_data_uri(locator)
        except (TransportError, ValidationError) as exc:
            logger.warning("history_local_fetch_failed", error=exc.code)
            return None

        local_id = new_history_id()
        try:
            await self._store.put(ImageKey.history(local_id), data_uri)
        except StorageError as exc:
            logger.warning("history_local_save_failed", error=exc.code)
            return None
        return local_id

    async def record_generation(
        self,
        prompt: str,
        result: GenerationResult,
        parameters: GenerationParameters,
    ) -> HistoryItem:
        local_id = None
        if self._session.save_locally:
            local_id = await self.save_locally(result.image)
        return await self.add_to_history(prompt, result.image, local_id=local_id, parameters=parameters)

    def reuse_generation(self, item: HistoryItem) -> PendingRequest:
        """Copy prompt and parameters into the pending request; nothing is generated."""

        pending = self._session.pending
        pending.prompt = item.prompt
        if item.parameters is not None:
            pending.resolution = item.parameters.resolution
            pending.aspect_ratio = item.parameters.aspect_ratio
            pending.output_format = item.parameters.output_format
            pending.safety_filter_level = item.parameters.safety_filter_level
        return pending

    async def resolve_image(self, item: HistoryItem) -> str:
        """Local copy first, then the original locator."""

        if item.local_id:
            try:
                stored = await self._store.get(ImageKey.history(item.local_id))
            except StorageError as exc:
                logger.warning("history_local_read_failed", local_id=item.local_id, error=exc.code)
                stored = None
            if stored:
                return stored
        return await self._fetcher.fetch_as_data_uri(item.url)

    async def use_as_reference(self, item: HistoryItem) -> int:
        references = self._session.references
        if references.is_full:
            raise ReferenceLimitError(references.limit)
        data_uri = await self.resolve_image(item)
        return references.add(data_uri)
