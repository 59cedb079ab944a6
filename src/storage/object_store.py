"""Async key -> data-URI image store backed by SQLAlchemy.

The engine is opened lazily. Concurrent first callers share one open task,
so the schema is created exactly once per store instance. Session work runs
in a worker thread. Any engine or filesystem failure is surfaced as
:class:`StorageError`; callers that only use the store as a
cache of a remote image log it and carry on.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import time
from typing import Callable, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from src.core.errors import StorageError
from src.core.logger import get_logger
from src.core.metrics import record_storage_error
from src.storage.db import create_schema, get_engine
from src.storage.keys import ImageKey
from src.storage.models import StoredImage


logger = get_logger("nano.storage")


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class StoredEntry:
    key: ImageKey
    payload: str
    timestamp: int


class ObjectStore:
    def __init__(
        self,
        engine_factory: Callable[[], Engine] = get_engine,
        *,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self._engine_factory = engine_factory
        self._clock = clock
        self._session_factory: Optional[sessionmaker] = None
        self._opening: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()

    def _open_sync(self) -> sessionmaker:
        engine = self._engine_factory()
        create_schema(engine)
        return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)

    async def _open(self) -> sessionmaker:
        try:
            return await asyncio.to_thread(self._open_sync)
        except (SQLAlchemyError, OSError) as exc:
            record_storage_error(operation="open")
            logger.error("object_store_open_failed", error=str(exc))
            raise StorageError("storage_open_failed", details=str(exc)) from exc

    async def _sessions(self) -> sessionmaker:
        if self._session_factory is not None:
            return self._session_factory
        if self._opening is None:
            self._opening = asyncio.ensure_future(self._open())
        opening = self._opening
        try:
            factory = await opening
        except Exception:
            if self._opening is opening:
                self._opening = None
            raise
        self._session_factory = factory
        return factory

    async def _run(self, operation: str, work: Callable[[Session], object]):
        factory = await self._sessions()

        def _transaction():
            with factory() as session:
                result = work(session)
                session.commit()
                return result

        # One connection may back the whole store, so transactions never overlap.
        async with self._lock:
            try:
                return await asyncio.to_thread(_transaction)
            except SQLAlchemyError as exc:
                record_storage_error(operation=operation)
                logger.error("object_store_operation_failed", operation=operation, error=str(exc))
                raise StorageError(f"storage_{operation}_failed", details=str(exc)) from exc

    async def put(self, key: ImageKey, payload: str) -> StoredEntry:
        timestamp = self._clock()

        def _work(session: Session) -> None:
            session.merge(StoredImage(id=key.value, base64=payload, timestamp=timestamp))

        await self._run("put", _work)
        return StoredEntry(key=key, payload=payload, timestamp=timestamp)

    async def get(self, key: ImageKey) -> Optional[str]:
        def _work(session: Session) -> Optional[str]:
            row = session.get(StoredImage, key.value)
            return row.base64 if row is not None else None

        return await self._run("get", _work)

    async def contains(self, key: ImageKey) -> bool:
        def _work(session: Session) -> bool:
            return session.scalar(select(StoredImage.id).where(StoredImage.id == key.value)) is not None

        return await self._run("contains", _work)

    async def delete(self, key: ImageKey) -> None:
        def _work(session: Session) -> None:
            session.execute(delete(StoredImage).where(StoredImage.id == key.value))

        await self._run("delete", _work)

    async def clear(self) -> None:
        def _work(session: Session) -> None:
            session.execute(delete(StoredImage))

        await self._run("clear", _work)

    async def list_all(self, prefix: Optional[str] = None) -> List[StoredEntry]:
        """Return entries newest first, optionally restricted to a key prefix."""

        def _work(session: Session) -> List[StoredEntry]:
            statement = select(StoredImage)
            if prefix:
                statement = statement.where(StoredImage.id.startswith(prefix, autoescape=True))
            statement = statement.order_by(StoredImage.timestamp.desc(), StoredImage.id)
            return [
                StoredEntry(key=ImageKey.parse(row.id), payload=row.base64, timestamp=row.timestamp)
                for row in session.scalars(statement).all()
            ]

        return await self._run("list", _work)

    async def list_keys(self, prefix: Optional[str] = None) -> List[ImageKey]:
        def _work(session: Session) -> List[ImageKey]:
            statement = select(StoredImage.id)
            if prefix:
                statement = statement.where(StoredImage.id.startswith(prefix, autoescape=True))
            statement = statement.order_by(StoredImage.timestamp.desc(), StoredImage.id)
            return [ImageKey.parse(value) for value in session.scalars(statement).all()]

        return await self._run("list_keys", _work)

    async def list_namespace(self, namespace: str) -> List[StoredEntry]:
        entries = await self.list_all()
        return [entry for entry in entries if entry.key.namespace == namespace]
