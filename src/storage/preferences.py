"""Persisted client preferences (API keys, provider, history list)."""

from __future__ import annotations

import json
from typing import Any, Callable, Dict, Mapping, Optional

from sqlalchemy import delete, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from src.core.errors import StorageError
from src.core.logger import get_logger
from src.storage.db import create_schema, get_engine
from src.storage.models import PreferenceEntry


PREF_API_KEY = "nano_api_key"
PREF_API_KEY_TEMPLATE = "nano_api_key_{provider}"
PREF_PROVIDER = "nano_provider"
PREF_SAVE_LOCALLY = "nano_save_locally"
PREF_HISTORY = "nano_history"
PREF_PERSONAS = "nano_personas"


logger = get_logger("nano.storage.preferences")


def api_key_preference(provider: str) -> str:
    return PREF_API_KEY_TEMPLATE.format(provider=provider)


class PreferenceStore:
    """Synchronous string key/value store; several keys can be written in one transaction."""

    def __init__(self, engine_factory: Callable[[], Engine] = get_engine) -> None:
        self._engine_factory = engine_factory
        self._session_factory: Optional[sessionmaker] = None

    def _sessions(self) -> sessionmaker:
        if self._session_factory is None:
            try:
                engine = self._engine_factory()
                create_schema(engine)
            except (SQLAlchemyError, OSError) as exc:
                logger.error("preferences_open_failed", error=str(exc))
                raise StorageError("preferences_open_failed", details=str(exc)) from exc
            self._session_factory = sessionmaker(
                bind=engine,
                autoflush=False,
                autocommit=False,
                expire_on_commit=False,
            )
        return self._session_factory

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        try:
            with self._sessions()() as session:
                row = session.get(PreferenceEntry, key)
                return row.value if row is not None else default
        except SQLAlchemyError as exc:
            logger.error("preference_read_failed", key=key, error=str(exc))
            raise StorageError("preference_read_failed", details=str(exc)) from exc

    def set(self, key: str, value: str) -> None:
        self.set_many({key: value})

    def set_many(self, values: Mapping[str, str]) -> None:
        try:
            with self._sessions()() as session:
                for key, value in values.items():
                    session.merge(PreferenceEntry(key=key, value=value))
                session.commit()
        except SQLAlchemyError as exc:
            logger.error("preference_write_failed", keys=sorted(values.keys()), error=str(exc))
            raise StorageError("preference_write_failed", details=str(exc)) from exc

    def delete(self, key: str) -> None:
        try:
            with self._sessions()() as session:
                session.execute(delete(PreferenceEntry).where(PreferenceEntry.key == key))
                session.commit()
        except SQLAlchemyError as exc:
            raise StorageError("preference_delete_failed", details=str(exc)) from exc

    def all(self) -> Dict[str, str]:
        try:
            with self._sessions()() as session:
                rows = session.scalars(select(PreferenceEntry)).all()
                return {row.key: row.value for row in rows}
        except SQLAlchemyError as exc:
            raise StorageError("preference_read_failed", details=str(exc)) from exc

    def get_json(self, key: str, default: Any = None) -> Any:
        raw = self.get(key)
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("preference_invalid_json", key=key)
            return default

    def set_json(self, key: str, value: Any) -> None:
        self.set(key, json.dumps(value, separators=(",", ":"), ensure_ascii=True))
