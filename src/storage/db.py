"""SQLAlchemy engine/session primitives and health checks."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional, Tuple

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool

from src.core.config import get_settings


Base = declarative_base()


def _is_memory_sqlite(database_url: str) -> bool:
    if not database_url.startswith("sqlite"):
        return False
    tail = database_url.split("://", 1)[-1]
    return tail in {"", "/", "/:memory:"}


def _ensure_sqlite_parent(database_url: str) -> None:
    tail = database_url.split("://", 1)[-1]
    if not tail.startswith("/") or tail == "/":
        return
    path = Path(tail[1:])
    if path.parent and str(path.parent) not in {"", "."}:
        path.parent.mkdir(parents=True, exist_ok=True)


def create_storage_engine(database_url: str) -> Engine:
    kwargs: dict[str, object] = {"future": True}

    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if _is_memory_sqlite(database_url):
            kwargs["poolclass"] = StaticPool
        else:
            _ensure_sqlite_parent(database_url)
    else:
        kwargs["pool_pre_ping"] = True

    return create_engine(database_url, **kwargs)


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_storage_engine(get_settings().database_url)


def create_schema(engine: Engine) -> None:
    load_models()
    Base.metadata.create_all(engine)


def test_connection() -> Tuple[bool, Optional[str]]:
    try:
        with get_engine().connect() as connection:
            connection.execute(text("SELECT 1"))
        return True, None
    except Exception as exc:  # pragma: no cover
        return False, str(exc)


def load_models() -> None:
    """Import ORM models so Base metadata contains all mapped tables."""

    # Import side effect is intentional here.
    import src.storage.models  # noqa: F401
