"""SQLAlchemy ORM models for the local image store and persisted preferences."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Index, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from src.storage.db import Base


class StoredImage(Base):
    __tablename__ = "images"

    id: Mapped[str] = mapped_column(String(160), primary_key=True)
    base64: Mapped[str] = mapped_column(Text, nullable=False)
    timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)

    __table_args__ = (Index("ix_images_timestamp", "timestamp"),)


class PreferenceEntry(Base):
    __tablename__ = "preferences"

    key: Mapped[str] = mapped_column(String(120), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
