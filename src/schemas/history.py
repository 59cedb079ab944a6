"""Schemas for generation history entries."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class GenerationParameters(BaseModel):
    model_config = ConfigDict(frozen=True)

    resolution: str
    aspect_ratio: str
    output_format: str
    safety_filter_level: str
    provider: str


class HistoryItem(BaseModel):
    prompt: str = Field(min_length=1)
    url: str = Field(min_length=1)
    date: datetime
    local_id: Optional[str] = Field(default=None, alias="localId")
    parameters: Optional[GenerationParameters] = None

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    @property
    def is_local(self) -> bool:
        return bool(self.local_id)
