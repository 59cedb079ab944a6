"""Per-session state: credentials, pending request fields, references and history.

A :class:`SessionContext` is created explicitly and passed to every manager;
nothing here is module-global, so independent sessions (tests included) do not
share state.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional

from pydantic import ValidationError as SchemaValidationError

from src.core.config import SUPPORTED_PROVIDERS, Settings, get_settings
from src.core.errors import ValidationError
from src.core.logger import get_logger
from src.media.references import ReferenceImageSet
from src.schemas.history import HistoryItem
from src.storage.preferences import (
    PREF_API_KEY,
    PREF_HISTORY,
    PREF_PROVIDER,
    PREF_SAVE_LOCALLY,
    PreferenceStore,
    api_key_preference,
)


DEFAULT_RESOLUTION = "2K"
DEFAULT_ASPECT_RATIO = "16:9"
DEFAULT_OUTPUT_FORMAT = "png"
DEFAULT_SAFETY_FILTER_LEVEL = "block_only_high"

logger = get_logger("nano.session")


def normalize_provider(provider: str) -> str:
    normalized = (provider or "").strip().lower()
    if normalized not in SUPPORTED_PROVIDERS:
        raise ValidationError("unknown_provider", details={"provider": provider})
    return normalized


class CredentialState:
    """Selected provider plus one stored key per provider.

    ``active_key`` is always the slot of the selected provider; the persisted
    alias (``nano_api_key``) is written in the same transaction as the slot.
    """

    def __init__(self, preferences: PreferenceStore, *, default_provider: str) -> None:
        self._preferences = preferences
        self._migrate_legacy_key()

        stored_provider = preferences.get(PREF_PROVIDER)
        try:
            self.provider = normalize_provider(stored_provider or default_provider)
        except ValidationError:
            logger.warning("stored_provider_unknown", provider=stored_provider)
            self.provider = normalize_provider(default_provider)

        self.api_key_by_provider: Dict[str, str] = {
            provider: preferences.get(api_key_preference(provider)) or "" for provider in SUPPORTED_PROVIDERS
        }

    def _migrate_legacy_key(self) -> None:
        legacy_key = (self._preferences.get(PREF_API_KEY) or "").strip()
        if not legacy_key:
            return
        has_slots = any(self._preferences.get(api_key_preference(provider)) for provider in SUPPORTED_PROVIDERS)
        if has_slots:
            return
        values = {api_key_preference("replicate"): legacy_key}
        if self._preferences.get(PREF_PROVIDER) is None:
            values[PREF_PROVIDER] = "replicate"
        self._preferences.set_many(values)
        logger.info("legacy_api_key_migrated", target_provider="replicate")

    @property
    def active_key(self) -> str:
        return self.api_key_by_provider.get(self.provider, "")

    def key_for(self, provider: str) -> str:
        return self.api_key_by_provider.get(normalize_provider(provider), "")

    def select_provider(self, provider: str) -> None:
        normalized = normalize_provider(provider)
        self._preferences.set_many(
            {
                PREF_PROVIDER: normalized,
                PREF_API_KEY: self.api_key_by_provider.get(normalized, ""),
            }
        )
        self.provider = normalized

    def save_api_key(self, key: str, provider: Optional[str] = None) -> None:
        target = normalize_provider(provider or self.provider)
        cleaned = (key or "").strip()
        if not cleaned:
            raise ValidationError("api_key_missing", message="Please enter an API key")

        values = {api_key_preference(target): cleaned}
        if target == self.provider:
            values[PREF_API_KEY] = cleaned
        self._preferences.set_many(values)
        self.api_key_by_provider[target] = cleaned


@dataclass
class PendingRequest:
    """Form fields for the next generation."""

    prompt: str = ""
    resolution: str = DEFAULT_RESOLUTION
    aspect_ratio: str = DEFAULT_ASPECT_RATIO
    output_format: str = DEFAULT_OUTPUT_FORMAT
    safety_filter_level: str = DEFAULT_SAFETY_FILTER_LEVEL

    def snapshot(self) -> "PendingRequest":
        return replace(self)


def load_history(preferences: PreferenceStore, *, limit: int) -> List[HistoryItem]:
    """Read the persisted history, keeping only entries with a local copy."""

    raw = preferences.get_json(PREF_HISTORY, default=[])
    if not isinstance(raw, list):
        return []

    items: List[HistoryItem] = []
    for entry in raw:
        try:
            item = HistoryItem.model_validate(entry)
        except SchemaValidationError:
            logger.warning("history_entry_invalid")
            continue
        if item.is_local:
            items.append(item)
    return items[:limit]


@dataclass
class SessionContext:
    settings: Settings
    preferences: PreferenceStore
    credentials: CredentialState
    references: ReferenceImageSet
    pending: PendingRequest = field(default_factory=PendingRequest)
    history: List[HistoryItem] = field(default_factory=list)
    save_locally: bool = False
    generating: bool = False

    @classmethod
    def load(cls, preferences: PreferenceStore, settings: Optional[Settings] = None) -> "SessionContext":
        resolved = settings or get_settings()
        return cls(
            settings=resolved,
            preferences=preferences,
            credentials=CredentialState(preferences, default_provider=resolved.default_provider),
            references=ReferenceImageSet(limit=resolved.reference_image_limit),
            history=load_history(preferences, limit=resolved.history_limit),
            save_locally=preferences.get(PREF_SAVE_LOCALLY) == "true",
        )

    def set_save_locally(self, enabled: bool) -> None:
        self.preferences.set(PREF_SAVE_LOCALLY, "true" if enabled else "false")
        self.save_locally = enabled

    def persist_history(self) -> None:
        self.preferences.set_json(
            PREF_HISTORY,
            [item.model_dump(mode="json", by_alias=True, exclude_none=True) for item in self.history],
        )
