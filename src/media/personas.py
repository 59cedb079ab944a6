"""Personas: a named left/front/right photo triple usable as one reference bundle.

Metadata lives in the preference store (``nano_personas``); each photo is a
separate object-store entry keyed ``{persona_id}_{position}``. Only personas
whose three photos all resolve are offered for reuse.
"""

from __future__ import annotations

from dataclasses import dataclass
import time
from typing import Callable, Dict, List, Mapping, Tuple

from src.core.errors import ReferenceLimitError, StorageError, ValidationError
from src.core.logger import get_logger
from src.media.references import ReferenceImageSet, split_data_uri
from src.storage.keys import PERSONA_POSITIONS, PERSONA_PREFIX, ImageKey, new_persona_id
from src.storage.object_store import ObjectStore
from src.storage.preferences import PREF_PERSONAS, PreferenceStore


logger = get_logger("nano.media.personas")


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class Persona:
    id: str
    name: str
    created_at: int

    def to_record(self) -> Dict[str, object]:
        return {"id": self.id, "name": self.name, "createdAt": self.created_at}

    @classmethod
    def from_record(cls, record: Mapping[str, object]) -> "Persona":
        return cls(
            id=str(record["id"]),
            name=str(record.get("name") or ""),
            created_at=int(record.get("createdAt") or 0),
        )


class PersonaManager:
    def __init__(
        self,
        store: ObjectStore,
        preferences: PreferenceStore,
        references: ReferenceImageSet,
        *,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self._store = store
        self._preferences = preferences
        self._references = references
        self._clock = clock

    def _read_index(self) -> List[Persona]:
        raw = self._preferences.get_json(PREF_PERSONAS, default=[])
        personas: List[Persona] = []
        if not isinstance(raw, list):
            return personas
        for record in raw:
            if isinstance(record, dict) and str(record.get("id") or "").startswith(PERSONA_PREFIX):
                personas.append(Persona.from_record(record))
        return personas

    def _write_index(self, personas: List[Persona]) -> None:
        self._preferences.set_json(PREF_PERSONAS, [persona.to_record() for persona in personas])

    async def _discard_photos(self, keys: List[ImageKey]) -> None:
        for key in keys:
            try:
                await self._store.delete(key)
            except StorageError as exc:
                logger.warning("persona_photo_delete_failed", image_key=key.value, error=exc.code)

    async def create(self, name: str, photos: Mapping[str, str]) -> Persona:
        cleaned_name = (name or "").strip()
        if not cleaned_name:
            raise ValidationError("persona_name_missing")
        missing = [position for position in PERSONA_POSITIONS if not photos.get(position)]
        if missing:
            raise ValidationError("persona_photos_missing", details={"missing": missing})
        for position in PERSONA_POSITIONS:
            if split_data_uri(photos[position]) is None:
                raise ValidationError("persona_photo_not_data_uri", details={"position": position})

        persona = Persona(id=new_persona_id(), name=cleaned_name, created_at=self._clock())
        saved: List[ImageKey] = []
        try:
            for position in PERSONA_POSITIONS:
                key = ImageKey.persona(persona.id, position)
                await self._store.put(key, photos[position])
                saved.append(key)
            self._write_index([*self._read_index(), persona])
        except StorageError:
            logger.error("persona_save_failed", persona_id=persona.id, saved=len(saved))
            await self._discard_photos(saved)
            raise

        logger.info("persona_created", persona_id=persona.id)
        return persona

    def list_personas(self) -> List[Persona]:
        return self._read_index()

    async def list_complete(self) -> List[Persona]:
        present = {key.value for key in await self._store.list_keys(PERSONA_PREFIX)}
        return [
            persona
            for persona in self._read_index()
            if all(ImageKey.persona(persona.id, position).value in present for position in PERSONA_POSITIONS)
        ]

    async def is_complete(self, persona_id: str) -> bool:
        for position in PERSONA_POSITIONS:
            if not await self._store.contains(ImageKey.persona(persona_id, position)):
                return False
        return True

    async def load_photos(self, persona_id: str) -> Tuple[str, ...]:
        photos: List[str] = []
        for position in PERSONA_POSITIONS:
            photo = await self._store.get(ImageKey.persona(persona_id, position))
            if not photo:
                raise ValidationError(
                    "persona_incomplete",
                    details={"persona_id": persona_id, "missing": position},
                )
            photos.append(photo)
        return tuple(photos)

    async def add_to_references(self, persona_id: str) -> int:
        if self._references.remaining < len(PERSONA_POSITIONS):
            raise ReferenceLimitError(self._references.limit)
        photos = await self.load_photos(persona_id)
        return self._references.add_all(photos)

    async def delete(self, persona_id: str) -> None:
        remaining = [persona for persona in self._read_index() if persona.id != persona_id]
        self._write_index(remaining)
        await self._discard_photos([ImageKey.persona(persona_id, position) for position in PERSONA_POSITIONS])
        logger.info("persona_deleted", persona_id=persona_id)
