"""Namespaced keys for the local image store.

History images use bare ids, the reference library uses ``lib_`` and persona
photos use ``{persona_id}_{position}`` where persona ids start with
``persona_``. Building keys only through :class:`ImageKey` keeps the three
categories from colliding inside the single physical table.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple
import uuid

from src.core.errors import ValidationError


NAMESPACE_HISTORY = "history"
NAMESPACE_LIBRARY = "library"
NAMESPACE_PERSONA = "persona"

LIBRARY_PREFIX = "lib_"
PERSONA_PREFIX = "persona_"
RESERVED_PREFIXES: Tuple[str, ...] = (LIBRARY_PREFIX, PERSONA_PREFIX)

PERSONA_POSITIONS: Tuple[str, ...] = ("left", "front", "right")


def new_history_id() -> str:
    return uuid.uuid4().hex


def new_library_id() -> str:
    return f"{LIBRARY_PREFIX}{uuid.uuid4().hex}"


def new_persona_id() -> str:
    return f"{PERSONA_PREFIX}{uuid.uuid4().hex}"


@dataclass(frozen=True)
class ImageKey:
    namespace: str
    value: str

    def __str__(self) -> str:
        return self.value

    @classmethod
    def history(cls, local_id: str) -> "ImageKey":
        cleaned = local_id.strip()
        if not cleaned:
            raise ValidationError("history_key_empty")
        if cleaned.startswith(RESERVED_PREFIXES):
            raise ValidationError("history_key_reserved_prefix", details={"key": cleaned})
        return cls(NAMESPACE_HISTORY, cleaned)

    @classmethod
    def library(cls, entry_id: str) -> "ImageKey":
        cleaned = entry_id.strip()
        if not cleaned:
            raise ValidationError("library_key_empty")
        if not cleaned.startswith(LIBRARY_PREFIX):
            cleaned = f"{LIBRARY_PREFIX}{cleaned}"
        return cls(NAMESPACE_LIBRARY, cleaned)

    @classmethod
    def persona(cls, persona_id: str, position: str) -> "ImageKey":
        cleaned = persona_id.strip()
        if not cleaned.startswith(PERSONA_PREFIX):
            raise ValidationError("persona_id_invalid", details={"persona_id": persona_id})
        if position not in PERSONA_POSITIONS:
            raise ValidationError("persona_position_invalid", details={"position": position})
        return cls(NAMESPACE_PERSONA, f"{cleaned}_{position}")

    @classmethod
    def parse(cls, raw: str) -> "ImageKey":
        if raw.startswith(LIBRARY_PREFIX):
            return cls(NAMESPACE_LIBRARY, raw)
        if raw.startswith(PERSONA_PREFIX):
            return cls(NAMESPACE_PERSONA, raw)
        return cls(NAMESPACE_HISTORY, raw)

    def persona_parts(self) -> Tuple[str, str]:
        if self.namespace != NAMESPACE_PERSONA:
            raise ValidationError("not_a_persona_key", details={"key": self.value})
        persona_id, _, position = self.value.rpartition("_")
        return persona_id, position
