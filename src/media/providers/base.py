"""Provider contracts for image generation backends."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Protocol, Tuple


@dataclass(frozen=True)
class GenerationRequest:
    prompt: str
    aspect_ratio: str
    resolution: str
    output_format: str
    safety_filter_level: str
    reference_images: Tuple[str, ...] = ()
    api_key: str = field(default="", repr=False)


@dataclass(frozen=True)
class GenerationResult:
    provider: str
    image: str
    mime_type: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def is_data_uri(self) -> bool:
        return self.image.startswith("data:")

    @property
    def is_remote(self) -> bool:
        return self.image.startswith("http://") or self.image.startswith("https://")


@dataclass(frozen=True)
class JobProgress:
    status: str
    elapsed_seconds: float


ProgressCallback = Callable[[JobProgress], None]


class ImageProvider(Protocol):
    provider_name: str
    polls_for_completion: bool

    async def generate(
        self,
        request: GenerationRequest,
        *,
        on_progress: Optional[ProgressCallback] = None,
    ) -> GenerationResult:
        raise NotImplementedError
