"""Image generation provider integrations."""

from src.media.providers.base import GenerationRequest, GenerationResult, ImageProvider, JobProgress
from src.media.providers.factory import build_image_provider
from src.media.providers.gemini_provider import GeminiImageProvider
from src.media.providers.openrouter_provider import OpenRouterImageProvider
from src.media.providers.replicate_provider import ReplicateImageProvider
from src.media.providers.responses import ChatCompletionResponse, InlineImageResponse, JobResponse
from src.media.providers.transport import RelayRouter

__all__ = [
    "ChatCompletionResponse",
    "GenerationRequest",
    "GenerationResult",
    "GeminiImageProvider",
    "ImageProvider",
    "InlineImageResponse",
    "JobProgress",
    "JobResponse",
    "OpenRouterImageProvider",
    "RelayRouter",
    "ReplicateImageProvider",
    "build_image_provider",
]
