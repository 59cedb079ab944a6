"""Error taxonomy shared by providers, storage and orchestration.

Every error carries a machine-readable ``code``, an optional HTTP-like
``status_code`` and the upstream ``details`` (parsed JSON or raw text) so
that any caller can render a diagnostic without re-querying the provider.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Union


ErrorDetails = Union[Dict[str, Any], str, None]

SYNTHETIC_PROVIDER_STATUS = 500


class NanoThumbnailError(RuntimeError):
    """Base class for all classified failures."""

    kind = "error"

    def __init__(
        self,
        code: str,
        *,
        message: Optional[str] = None,
        status_code: Optional[int] = None,
        details: ErrorDetails = None,
    ) -> None:
        super().__init__(message or code)
        self.code = code
        self.message = message or code
        self.status_code = status_code
        self.details = details

    def to_diagnostic(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "code": self.code,
            "message": self.message,
            "status_code": self.status_code,
            "details": self.details,
        }


class ValidationError(NanoThumbnailError):
    """Input rejected before any generation work started."""

    kind = "validation"


class ReferenceLimitError(ValidationError):
    """Raised when the reference-image set is already full."""

    def __init__(self, limit: int) -> None:
        super().__init__(
            "max_images",
            message=f"Maximum {limit} reference images allowed",
            details={"limit": limit},
        )
        self.limit = limit


class GenerationError(NanoThumbnailError):
    """Base class for failures reported by (or while talking to) a provider."""

    kind = "generation"


class TransportError(GenerationError):
    """Non-2xx HTTP response, or the network path to the provider failed."""

    kind = "transport"


class ProviderLogicalError(GenerationError):
    """Provider answered but reported failure (terminal job status or error field)."""

    kind = "provider"

    def __init__(
        self,
        code: str,
        *,
        message: Optional[str] = None,
        status_code: Optional[int] = None,
        details: ErrorDetails = None,
    ) -> None:
        super().__init__(
            code,
            message=message,
            status_code=status_code if status_code is not None else SYNTHETIC_PROVIDER_STATUS,
            details=details,
        )


class ExtractionError(ProviderLogicalError):
    """A 2xx response in which no image could be located."""

    kind = "extraction"


class StorageError(NanoThumbnailError):
    """Object store or preference store engine failure."""

    kind = "storage"
