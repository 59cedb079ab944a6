"""Typed views over the three provider response shapes.

Each shape has its own parser; the orchestrator only ever sees the
normalized :class:`GenerationResult` produced by ``to_result``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import re
from typing import Any, Dict, List, Optional

from src.core.errors import ExtractionError
from src.media.providers.base import GenerationResult


JOB_STATUS_STARTING = "starting"
JOB_STATUS_PROCESSING = "processing"
JOB_STATUS_SUCCEEDED = "succeeded"
JOB_STATUS_FAILED = "failed"
JOB_STATUS_CANCELED = "canceled"
TERMINAL_JOB_STATUSES = {JOB_STATUS_SUCCEEDED, JOB_STATUS_FAILED, JOB_STATUS_CANCELED}

MARKDOWN_DATA_URI = re.compile(r"!\[.*?\]\((data:image/[^)]+)\)", re.DOTALL)
RAW_BASE64 = re.compile(r"^[A-Za-z0-9+/=]+$")


@dataclass(frozen=True)
class JobResponse:
    """Create/poll payload of a job-based provider."""

    status: str
    poll_url: Optional[str]
    output: Any = None
    logs: Optional[str] = None
    error: Any = None
    payload: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def parse(cls, body: Any, *, fallback_poll_url: Optional[str] = None) -> "JobResponse":
        if not isinstance(body, dict):
            raise ExtractionError(
                "job_payload_invalid",
                message="Job response is not a JSON object",
                details={"response": body},
            )
        urls = body.get("urls")
        poll_url = None
        if isinstance(urls, dict):
            poll_url = str(urls.get("get") or "").strip() or None
        return cls(
            status=str(body.get("status") or "").strip().lower(),
            poll_url=poll_url or fallback_poll_url,
            output=body.get("output"),
            logs=body.get("logs") if isinstance(body.get("logs"), str) else None,
            error=body.get("error"),
            payload=body,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_JOB_STATUSES

    @property
    def succeeded(self) -> bool:
        return self.status == JOB_STATUS_SUCCEEDED

    def output_locator(self) -> Optional[str]:
        output = self.output
        if isinstance(output, list):
            output = output[0] if output else None
        if isinstance(output, str) and output.strip():
            return output.strip()
        return None

    def to_result(self, provider: str) -> GenerationResult:
        locator = self.output_locator()
        if locator is None:
            raise ExtractionError(
                "job_output_missing",
                message="Job succeeded without an output image",
                details=self.payload,
            )
        return GenerationResult(provider=provider, image=locator, payload=self.payload)


@dataclass(frozen=True)
class InlineImageResponse:
    """``generateContent`` payload: candidates -> content -> parts with inline data."""

    parts: List[Dict[str, Any]]
    error: Optional[Dict[str, Any]] = None
    payload: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def parse(cls, body: Any) -> "InlineImageResponse":
        if not isinstance(body, dict):
            raise ExtractionError(
                "inline_payload_invalid",
                message="Response is not a JSON object",
                details={"response": body},
            )
        error = body.get("error") if isinstance(body.get("error"), dict) else None
        parts: List[Dict[str, Any]] = []
        candidates = body.get("candidates")
        if isinstance(candidates, list):
            for candidate in candidates:
                if not isinstance(candidate, dict):
                    continue
                content = candidate.get("content")
                if not isinstance(content, dict):
                    continue
                candidate_parts = content.get("parts")
                if not isinstance(candidate_parts, list):
                    continue
                parts.extend(part for part in candidate_parts if isinstance(part, dict))
        return cls(parts=parts, error=error, payload=body)

    def text(self) -> str:
        return "\n".join(str(part["text"]) for part in self.parts if isinstance(part.get("text"), str)).strip()

    def to_result(self, provider: str) -> GenerationResult:
        for part in self.parts:
            inline_data = part.get("inlineData") or part.get("inline_data")
            if isinstance(inline_data, dict) and inline_data.get("data"):
                mime_type = str(inline_data.get("mimeType") or inline_data.get("mime_type") or "image/png")
                return GenerationResult(
                    provider=provider,
                    image=f"data:{mime_type};base64,{inline_data['data']}",
                    mime_type=mime_type,
                    payload=self.payload,
                )
        raise ExtractionError(
            "image_not_found",
            message=f"No image returned by {provider}",
            details={"message": f"No image returned by {provider}", "text": self.text(), "response": self.payload},
        )


@dataclass(frozen=True)
class ChatCompletionResponse:
    """Chat-completion payload whose first choice may carry an image."""

    images: List[Dict[str, Any]]
    content: Optional[str]
    error: Optional[Dict[str, Any]] = None
    payload: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def parse(cls, body: Any) -> "ChatCompletionResponse":
        if not isinstance(body, dict):
            raise ExtractionError(
                "chat_payload_invalid",
                message="Response is not a JSON object",
                details={"response": body},
            )
        error = body.get("error") if isinstance(body.get("error"), dict) else None
        message: Dict[str, Any] = {}
        choices = body.get("choices")
        if isinstance(choices, list) and choices and isinstance(choices[0], dict):
            candidate = choices[0].get("message")
            if isinstance(candidate, dict):
                message = candidate

        images = message.get("images")
        content = message.get("content")
        if isinstance(content, list):
            content = "".join(
                str(part.get("text") or "") for part in content if isinstance(part, dict)
            )
        return cls(
            images=[image for image in images if isinstance(image, dict)] if isinstance(images, list) else [],
            content=content.strip() if isinstance(content, str) else None,
            error=error,
            payload=body,
        )

    def locate_image(self) -> Optional[str]:
        """Try, in order: ``images[]``, a data-URI content, a markdown data URI, raw base64."""

        if self.images:
            image_url = self.images[0].get("image_url")
            if isinstance(image_url, dict) and image_url.get("url"):
                return str(image_url["url"])

        content = self.content
        if not content:
            return None
        if content.startswith("data:"):
            return content
        markdown = MARKDOWN_DATA_URI.search(content)
        if markdown is not None:
            return markdown.group(1)
        if RAW_BASE64.match(content):
            return f"data:image/png;base64,{content}"
        return None

    def to_result(self, provider: str) -> GenerationResult:
        locator = self.locate_image()
        if locator is None:
            raise ExtractionError(
                "image_not_found",
                message=f"No image returned by {provider}",
                details={"message": f"No image returned by {provider}", "response": self.payload},
            )
        mime_type = None
        if locator.startswith("data:"):
            mime_type = locator[5:].split(";", 1)[0] or None
        return GenerationResult(provider=provider, image=locator, mime_type=mime_type, payload=self.payload)
