"""Diagnostic display surface for classified failures."""

from __future__ import annotations

from dataclasses import dataclass
import json
from typing import Any, Dict, List, Optional, Protocol

from src.core.errors import ErrorDetails, NanoThumbnailError
from src.core.logger import get_logger


DEFAULT_TITLE = "System Notification"
DEFAULT_MESSAGE = "An unexpected issue occurred while processing your request."
NO_DETAILS = "No additional technical details available."


@dataclass(frozen=True)
class DiagnosticReport:
    title: str = DEFAULT_TITLE
    message: str = DEFAULT_MESSAGE
    status_code: Optional[int] = None
    error_details: ErrorDetails = None

    @property
    def badge(self) -> Optional[str]:
        if self.status_code is None:
            return None
        return f"HTTP {self.status_code}"

    def details_text(self) -> str:
        if self.error_details is None or self.error_details == {}:
            return NO_DETAILS
        if isinstance(self.error_details, dict):
            return json.dumps(self.error_details, indent=2, ensure_ascii=False, default=str)
        return str(self.error_details)

    @classmethod
    def from_error(cls, error: NanoThumbnailError, *, title: Optional[str] = None) -> "DiagnosticReport":
        return cls(
            title=title or DEFAULT_TITLE,
            message=error.message,
            status_code=error.status_code,
            error_details=error.details,
        )


class DiagnosticSurface(Protocol):
    def report(self, report: DiagnosticReport) -> None:
        raise NotImplementedError


class LoggingDiagnosticSurface:
    """Writes every report to the structured log."""

    def __init__(self, logger_name: str = "nano.diagnostics") -> None:
        self._logger = get_logger(logger_name)

    def report(self, report: DiagnosticReport) -> None:
        self._logger.warning(
            "diagnostic_reported",
            title=report.title,
            message=report.message,
            status_code=report.status_code,
            details=report.error_details,
        )


class CollectingDiagnosticSurface:
    """Keeps reports in memory, newest last."""

    def __init__(self) -> None:
        self.reports: List[DiagnosticReport] = []

    def report(self, report: DiagnosticReport) -> None:
        self.reports.append(report)

    @property
    def last(self) -> Optional[DiagnosticReport]:
        return self.reports[-1] if self.reports else None

    def as_dicts(self) -> List[Dict[str, Any]]:
        return [
            {
                "title": item.title,
                "message": item.message,
                "status_code": item.status_code,
                "error_details": item.error_details,
            }
            for item in self.reports
        ]
