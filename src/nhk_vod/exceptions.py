"""
Exception hierarchy for the NHK VOD downloader.

All pipeline-specific exceptions inherit from VodDownloaderException.
Each stage has its own exception class for targeted error handling.
"""

from __future__ import annotations

import traceback
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from nhk_vod.schemas.pipeline_state import PipelineState


class ErrorSeverity(Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"


@dataclass
class ProcessingError:
    """Structured error record for pipeline logging and diagnostics."""

    source: str
    error_type: str
    message: str
    severity: ErrorSeverity
    traceback_str: Optional[str] = None
    context: dict = field(default_factory=dict)

    @classmethod
    def from_exception(
        cls,
        source: str,
        exception: Exception,
        severity: ErrorSeverity,
        context: Optional[dict] = None,
    ) -> ProcessingError:
        tb = (
            traceback.format_exc()
            if severity in (ErrorSeverity.CRITICAL, ErrorSeverity.WARNING)
            else None
        )
        error_type = getattr(exception, "error_code", None) or type(exception).__name__
        return cls(
            source=source,
            error_type=error_type,
            message=str(exception),
            severity=severity,
            traceback_str=tb,
            context=context or {},
        )


class VodDownloaderException(Exception):
    """Base exception for the NHK VOD downloader."""

    def __init__(self, message: str, error_code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        # Attached by the orchestrator when this error ends a pipeline run
        self.pipeline_state: Optional[PipelineState] = None


class NetworkError(VodDownloaderException):
    """Raised when a fetch fails or returns a non-success status."""

    def __init__(
        self,
        message: str,
        url: Optional[str] = None,
        status_code: Optional[int] = None,
        error_code: Optional[str] = None,
    ):
        super().__init__(message, error_code)
        self.url = url
        self.status_code = status_code


class SegmentFetchError(NetworkError):
    """Raised when a single segment cannot be downloaded.

    Carries the zero-based ``index`` of the failing segment so a caller
    knows exactly which part of the playlist was not retrieved, and the
    ``staging_dir`` holding the segments fetched before it.
    """

    def __init__(
        self,
        message: str,
        index: int,
        url: str,
        status_code: Optional[int] = None,
        staging_dir: Optional[str] = None,
    ):
        super().__init__(message, url=url, status_code=status_code)
        self.index = index
        self.staging_dir = staging_dir


class EmptyManifestError(VodDownloaderException):
    """Raised when the variant manifest contains no playlist lines."""


class EmptySegmentListError(VodDownloaderException):
    """Raised when the media playlist references no segments."""


class FileWriteError(VodDownloaderException):
    """Raised when a staged segment or the output artifact cannot be written."""

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        index: Optional[int] = None,
    ):
        super().__init__(message)
        self.path = path
        self.index = index


class FileReadError(VodDownloaderException):
    """Raised when a staged segment cannot be read during assembly."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class NotFoundError(VodDownloaderException):
    """Raised when no content identifier appears on the page in time."""


class CancellationError(VodDownloaderException):
    """Raised when the caller aborts the pipeline."""


class PipelineError(VodDownloaderException):
    """Raised for orchestration-level pipeline failures."""


class ConfigurationError(VodDownloaderException):
    """Raised for missing or invalid configuration."""
