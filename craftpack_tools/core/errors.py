"""Error types shared across the scanning, export and install pipelines."""

from __future__ import annotations

from collections.abc import Callable
from enum import StrEnum

import structlog

logger = structlog.get_logger()


class ErrorKind(StrEnum):
    """Broad failure categories."""
    FILESYSTEM = "filesystem"
    VALIDATION = "validation"
    NETWORK = "network"
    RESOURCE = "resource"
    CONFIGURATION = "configuration"


class CraftpackError(Exception):
    """Base class for all craftpack_tools errors.

    Attributes:
        kind: Failure category
        path: File or directory involved, if any
    """

    kind: ErrorKind = ErrorKind.RESOURCE

    def __init__(self, message: str, *, path: str | None = None):
        self.path = path
        super().__init__(message)


class FileSystemError(CraftpackError):
    """File could not be read, written, listed, renamed or deleted."""

    kind = ErrorKind.FILESYSTEM


class ValidationError(CraftpackError):
    """Input (manifest, archive, digest) failed validation."""

    kind = ErrorKind.VALIDATION


class NetworkError(CraftpackError):
    """Remote request failed after retries.

    Attributes:
        url: Requested URL
        status_code: HTTP status, when a response was received
    """

    kind = ErrorKind.NETWORK

    def __init__(
        self,
        message: str,
        *,
        url: str | None = None,
        status_code: int | None = None,
    ):
        self.url = url
        self.status_code = status_code
        super().__init__(message)


class ResourceError(CraftpackError):
    """A resource could not be resolved or installed."""

    kind = ErrorKind.RESOURCE


class ConfigurationError(CraftpackError):
    """Target instance or application settings are unusable."""

    kind = ErrorKind.CONFIGURATION


class PipelineError(CraftpackError):
    """Failure of a multi-phase job, wrapping the underlying cause.

    Attributes:
        phase: Phase that was running when the job failed
        cause: Original exception
    """

    def __init__(self, message: str, *, phase: str, cause: BaseException | None = None):
        self.phase = phase
        self.cause = cause
        self.kind = cause.kind if isinstance(cause, CraftpackError) else ErrorKind.RESOURCE
        super().__init__(message)


class ExportError(PipelineError):
    """Package export failed."""


class InstallError(PipelineError):
    """Package install failed and was rolled back."""


class OperationCancelled(Exception):  # noqa: N818
    """A job was cancelled through its cancellation token.

    Not a CraftpackError: callers treat it as a normal outcome that
    shares the failure cleanup path.
    """


ErrorSink = Callable[[CraftpackError], None]


def log_error(error: CraftpackError) -> None:
    """Default error sink: log and continue."""
    logger.warning(
        "recoverable_error",
        kind=str(error.kind),
        error=str(error),
        path=error.path,
    )
