"""Error taxonomy for the retrieval-and-generation layer.

Client boundaries classify failures as transient or permanent when they
raise, so callers decide on retries from ``ErrorKind`` and never from
message text.
"""

from __future__ import annotations

import json
from enum import Enum

import httpx


class ErrorKind(str, Enum):
    """Retry classification of an external failure."""

    TRANSIENT = "transient"
    PERMANENT = "permanent"


# HTTP statuses worth retrying on an idempotent call
TRANSIENT_STATUS_CODES = frozenset({408, 425, 429, 500, 502, 503, 504})


class RAGSupportError(Exception):
    """Base class for all errors raised by this package."""


class ConfigurationError(RAGSupportError):
    """Raised when required configuration or credentials are missing."""


class InvalidInputError(RAGSupportError):
    """Raised when caller input is malformed."""


class ConflictError(RAGSupportError):
    """Raised when an ingestion key already exists."""

    def __init__(self, message: str, existing_id: str | None = None):
        self.existing_id = existing_id
        super().__init__(message)


class ParseError(RAGSupportError):
    """Raised when model output cannot be turned into structured data."""


class ExternalServiceError(RAGSupportError):
    """Raised when an embedding, rerank, search or generation call fails."""

    def __init__(
        self,
        service: str,
        message: str,
        kind: ErrorKind = ErrorKind.PERMANENT,
        status_code: int | None = None,
    ):
        self.service = service
        self.kind = ErrorKind(kind)
        self.status_code = status_code
        super().__init__(f"{service}: {message}")

    @property
    def retryable(self) -> bool:
        """Whether the failure is transient."""
        return self.kind == ErrorKind.TRANSIENT


class PipelineError(RAGSupportError):
    """Raised when a pipeline stage fails with no viable fallback."""

    def __init__(self, stage: str, cause: BaseException):
        self.stage = stage
        self.cause = cause
        super().__init__(f"pipeline failed at {stage}: {cause}")

    @property
    def retryable(self) -> bool:
        """Whether re-running the request may succeed."""
        return isinstance(self.cause, ExternalServiceError) and self.cause.retryable


def classify_status(status_code: int) -> ErrorKind:
    """Map an HTTP status code to a retry classification."""
    if status_code in TRANSIENT_STATUS_CODES or status_code >= 500:
        return ErrorKind.TRANSIENT
    return ErrorKind.PERMANENT


def external_error(service: str, exc: Exception) -> ExternalServiceError:
    """Convert an exception raised by an HTTP client call.

    Args:
        service: Name of the external service
        exc: Exception raised by httpx or by response decoding

    Returns:
        Classified external service error
    """
    if isinstance(exc, ExternalServiceError):
        return exc

    if isinstance(exc, httpx.HTTPStatusError):
        status_code = exc.response.status_code
        return ExternalServiceError(
            service,
            f"HTTP {status_code}",
            kind=classify_status(status_code),
            status_code=status_code,
        )

    if isinstance(exc, httpx.TransportError):
        # Timeouts, connection resets, DNS failures
        return ExternalServiceError(
            service,
            f"{type(exc).__name__}: {exc}",
            kind=ErrorKind.TRANSIENT,
        )

    if isinstance(exc, (json.JSONDecodeError, KeyError, IndexError, TypeError, ValueError)):
        return ExternalServiceError(
            service,
            f"malformed response: {exc}",
            kind=ErrorKind.PERMANENT,
        )

    return ExternalServiceError(service, str(exc), kind=ErrorKind.PERMANENT)
