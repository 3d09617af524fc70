"""
Exception hierarchy for the retrieval engine.

Clients raise these, services catch them at their boundary and turn them
into per-item error strings. Every exception carries a human readable
message plus a details dict for logging.
"""

from typing import Any


class RAGError(Exception):
    """Base exception for all retrieval engine errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """
        Initialize base exception with message and optional context.

        Args:
            message: Human-readable error message
            details: Optional dictionary of additional context for debugging
        """
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(RAGError):
    """Raised when a configuration value is missing or invalid."""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        if field:
            details["field"] = field
        super().__init__(message, details)


class ExtractionError(RAGError):
    """Raised when content cannot be read from a locator (file, folder or URL)."""

    def __init__(
        self,
        message: str,
        locator: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        if locator:
            details["locator"] = locator
        self.locator = locator
        super().__init__(message, details)


class EmbeddingError(RAGError):
    """Raised when the embedding provider rejects a request or cannot be reached.

    Status code conventions:
        0   transport error or timeout (retryable)
        -1  the response body could not be decoded
        >0  HTTP status code returned by the provider
    """

    def __init__(
        self,
        message: str,
        provider: str,
        status_code: int = 0,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        details["provider"] = provider
        details["status_code"] = status_code
        self.provider = provider
        self.status_code = status_code
        super().__init__(message, details)

    def is_unrecoverable(self) -> bool:
        """
        Returns True if retrying the same request cannot succeed
        (server errors, auth errors, unknown model or undecodable response).
        """
        return self.status_code >= 500 or self.status_code in (401, 403, 404, -1)


class IndexStorageError(RAGError):
    """Raised when the vector index cannot be read or written."""


class RebuildInProgressError(RAGError):
    """Raised when a full rebuild is requested while another one is running."""

    def __init__(self) -> None:
        super().__init__("A full index rebuild is already running.")
