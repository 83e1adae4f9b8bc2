"""
Domain exceptions for the extraction pipeline.

Hierarchy::

    IntakeError
    ├── FatalExtractionError          never retried by the ProcessingQueue
    │   ├── DocumentNotFoundError
    │   ├── StorageReadError
    │   └── MaxRetriesExceededError   RateLimiter budget exhausted
    ├── RateLimitedError              provider throttling (HTTP 429)
    ├── ProviderError                 any other provider failure
    └── InvalidStatusTransitionError

The provider adapter (llm/gateway.py) is the only place that sees vendor
exceptions; everything above it deals in these types.
"""

from __future__ import annotations

from typing import Optional


class IntakeError(Exception):
    """Base class for every error raised by docintake."""


class FatalExtractionError(IntakeError):
    """The document cannot be processed; retrying will not help."""


class DocumentNotFoundError(FatalExtractionError):
    def __init__(self, document_id: str) -> None:
        super().__init__(f"Document not found: {document_id}")
        self.document_id = document_id


class StorageReadError(FatalExtractionError):
    def __init__(self, file_name: str, reason: str = "unreadable") -> None:
        super().__init__(f"Failed to read document file '{file_name}': {reason}")
        self.file_name = file_name


class MaxRetriesExceededError(FatalExtractionError):
    def __init__(self, attempts: int) -> None:
        super().__init__(f"Max retries exceeded after {attempts} rate-limited attempts")
        self.attempts = attempts


class RateLimitedError(IntakeError):
    """Provider signalled throttling; retry_after is seconds when supplied."""

    status_code = 429

    def __init__(self, message: str = "Rate limit exceeded (429)", retry_after: Optional[float] = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class ProviderError(IntakeError):
    """Non-throttling provider failure (timeout, 5xx, bad request)."""


class InvalidStatusTransitionError(IntakeError):
    def __init__(self, document_id: str, current: str, target: str) -> None:
        super().__init__(
            f"Illegal status transition for document {document_id}: {current} -> {target}"
        )
        self.document_id = document_id
        self.current = current
        self.target = target
