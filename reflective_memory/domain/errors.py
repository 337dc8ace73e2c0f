from __future__ import annotations

from typing import Optional


class VectorStoreError(RuntimeError):
    """Raised when a vector store operation fails.

    Fields:
        operation: Name of the driver operation that failed (e.g. "insert").
    """

    def __init__(self, message: str, operation: Optional[str] = None) -> None:
        super().__init__(message)
        self.operation = operation


class ValidationError(VectorStoreError, ValueError):
    """Raised when a request has a bad shape, id or dimension. Never retried."""


class DimensionMismatchError(ValidationError):
    """Raised when a vector length differs from the collection dimension."""

    def __init__(self, expected: int, actual: int, operation: Optional[str] = None) -> None:
        super().__init__(f"Vector dimension mismatch: expected {expected}, got {actual}", operation)
        self.expected = expected
        self.actual = actual


class BackendConnectionError(VectorStoreError):
    """Raised when the backend is unreachable after the configured connect retries."""


class BackendError(VectorStoreError):
    """Raised when the backend fails while serving an operation (including timeouts)."""

    def __init__(self, message: str, operation: Optional[str] = None, status_code: Optional[int] = None) -> None:
        super().__init__(message, operation)
        self.status_code = status_code


class CollectionMissingError(BackendError):
    """Raised when the bound collection no longer exists on the backend."""


class NotConnectedError(VectorStoreError):
    """Raised when an operation is attempted before connect()."""

    def __init__(self, operation: Optional[str] = None) -> None:
        super().__init__(f"Vector store is not connected (operation={operation})", operation)


class EmbeddingError(RuntimeError):
    """Raised when embedding provider fails."""


class DecisionParseError(ValueError):
    """Raised when an LLM response does not contain a usable memory decision."""
