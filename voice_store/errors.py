# voice_store/errors.py
from typing import Optional


class StoreError(Exception):
    """Base class for every error raised by the persistence layer.

    Carries enough context (entity type, operation, underlying message) for a
    caller to log and display it. Not-found is never an error: point lookups
    return ``None`` instead.
    """

    def __init__(self, message: str, entity: Optional[str] = None, operation: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.entity = entity
        self.operation = operation

    def __str__(self) -> str:
        if self.entity and self.operation:
            return f"{self.operation} {self.entity}: {self.message}"
        return self.message


class ConstraintViolationError(StoreError):
    """Unique-key or foreign-key violation. The failed write left no partial effect."""


class TransportError(StoreError):
    """Remote backend unreachable or answered with an unexpected non-2xx status."""

    def __init__(self, message: str, status_code: Optional[int] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.status_code = status_code


class MalformedDataError(StoreError):
    """A stored JSON blob could not be decoded."""


class StoreValidationError(StoreError):
    """Invalid import document, unsupported version, or a missing target id."""


class TransactionStateError(StoreError):
    """Transaction control called in the wrong state (nested begin, commit without begin)."""
