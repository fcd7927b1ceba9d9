"""Error kinds raised by coordinator services and translated at the API edge."""
from __future__ import annotations

from enum import Enum
from typing import List, Optional


class ErrorKind(str, Enum):
    """Failure categories surfaced to callers."""

    NOT_FOUND = "not_found"
    VALIDATION_ERROR = "validation_error"
    PERSISTENCE_ERROR = "persistence_error"
    PARTIAL_FAILURE = "partial_failure"
    UNKNOWN = "unknown"


class CoordinatorError(Exception):
    """Base error carrying a kind and a list of human-readable reasons."""

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(self, message: str, details: Optional[List[str]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = list(details or [])


class NotFoundError(CoordinatorError):
    kind = ErrorKind.NOT_FOUND


class LoadValidationError(CoordinatorError):
    kind = ErrorKind.VALIDATION_ERROR


class PersistenceError(CoordinatorError):
    kind = ErrorKind.PERSISTENCE_ERROR


class StaleWriteError(PersistenceError):
    """Conditional write lost against a concurrent writer."""


HTTP_STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.VALIDATION_ERROR: 422,
    ErrorKind.PERSISTENCE_ERROR: 503,
    ErrorKind.PARTIAL_FAILURE: 200,
    ErrorKind.UNKNOWN: 500,
}
