"""
Engine error taxonomy.

Every failure the aggregation engine surfaces is an ``EngineError`` carrying a
machine-readable ``code``. Validation errors are raised before any scan starts
and are never retried. ``StorageUnavailable`` is the only transient kind.
``Cancelled`` is kept apart from failures so callers can tell "caller gave up"
from "engine failed".
"""

from __future__ import annotations


class EngineError(Exception):
    """Base class for all engine errors."""

    code: str = "EngineError"
    status_code: int = 500
    retryable: bool = False

    def __init__(self, message: str, field_name: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.field_name = field_name

    def to_dict(self) -> dict[str, str | None]:
        return {"kind": self.code, "message": self.message, "field": self.field_name}


class ValidationFailure(EngineError):
    """Caller supplied parameters the engine cannot run."""

    status_code = 400


# --- Validation ---


class InvalidRange(ValidationFailure):
    code = "InvalidRange"


class InvalidFilter(ValidationFailure):
    code = "InvalidFilter"


class TypeMismatch(ValidationFailure):
    code = "TypeMismatch"


class InvalidFunnel(ValidationFailure):
    code = "InvalidFunnel"


class GranularityTooFine(ValidationFailure):
    code = "GranularityTooFine"


class InvalidPagination(ValidationFailure):
    code = "InvalidPagination"


class InvalidMetric(ValidationFailure):
    code = "InvalidMetric"


# --- Runtime ---


class NotFound(EngineError):
    """A referenced goal or site does not exist (or belongs to another site)."""

    code = "NotFound"
    status_code = 404


class Cancelled(EngineError):
    """The query was cancelled by the caller or hit its deadline."""

    code = "Cancelled"
    status_code = 499


class StorageUnavailable(EngineError):
    """Transient raw event store failure."""

    code = "StorageUnavailable"
    status_code = 503
    retryable = True


__all__ = [
    "Cancelled",
    "EngineError",
    "GranularityTooFine",
    "InvalidFilter",
    "InvalidFunnel",
    "InvalidMetric",
    "InvalidPagination",
    "InvalidRange",
    "NotFound",
    "StorageUnavailable",
    "TypeMismatch",
    "ValidationFailure",
]
