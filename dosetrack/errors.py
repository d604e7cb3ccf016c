"""
Error hierarchy for dosetrack.

Callers distinguish malformed input from invariant violations without parsing
message strings, and the API layer maps each type to an HTTP status.

Hierarchy:
    DosingError                 (base)
    ├── ValidationError         (malformed input, names the offending field)
    ├── ConflictError           (overlap / lost concurrency race, re-fetch and retry)
    └── NotFoundError           (missing, or owned by someone else)
"""
from typing import Optional


class DosingError(Exception):
    """Base exception for all dosetrack domain errors."""

    status_code = 500
    error_type = 'Dosing error'

    def __init__(self, message: str, *, cause: Optional[Exception] = None):
        self.message = message
        self.cause = cause
        super().__init__(message)
        if cause and not self.__cause__:
            self.__cause__ = cause

    def to_dict(self) -> dict:
        """Structured representation for API responses and logging."""
        d = {
            'error': self.error_type,
            'message': self.message,
        }
        if self.cause:
            d['cause'] = f"{type(self.cause).__name__}: {self.cause}"
        return d


class ValidationError(DosingError):
    """Malformed input. Never retried automatically."""

    status_code = 400
    error_type = 'Validation failed'

    def __init__(self, field: str, message: str, *, cause: Optional[Exception] = None):
        self.field = field
        super().__init__(message, cause=cause)

    def to_dict(self) -> dict:
        d = super().to_dict()
        d['field'] = self.field
        return d


class ConflictError(DosingError):
    """Overlapping pattern history or a lost optimistic-concurrency race."""

    status_code = 409
    error_type = 'Pattern conflict'
    guidance = 'Re-fetch the active pattern and retry with closePrevious set as intended.'

    def to_dict(self) -> dict:
        d = super().to_dict()
        d['guidance'] = self.guidance
        return d


class NotFoundError(DosingError):
    """Medication or pattern does not exist or belongs to a different owner."""

    status_code = 404
    error_type = 'Not found'
