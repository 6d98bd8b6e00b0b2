"""
University Assessment Engine - Domain Errors
Failure taxonomy raised by the services and translated at the API boundary
"""
from typing import Any


class AssessmentError(Exception):
    """Base assessment error."""

    code = "assessment_error"
    status_code = 400

    def __init__(self, message: str, errors: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.errors = errors or {}

    def to_detail(self) -> dict[str, Any]:
        """Body placed under ``detail`` in the HTTP error response."""
        return {"code": self.code, "message": self.message, "errors": self.errors}


class NotFoundError(AssessmentError):
    """Entity missing, inactive, or not visible to the caller."""
    code = "not_found"
    status_code = 404


class InvalidStateError(AssessmentError):
    """Operation not allowed in the entity's current lifecycle state."""
    code = "invalid_state"
    status_code = 409


class LimitExceededError(AssessmentError):
    """Attempt limit reached or test outside its availability window."""
    code = "limit_exceeded"
    status_code = 403


class ValidationFailure(AssessmentError):
    """Input shape or value rejected, with field-level ``errors``."""
    code = "validation_failed"
    status_code = 422


class ConflictError(AssessmentError):
    """Uniqueness or dependency conflict (e.g. deleting a test that has submissions)."""
    code = "conflict"
    status_code = 409


class DependencyFailure(AssessmentError):
    """An external collaborator failed. Logged, never surfaced to the client."""
    code = "dependency_failed"
    status_code = 502
