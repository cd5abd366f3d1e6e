"""
shared/utils/errors.py
Typed failures raised by the booking core.
Routers let these propagate; main.py renders them as JSON with a stable code.
"""


class DomainError(Exception):
    """Base class. Subclasses fix the HTTP status and machine-readable code."""

    status_code: int = 400
    code: str = "DOMAIN_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"detail": self.message, "code": self.code}


class ValidationError(DomainError):
    """Missing or malformed required input."""
    status_code = 400
    code = "VALIDATION_ERROR"


class PreconditionError(DomainError):
    """A required prior state is absent (e.g. no panchayath on the booking)."""
    status_code = 422
    code = "PRECONDITION_FAILED"


class ConflictError(DomainError):
    """The record is not in the state the requested operation expects."""
    status_code = 409
    code = "CONFLICT"


class AuthorizationError(DomainError):
    status_code = 403
    code = "FORBIDDEN"


class NotFoundError(DomainError):
    status_code = 404
    code = "NOT_FOUND"


class StorageError(DomainError):
    """Storage collaborator failure. Message stays opaque to callers."""
    status_code = 503
    code = "STORAGE_ERROR"
