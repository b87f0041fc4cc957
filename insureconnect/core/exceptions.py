"""Domain error taxonomy shared by all services.

Every service raises one of these; the API layer renders them through a
single exception handler so each kind maps to one stable category.
"""


class DomainError(Exception):
    """Base exception for domain errors."""

    category = "domain_error"
    status_code = 400
    default_message = "Request could not be processed"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(DomainError):
    """Bad input shape or length."""

    category = "validation_error"
    status_code = 400
    default_message = "Invalid input"


class InsufficientBalanceError(DomainError):
    """Token balance is lower than the requested debit."""

    category = "insufficient_balance"
    status_code = 400
    default_message = "Insufficient token balance"

    def __init__(self, message: str | None = None, *, required: int | None = None, available: int | None = None):
        self.required = required
        self.available = available
        super().__init__(message)


class NotFoundError(DomainError):
    """Entity does not exist (or is not visible to the caller)."""

    category = "not_found"
    status_code = 404
    default_message = "Not found"


class InvalidStateError(DomainError):
    """Illegal state transition attempted."""

    category = "invalid_state"
    status_code = 409
    default_message = "Invalid state transition"


class ConflictError(DomainError):
    """Uniqueness conflict (duplicate email, etc.)."""

    category = "conflict"
    status_code = 409
    default_message = "Conflict"


class UnauthorizedError(DomainError):
    """Missing or invalid identity."""

    category = "unauthorized"
    status_code = 401
    default_message = "Not authenticated"


class ForbiddenError(DomainError):
    """Identity is known but lacks the required role or membership."""

    category = "forbidden"
    status_code = 403
    default_message = "Access denied"


class TransientStorageError(DomainError):
    """Storage failed in a way that may succeed on retry."""

    category = "storage_unavailable"
    status_code = 503
    default_message = "Storage temporarily unavailable"
