"""Domain errors raised by the billing and webhook services.

The HTTP-facing errors subclass ``HTTPException`` so the handlers registered
in ``app.errors`` render them with a stable ``code`` and message.
"""

from fastapi import HTTPException


class BillingError(HTTPException):
    status_code = 400
    code = "billing_error"

    def __init__(self, message: str, details: object = None):
        self.message = message
        self.details = details
        super().__init__(
            status_code=self.status_code,
            detail={"code": self.code, "message": message, "details": details},
        )

    def __str__(self) -> str:
        return self.message


class ValidationError(BillingError):
    """Raised for malformed or rule-breaking input, before anything is mutated."""

    status_code = 400
    code = "validation_error"


class NotFoundError(BillingError):
    status_code = 404
    code = "not_found"


class InvalidStateError(BillingError):
    """Raised when a transition is not allowed from the entity's current status."""

    status_code = 409
    code = "invalid_state"


class PersistenceError(BillingError):
    """Raised after a storage failure; the transaction has been rolled back."""

    status_code = 503
    code = "persistence_error"


class DeliveryError(Exception):
    """A single webhook attempt failed. Recorded on the delivery, never propagated."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code
