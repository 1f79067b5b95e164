"""
Domain Error Taxonomy

Every failure the order and payment services can report. Each error
carries the HTTP status and machine-readable code the API layer renders
as ``{"success": false, "message": ..., "code": ...}``.
"""

from typing import Optional


class OrderingError(Exception):
    """Base class for all domain errors."""

    status_code: int = 400
    code: str = "error"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def to_dict(self) -> dict:
        """Error body returned to API callers."""
        return {"success": False, "message": self.message, "code": self.code}


class ValidationError(OrderingError):
    """Bad input; surfaced verbatim to the caller."""
    status_code = 400
    code = "validation_error"


class Unauthorized(OrderingError):
    """Missing or unverifiable caller identity."""
    status_code = 401
    code = "unauthorized"


class Forbidden(OrderingError):
    """Role or ownership mismatch."""
    status_code = 403
    code = "forbidden"


class NotFound(OrderingError):
    status_code = 404
    code = "not_found"


class OrderNotFound(NotFound):
    code = "order_not_found"

    def __init__(self, order_ref: str):
        super().__init__(f"Order {order_ref} not found")
        self.order_ref = order_ref


class InvalidStateTransition(OrderingError):
    """A lifecycle rule was violated."""
    status_code = 400
    code = "invalid_state_transition"


class AlreadyPaid(InvalidStateTransition):
    code = "already_paid"

    def __init__(self, order_id: str):
        super().__init__(f"Order {order_id} is already paid for")


class SignatureInvalid(OrderingError):
    """Webhook authentication failed; no state may change."""
    status_code = 400
    code = "signature_invalid"


class ProviderRejected(OrderingError):
    """The payment provider refused the request."""
    status_code = 502
    code = "provider_rejected"


class ProviderUnavailable(OrderingError):
    """The payment provider could not be reached in time."""
    status_code = 500
    code = "provider_unavailable"
