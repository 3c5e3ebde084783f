"""
Error taxonomy shared by every function.

Each error carries the HTTP status it renders to, so handlers can turn any
ParkingError into the response envelope without a lookup table.
"""
from typing import Any, Optional


class ParkingError(Exception):
    """Base exception for all parking-related errors"""

    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        details: Optional[Any] = None,
    ):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code
        self.details = details
        super().__init__(message)

    def to_dict(self) -> dict:
        body = {"message": self.message, "code": self.code}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(ParkingError):
    """Bad input shape or semantics"""

    status_code = 400
    code = "VALIDATION_ERROR"


class UnauthorizedError(ParkingError):
    status_code = 401
    code = "UNAUTHORIZED"

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


class PaymentError(ParkingError):
    """Upstream payment gateway failure"""

    status_code = 402
    code = "PAYMENT_ERROR"


class PaymentServiceUnavailableError(PaymentError):
    status_code = 503
    code = "PAYMENT_SERVICE_UNAVAILABLE"

    def __init__(self, message: str = "Payment service is currently unavailable"):
        super().__init__(message)


class NotFoundError(ParkingError):
    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, resource: str):
        super().__init__(f"{resource} not found")
        self.resource = resource


class ConflictError(ParkingError):
    """Invariant violation: space unavailable, payment already settled"""

    status_code = 409
    code = "CONFLICT"


class SpaceUnavailableError(ConflictError):
    def __init__(self, space_number: str, reason: str = "is not available"):
        super().__init__(f"Parking space {space_number} {reason}")
        self.space_number = space_number


class DatabaseError(ParkingError):
    status_code = 500
    code = "DATABASE_ERROR"


class ReservationExpiredError(ConflictError):
    """Payment confirmed after the requested checkout time had passed"""

    def __init__(self, payment_id: str):
        super().__init__(f"Reservation window for payment {payment_id} has already ended")
        self.payment_id = payment_id
