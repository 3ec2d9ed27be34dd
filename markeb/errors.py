"""
Error taxonomy for the booking API.

Every error raised by the domain layer carries its HTTP status so that one
exception handler in main.py can format all responses the same way:
    {"success": false, "error": "<message>", ...extra}
"""

from typing import Any, Optional


class BookingApiError(Exception):
    """Base class for errors that map directly to an HTTP response"""

    status_code = 500

    def __init__(self, message: str, extra: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.extra = extra or {}

    def to_body(self) -> dict[str, Any]:
        return {"success": False, "error": self.message, **self.extra}


class ValidationFailed(BookingApiError):
    """Missing or malformed input"""

    status_code = 400


class BookingConflict(BookingApiError):
    """Operation is not allowed in the booking's current state"""

    status_code = 400


class OwnershipMismatch(BookingApiError):
    """Requester's email does not match the stored client email"""

    status_code = 403

    def __init__(self, message: str = "Unauthorized", extra: Optional[dict[str, Any]] = None):
        super().__init__(message, extra)


class AuthenticationFailed(BookingApiError):
    status_code = 401


class RecordNotFound(BookingApiError):
    status_code = 404


class UpstreamError(BookingApiError):
    """An external provider (record store, payments, storage) failed"""

    status_code = 500


class PaymentFailed(UpstreamError):
    pass
