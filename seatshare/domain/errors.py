"""
Error taxonomy for the lifecycle engine.

Every failure a caller can observe is a ``LifecycleError`` subclass.  The
``status_code`` is what the REST layer answers with; the ``code`` is a
stable machine-readable tag.
"""

from __future__ import annotations


class LifecycleError(Exception):
    status_code = 400
    code = "lifecycle_error"


class CapacityExceeded(LifecycleError):
    """Reserving the requested seats would oversell the ride."""

    status_code = 409
    code = "capacity_exceeded"

    def __init__(self, ride_id: str, requested: int, available: int):
        super().__init__(
            f"Ride {ride_id} has {available} seat(s) left, {requested} requested"
        )
        self.ride_id = ride_id
        self.requested = requested
        self.available = available


class InvalidTransition(LifecycleError):
    """A state-machine precondition is not met."""

    status_code = 409
    code = "invalid_transition"


class OTPMismatch(LifecycleError):
    status_code = 422
    code = "otp_mismatch"


class OTPLocked(LifecycleError):
    status_code = 423
    code = "otp_locked"


class DuplicateBookingRequest(LifecycleError):
    """Idempotency key reused with a different payload."""

    status_code = 409
    code = "duplicate_booking_request"


class BookingNotAllowed(LifecycleError):
    status_code = 400
    code = "booking_not_allowed"


class RideNotFound(LifecycleError):
    status_code = 404
    code = "ride_not_found"


class BookingNotFound(LifecycleError):
    status_code = 404
    code = "booking_not_found"


class LockUnavailable(LifecycleError):
    status_code = 503
    code = "lock_unavailable"


class ReassignmentExhausted(LifecycleError):
    """No alternative ride found; resolved into a refund, never surfaced."""

    code = "reassignment_exhausted"

    def __init__(self, message: str, attempts: int = 0):
        super().__init__(message)
        self.attempts = attempts

    @classmethod
    def after(cls, booking_id: str, attempts: int) -> "ReassignmentExhausted":
        return cls(
            f"No alternative ride for booking {booking_id} after {attempts} search round(s)",
            attempts,
        )


class InvariantViolation(LifecycleError):
    """Persisted state would be corrupt. The unit of work must roll back."""

    status_code = 500
    code = "invariant_violation"


class NotBookingHolder(LifecycleError):
    """Caller is not the passenger holding the booking."""

    status_code = 403
    code = "not_booking_holder"


class RideAlreadyExists(LifecycleError):
    status_code = 409
    code = "ride_already_exists"


class BookingAlreadyExists(LifecycleError):
    status_code = 409
    code = "booking_already_exists"
