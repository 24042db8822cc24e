"""
Domain errors for the booking system.

Each error carries a stable code that ends up in the response envelope,
so callers branch on the code instead of on exception classes.
"""
from typing import Any, Optional


class BookingError(Exception):
    """Base class for expected, user-actionable failures."""

    code = "SERVICE_ERROR"
    default_message = "Booking operation failed"

    def __init__(self, message: Optional[str] = None, details: Any = None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)


class NotFoundError(BookingError):
    code = "NOT_FOUND"
    default_message = "Not found"


class SlotUnavailableError(BookingError):
    code = "SLOT_UNAVAILABLE"
    default_message = "Selected time slot is not available"


class SlotAlreadyBookedError(BookingError):
    code = "SLOT_ALREADY_BOOKED"
    default_message = "Selected time slot is already booked"


class PricingNotConfiguredError(BookingError):
    code = "PRICING_NOT_CONFIGURED"
    default_message = "Service pricing not configured"


class PolicyViolationError(BookingError):
    code = "POLICY_VIOLATION"
    default_message = "Cancellation rejected by policy"


class AcknowledgmentRequiredError(PolicyViolationError):
    code = "ACKNOWLEDGMENT_REQUIRED"
    default_message = "Cancellation within 24 hours requires acknowledgment of no refund policy"


class CannotCancelError(PolicyViolationError):
    code = "CANNOT_CANCEL"
    default_message = "This booking cannot be cancelled"


class AccessDeniedError(BookingError):
    code = "ACCESS_DENIED"
    default_message = "Booking not found or access denied"


class InvalidTransitionError(BookingError):
    code = "INVALID_TRANSITION"
    default_message = "Invalid status change"


class UpstreamUnavailableError(BookingError):
    code = "UPSTREAM_UNAVAILABLE"
    default_message = "Upstream service unavailable"


class DistanceUnavailableError(UpstreamUnavailableError):
    code = "DISTANCE_UNAVAILABLE"
    default_message = "Unable to calculate distance"


class PartialWriteError(BookingError):
    """Line items failed after the booking row was written; row was removed."""
    code = "PARTIAL_WRITE_FAILURE"
    default_message = "Failed to save booking services"


class OrphanedBookingError(PartialWriteError):
    """Compensation failed too: a pending booking without line items remains."""
    code = "ORPHANED_BOOKING"
    default_message = "Booking could not be saved and cleanup failed"


class InvalidRequestError(BookingError):
    code = "VALIDATION_ERROR"
    default_message = "Invalid request"
