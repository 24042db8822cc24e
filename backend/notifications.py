"""
Fire-and-forget notification dispatch.

The booking core emits a notification kind plus context; the dispatcher
hands it to the matching email composer. Every failure ends here as a
logged False, so email problems can never change booking state.
"""
import logging
from enum import Enum
from typing import Optional

import email_service
from db_models import Booking, UserProfile

logger = logging.getLogger(__name__)


class NotificationKind(str, Enum):
    BOOKING_CONFIRMATION = "booking_confirmation"
    ADMIN_NEW_BOOKING = "admin_new_booking"
    STATUS_UPDATE = "status_update"
    CANCELLATION_CONFIRMATION = "cancellation_confirmation"
    ADMIN_CANCELLATION_ALERT = "admin_cancellation_alert"
    PAYMENT_CONFIRMATION = "payment_confirmation"
    PAYMENT_REMINDER = "payment_reminder"
    PAYMENT_FAILED = "payment_failed"
    PAYMENT_FAILED_ADMIN = "payment_failed_admin"


# Composer names in email_service, resolved at dispatch time
COMPOSERS = {
    NotificationKind.BOOKING_CONFIRMATION: "send_booking_confirmation_email",
    NotificationKind.ADMIN_NEW_BOOKING: "send_admin_new_booking_alert",
    NotificationKind.STATUS_UPDATE: "send_status_update_email",
    NotificationKind.CANCELLATION_CONFIRMATION: "send_cancellation_confirmation_email",
    NotificationKind.ADMIN_CANCELLATION_ALERT: "send_admin_cancellation_alert",
    NotificationKind.PAYMENT_CONFIRMATION: "send_payment_confirmation_email",
    NotificationKind.PAYMENT_REMINDER: "send_payment_reminder_email",
    NotificationKind.PAYMENT_FAILED: "send_payment_failed_email",
    NotificationKind.PAYMENT_FAILED_ADMIN: "send_payment_failed_admin_alert",
}


def vehicle_summary(vehicle_details: dict) -> str:
    """e.g. 'Black Ford Focus (AB12 CDE)'"""
    vehicle_details = vehicle_details or {}
    parts = [vehicle_details.get("color"), vehicle_details.get("make"), vehicle_details.get("model")]
    summary = " ".join(part for part in parts if part) or "Vehicle"
    if vehicle_details.get("registration"):
        summary += f" ({vehicle_details['registration']})"
    return summary


def address_summary(address: dict) -> str:
    address = address or {}
    parts = [
        address.get("address_line_1"),
        address.get("address_line_2"),
        address.get("city"),
        address.get("postcode"),
    ]
    return ", ".join(part for part in parts if part)


def booking_context(booking: Booking, customer: Optional[UserProfile]) -> dict:
    """Context shared by most booking emails."""
    return {
        "booking_reference": booking.booking_reference,
        "customer_name": customer.display_name if customer else "Customer",
        "scheduled_date": booking.scheduled_date,
        "start_time": booking.scheduled_start_time,
    }


class NotificationDispatcher:
    """Route notifications to email composers, absorbing every failure."""

    def __init__(self, composers: dict = None):
        self.composers = composers or COMPOSERS

    def dispatch(self, kind: NotificationKind, **context) -> bool:
        """
        Send one notification.

        Returns:
            True if the email was accepted for delivery, False otherwise.
            Never raises.
        """
        composer_name = self.composers.get(kind)
        composer = getattr(email_service, composer_name, None) if composer_name else None
        if composer is None:
            logger.error(f"No email composer registered for notification {kind}")
            return False

        reference = context.get("booking_reference", "-")
        try:
            sent = bool(composer(**context))
        except Exception as e:
            logger.error(f"Notification {kind.value} for {reference} failed: {e}")
            return False

        if not sent:
            logger.warning(f"Notification {kind.value} for {reference} was not sent")
        return sent


_dispatcher: Optional[NotificationDispatcher] = None


def get_notification_dispatcher() -> NotificationDispatcher:
    """Get or create the dispatcher singleton."""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = NotificationDispatcher()
    return _dispatcher
