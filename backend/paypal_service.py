"""
PayPal.me payment links for Love 4 Detailing bookings.

Links are generated locally; no PayPal API is called. Payment is
confirmed manually by an admin (see BookingService.mark_booking_paid).
"""
import logging
from datetime import datetime, timedelta
from typing import Optional
from urllib.parse import quote, urlencode

from pydantic import BaseModel

from config import Settings, get_settings
from db_models import utcnow

logger = logging.getLogger(__name__)

PAYPAL_ME_BASE_URL = "https://paypal.me"


class PaymentInstructions(BaseModel):
    """What the customer needs to pay a booking."""
    payment_link: str
    deadline: str
    instructions: str


def format_deadline(deadline: datetime) -> str:
    """Human deadline, e.g. 'Friday, 14 June 2024 at 10:30'."""
    return f"{deadline.strftime('%A')}, {deadline.day} {deadline.strftime('%B %Y')} at {deadline.strftime('%H:%M')}"


class PayPalService:
    def __init__(self, settings: Settings = None):
        self.settings = settings or get_settings()
        if not self.settings.paypal_me_username:
            logger.warning("PayPal.me username not configured")

    def generate_payment_link(self, amount: float, booking_reference: str, app_url: Optional[str] = None) -> str:
        """
        Build a PayPal.me link for an amount.

        Args:
            amount: Amount due in pounds
            booking_reference: Booking reference, used in the tracking URLs
            app_url: Base URL of the site; adds return/cancel tracking params when set

        Returns:
            e.g. https://paypal.me/love4detailing/75.50GBP
        """
        link = f"{PAYPAL_ME_BASE_URL}/{self.settings.paypal_me_username}/{amount:.2f}{self.settings.currency}"

        if app_url:
            ref = quote(booking_reference)
            link += "?" + urlencode({
                "return_url": f"{app_url}/booking/payment-complete?ref={ref}&status=success",
                "cancel_url": f"{app_url}/booking/payment-cancelled?ref={ref}",
            })

        return link

    def payment_deadline(self, created_at: datetime = None) -> datetime:
        """When payment is due for a booking created at `created_at`."""
        return (created_at or utcnow()) + timedelta(hours=self.settings.payment_deadline_hours)

    def generate_payment_instructions(
        self,
        amount: float,
        booking_reference: str,
        customer_name: str,
        created_at: datetime = None,
    ) -> PaymentInstructions:
        """Payment link, deadline text and instructions for a booking."""
        link = self.generate_payment_link(amount, booking_reference, self.settings.app_url or None)
        deadline = format_deadline(self.payment_deadline(created_at))
        instructions = (
            f"Hi {customer_name}, to secure your booking please complete payment of "
            f"£{amount:.2f} within {self.settings.payment_deadline_hours} hours using the link below, "
            f"quoting reference {booking_reference}. Your booking will be automatically "
            f"cancelled if payment is not received by {deadline}."
        )
        return PaymentInstructions(payment_link=link, deadline=deadline, instructions=instructions)
