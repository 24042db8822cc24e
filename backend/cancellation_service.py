"""
Cancellation policy for Love 4 Detailing bookings.

Cancelling within the window (24 hours by default) before the appointment
is allowed but not refunded, and the customer has to acknowledge that.
The status change is the authoritative part of a cancellation; freeing
the slot and the emails are attempted afterwards and never undo it.
"""
import logging
import math
from datetime import datetime
from typing import Callable

from sqlalchemy.orm import Session

from booking_service import BookingService
from booking_status import CANCELLABLE_STATUSES
from config import Settings, get_settings
from db_models import Booking, BookingStatus, utcnow
from db_service import get_booking, get_booking_for_customer, get_cancelled_bookings
from errors import (
    AccessDeniedError,
    AcknowledgmentRequiredError,
    CannotCancelError,
    InvalidTransitionError,
    NotFoundError,
)
from models import (
    BookingRead,
    CancellationPolicyCheck,
    CancellationRequest,
    CancellationResult,
    service_operation,
)
from notifications import NotificationKind, booking_context
from time_slots import scheduled_datetime

logger = logging.getLogger(__name__)


class CancellationService:
    def __init__(
        self,
        db: Session,
        settings: Settings = None,
        booking_service: BookingService = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.clock = clock
        self.bookings = booking_service or BookingService(db, self.settings, clock=clock)

    # ============== POLICY ==============

    def evaluate_policy(self, booking: Booking) -> CancellationPolicyCheck:
        """
        Work out whether and how a booking can be cancelled right now.

        A booking in a non-cancellable status gets can_cancel=False with an
        explanation rather than an error.
        """
        if booking.status not in CANCELLABLE_STATUSES:
            return CancellationPolicyCheck(
                can_cancel=False,
                is_within_24_hours=False,
                hours_until_appointment=0,
                refund_eligible=False,
                warning_message=f"Cannot cancel booking with status: {booking.status.value}",
            )

        appointment = scheduled_datetime(
            booking.scheduled_date, booking.scheduled_start_time, self.settings.business_timezone
        )
        hours_until = (appointment - self.clock()).total_seconds() / 3600
        is_within_window = hours_until <= self.settings.cancellation_window_hours

        warning = None
        if is_within_window:
            if hours_until <= 0:
                warning = "This appointment has already started or passed. Cancellation may not be possible."
            elif hours_until <= 2:
                warning = (
                    f"This appointment is in {hours_until:.1f} hours. "
                    f"Cancellation within {self.settings.cancellation_window_hours} hours means no refund will be provided."
                )
            else:
                warning = (
                    f"This appointment is in {math.floor(hours_until)} hours. "
                    f"Cancellation within {self.settings.cancellation_window_hours} hours means no refund will be provided."
                )

        return CancellationPolicyCheck(
            can_cancel=hours_until > 0,
            is_within_24_hours=is_within_window,
            hours_until_appointment=max(0.0, hours_until),
            refund_eligible=not is_within_window,
            warning_message=warning,
        )

    @service_operation("Failed to check cancellation policy")
    def check_cancellation_policy(self, booking_id: int) -> CancellationPolicyCheck:
        booking = get_booking(self.db, booking_id)
        if not booking:
            raise NotFoundError("Booking not found")
        return self.evaluate_policy(booking)

    # ============== CANCELLATION ==============

    @service_operation("Failed to cancel booking")
    def cancel_booking(self, request: CancellationRequest) -> CancellationResult:
        """
        Cancel a booking on behalf of its customer.

        The policy is always re-derived here. Inside the no-refund window
        the request must carry acknowledge_no_refund=True.

        Raises (as envelope codes):
            NOT_FOUND, ACKNOWLEDGMENT_REQUIRED, CANNOT_CANCEL, ACCESS_DENIED
        """
        booking = get_booking(self.db, request.booking_id)
        if not booking:
            raise NotFoundError("Booking not found")

        policy = self.evaluate_policy(booking)

        if policy.can_cancel and policy.is_within_24_hours and not request.acknowledge_no_refund:
            raise AcknowledgmentRequiredError(details=policy.model_dump())

        if not policy.can_cancel:
            raise CannotCancelError(policy.warning_message or CannotCancelError.default_message)

        booking = get_booking_for_customer(self.db, request.booking_id, request.customer_id)
        if not booking:
            logger.warning(
                f"Customer {request.customer_id} tried to cancel booking {request.booking_id} they do not own"
            )
            raise AccessDeniedError()

        notes = f"Cancelled by customer: {request.reason}"
        if policy.is_within_24_hours:
            notes += f" (No refund - within {self.settings.cancellation_window_hours} hours)"
        refund_amount = booking.total_price if policy.refund_eligible else 0.0

        try:
            booking = self.bookings.transition_status(
                booking,
                BookingStatus.CANCELLED,
                str(request.customer_id),
                reason=request.reason,
                notes=notes,
                history_reason="Customer cancellation",
            )
        except InvalidTransitionError:
            raise CannotCancelError(f"Cannot cancel booking with status: {booking.status.value}")

        slot_freed = self.bookings.release_slot(booking)
        email_sent = self._notify(booking, request.reason, str(request.customer_id), refund_amount)

        logger.info(
            f"Booking {booking.booking_reference} cancelled by customer {request.customer_id} "
            f"(refund {refund_amount:.2f}, slot freed: {slot_freed})"
        )
        return CancellationResult(
            booking=BookingRead.model_validate(booking),
            policy_info=policy,
            time_slot_freed=slot_freed,
            email_sent=email_sent,
            refund_amount=refund_amount,
        )

    @service_operation("Failed to cancel booking")
    def admin_cancel_booking(
        self,
        booking_id: int,
        admin_id: str,
        reason: str,
        refund_amount: float = None,
    ) -> CancellationResult:
        """
        Cancel any live booking as an admin.

        No acknowledgment gate and no window check; the refund is whatever
        the admin decides (none if omitted).
        """
        booking = get_booking(self.db, booking_id)
        if not booking:
            raise NotFoundError("Booking not found")

        notes = f"Admin cancelled: {reason}"
        if refund_amount:
            notes += f" (Refund: £{refund_amount:.2f})"

        try:
            booking = self.bookings.transition_status(
                booking,
                BookingStatus.CANCELLED,
                admin_id,
                reason=reason,
                notes=notes,
                history_reason="Admin cancellation",
            )
        except InvalidTransitionError:
            raise CannotCancelError(f"Cannot cancel booking with status: {booking.status.value}")

        slot_freed = self.bookings.release_slot(booking)
        email_sent = self._notify(booking, reason, admin_id, refund_amount or 0.0)

        logger.info(f"Booking {booking.booking_reference} cancelled by admin {admin_id}")
        return CancellationResult(
            booking=BookingRead.model_validate(booking),
            policy_info=None,
            time_slot_freed=slot_freed,
            email_sent=email_sent,
            refund_amount=refund_amount,
        )

    def _notify(self, booking: Booking, reason: str, cancelled_by: str, refund_amount: float) -> bool:
        """Customer confirmation plus admin alert. Returns whether the customer email went out."""
        customer = self.bookings._customer_for(booking)
        if not customer:
            return False

        context = booking_context(booking, customer)
        sent = self.bookings.notifier.dispatch(
            NotificationKind.CANCELLATION_CONFIRMATION,
            email=customer.email,
            reason=reason,
            refund_amount=refund_amount,
            **context,
        )
        self.bookings.notifier.dispatch(
            NotificationKind.ADMIN_CANCELLATION_ALERT,
            customer_email=customer.email,
            reason=reason,
            cancelled_by=cancelled_by,
            refund_amount=refund_amount,
            **context,
        )
        return sent

    # ============== REPORTING ==============

    @service_operation("Failed to get cancellation stats")
    def get_cancellation_stats(self, date_from: datetime = None, date_to: datetime = None) -> dict:
        """
        Summary of cancellations in a period.

        Refundable total counts cancellations made outside the no-refund window.
        """
        cancellations = get_cancelled_bookings(self.db, date_from, date_to)
        window = self.settings.cancellation_window_hours

        stats = {
            "total_cancellations": len(cancellations),
            "within_24_hours": 0,
            "outside_24_hours": 0,
            "total_refund_amount": 0.0,
            "reason_breakdown": {},
        }

        for booking in cancellations:
            appointment = scheduled_datetime(
                booking.scheduled_date, booking.scheduled_start_time, self.settings.business_timezone
            )
            cancelled_at = booking.cancelled_at.replace(tzinfo=None) if booking.cancelled_at else appointment
            hours_before = (appointment - cancelled_at).total_seconds() / 3600

            if hours_before <= window:
                stats["within_24_hours"] += 1
            else:
                stats["outside_24_hours"] += 1
                stats["total_refund_amount"] += booking.total_price or 0

            reason = booking.cancellation_reason or "No reason provided"
            stats["reason_breakdown"][reason] = stats["reason_breakdown"].get(reason, 0) + 1

        stats["total_refund_amount"] = round(stats["total_refund_amount"], 2)
        return stats
