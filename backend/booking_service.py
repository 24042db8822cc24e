"""
Booking lifecycle for Love 4 Detailing.

Creates bookings against time slots and moves them through the status
state machine. A new booking is written in steps: booking row, line items,
history row, slot flags. A line item failure removes the booking row
again; slot exclusivity is enforced by a partial unique index on
bookings.time_slot_id.
A status change writes the booking row and its history row in one commit.
"""
import logging
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from booking_status import (
    CUSTOMER_NOTIFIED_STATUSES,
    get_status_label,
    get_valid_next_statuses,
    validate_transition,
)
from config import Settings, get_settings
from db_models import Booking, BookingStatus, PaymentStatus, UserProfile, utcnow
from db_service import (
    append_status_history,
    apply_status_change,
    booking_reference_exists,
    claim_time_slot,
    delete_booking,
    generate_booking_reference,
    get_active_booking_for_slot,
    get_booking,
    get_status_history,
    get_time_slot,
    get_user_profile,
    insert_booking,
    insert_booking_services,
    release_time_slot,
    update_booking,
)
from errors import (
    AccessDeniedError,
    BookingError,
    InvalidRequestError,
    NotFoundError,
    OrphanedBookingError,
    PartialWriteError,
    SlotAlreadyBookedError,
    SlotUnavailableError,
)
from models import (
    BookingRead,
    CreateBookingRequest,
    StatusHistoryRead,
    service_operation,
)
from notifications import (
    NotificationDispatcher,
    NotificationKind,
    address_summary,
    booking_context,
    get_notification_dispatcher,
    vehicle_summary,
)
from paypal_service import PayPalService
from pricing_service import PricingService
from time_slots import calculate_end_time, scheduled_datetime

logger = logging.getLogger(__name__)

MAX_REFERENCE_ATTEMPTS = 5

STATUS_MESSAGES = {
    BookingStatus.CONFIRMED: "Great news! Your booking has been confirmed. We look forward to seeing you.",
    BookingStatus.CANCELLED: "Your booking has been cancelled.",
    BookingStatus.COMPLETED: "Your vehicle detailing is complete. Thank you for choosing us!",
}


class BookingService:
    """
    Create bookings and apply status changes.

    Args:
        db: Database session
        settings: Pricing, reference and timezone settings
        pricing: Pricing engine (built from db/settings if omitted)
        notifier: Notification dispatcher
        paypal: Payment link generator
        clock: Returns the current naive UTC time
    """

    def __init__(
        self,
        db: Session,
        settings: Settings = None,
        pricing: PricingService = None,
        notifier: NotificationDispatcher = None,
        paypal: PayPalService = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.pricing = pricing or PricingService(db, self.settings)
        self.notifier = notifier or get_notification_dispatcher()
        self.paypal = paypal or PayPalService(self.settings)
        self.clock = clock

    # ============== CREATION ==============

    @service_operation("Failed to create booking")
    def create_booking(self, customer_id: int, request: CreateBookingRequest) -> BookingRead:
        """
        Create a pending booking for a customer.

        Order matters: everything that can be rejected (slot, pricing) is
        checked before the first write.

        Raises (as envelope codes):
            NOT_FOUND, SLOT_UNAVAILABLE, SLOT_ALREADY_BOOKED,
            PRICING_NOT_CONFIGURED, DISTANCE_UNAVAILABLE,
            PARTIAL_WRITE_FAILURE, ORPHANED_BOOKING
        """
        customer = get_user_profile(self.db, customer_id)
        if not customer:
            raise NotFoundError("Customer not found")

        slot = self._check_slot(request.time_slot_id)

        quotes = self.pricing.calculate_multiple_services(
            request.services,
            request.vehicle.size,
            postcode=request.address.postcode,
        )

        # Travel is charged once per visit, not per service
        distance_km = quotes[0].distance_km
        distance_surcharge = quotes[0].distance_surcharge
        subtotal = round(sum(q.base_price for q in quotes), 2)
        total_price = round(subtotal + distance_surcharge, 2)
        total_duration = sum(q.estimated_duration for q in quotes)
        _, end_time = calculate_end_time(slot.slot_date, slot.start_time, total_duration)

        line_items = [
            {
                "service_id": q.service_id,
                "service_details": {"name": q.service_name, "vehicle_size": q.vehicle_size.value},
                "price": q.base_price,
                "estimated_duration": q.estimated_duration,
            }
            for q in quotes
        ]
        pricing_breakdown = {
            "subtotal": subtotal,
            "distance_km": distance_km,
            "distance_surcharge": distance_surcharge,
            "total_price": total_price,
            "vehicle_size": request.vehicle.size.value,
            "free_radius_km": self.settings.free_radius_km,
            "surcharge_per_km": self.settings.surcharge_per_km,
            "services": [
                {"service_id": q.service_id, "name": q.service_name, "price": q.base_price}
                for q in quotes
            ],
        }

        booking = self._insert_booking(
            customer_id=customer_id,
            time_slot_id=slot.id,
            vehicle_details=request.vehicle.model_dump(mode="json"),
            service_address=request.address.model_dump(mode="json"),
            distance_km=distance_km,
            scheduled_date=slot.slot_date,
            scheduled_start_time=slot.start_time,
            scheduled_end_time=end_time,
            estimated_duration=total_duration,
            base_price=subtotal,
            distance_surcharge=distance_surcharge,
            total_price=total_price,
            pricing_breakdown=pricing_breakdown,
            special_instructions=request.customer_notes,
            status=BookingStatus.PENDING,
            payment_status=PaymentStatus.PENDING,
        )
        booking_id = booking.id
        booking_reference = booking.booking_reference

        try:
            insert_booking_services(self.db, booking_id, line_items)
        except Exception as e:
            self._compensate_failed_booking(booking_id, booking_reference, e)

        try:
            append_status_history(
                self.db,
                booking_id,
                to_status=BookingStatus.PENDING,
                changed_by=str(customer_id),
                reason="Booking created",
            )
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to record creation history for {booking_reference}: {e}")

        try:
            claim_time_slot(self.db, slot.id, booking_reference, BookingStatus.PENDING.value)
        except Exception as e:
            self.db.rollback()
            logger.warning(f"Failed to flag time slot {slot.id} for {booking_reference}: {e}")

        booking = get_booking(self.db, booking_id)
        logger.info(f"Booking {booking_reference} created for customer {customer_id} ({total_price:.2f})")

        self._send_creation_notifications(booking, customer, quotes)
        return BookingRead.model_validate(booking)

    def _check_slot(self, slot_id: int):
        """Fast-path slot check. The unique index is the real guard."""
        slot = get_time_slot(self.db, slot_id)
        if not slot or not slot.is_available:
            raise SlotUnavailableError()

        starts_at = scheduled_datetime(slot.slot_date, slot.start_time, self.settings.business_timezone)
        if starts_at <= self.clock():
            raise SlotUnavailableError("Selected time slot is in the past")

        if get_active_booking_for_slot(self.db, slot.id):
            raise SlotAlreadyBookedError()
        return slot

    def _new_reference(self) -> str:
        prefix = self.settings.booking_reference_prefix
        for _ in range(MAX_REFERENCE_ATTEMPTS):
            reference = generate_booking_reference(prefix, self.clock())
            if not booking_reference_exists(self.db, reference):
                return reference
        raise BookingError("Could not generate a unique booking reference")

    def _insert_booking(self, **fields) -> Booking:
        """Insert the booking row, mapping index violations to domain errors."""
        slot_id = fields["time_slot_id"]
        for _ in range(MAX_REFERENCE_ATTEMPTS):
            reference = self._new_reference()
            try:
                return insert_booking(self.db, booking_reference=reference, **fields)
            except IntegrityError:
                if get_active_booking_for_slot(self.db, slot_id):
                    logger.info(f"Time slot {slot_id} was booked concurrently")
                    raise SlotAlreadyBookedError()
                if booking_reference_exists(self.db, reference):
                    logger.warning(f"Booking reference collision on {reference}, retrying")
                    continue
                raise
        raise BookingError("Could not generate a unique booking reference")

    def _compensate_failed_booking(self, booking_id: int, booking_reference: str, error: Exception):
        """Remove a booking whose line items could not be written, then raise."""
        logger.error(f"Line items failed for booking {booking_reference}: {error}. Removing booking.")
        try:
            if not delete_booking(self.db, booking_id):
                raise RuntimeError("booking row not found for cleanup")
        except Exception as cleanup_error:
            self.db.rollback()
            logger.critical(
                f"ORPHANED BOOKING {booking_reference} (id={booking_id}): "
                f"cleanup failed after line item error: {cleanup_error}"
            )
            raise OrphanedBookingError(details={
                "booking_id": booking_id,
                "booking_reference": booking_reference,
                "error": str(error),
                "cleanup_error": str(cleanup_error),
            })

        raise PartialWriteError(details={
            "booking_reference": booking_reference,
            "error": str(error),
        })

    def _send_creation_notifications(self, booking: Booking, customer: UserProfile, quotes):
        context = booking_context(booking, customer)
        services = [{"name": q.service_name, "price": q.base_price} for q in quotes]
        payment = self.paypal.generate_payment_instructions(
            booking.total_price, booking.booking_reference, context["customer_name"], booking.created_at
        )

        self.notifier.dispatch(
            NotificationKind.BOOKING_CONFIRMATION,
            email=customer.email,
            services=services,
            vehicle=vehicle_summary(booking.vehicle_details),
            address=address_summary(booking.service_address),
            distance_surcharge=booking.distance_surcharge,
            total_price=booking.total_price,
            payment_link=payment.payment_link,
            payment_deadline=payment.deadline,
            **context,
        )
        self.notifier.dispatch(
            NotificationKind.ADMIN_NEW_BOOKING,
            customer_email=customer.email,
            services=services,
            postcode=(booking.service_address or {}).get("postcode", ""),
            distance_km=booking.distance_km,
            total_price=booking.total_price,
            **context,
        )

    # ============== STATUS CHANGES ==============

    def transition_status(
        self,
        booking: Booking,
        new_status: BookingStatus,
        changed_by: str,
        reason: str = None,
        notes: str = None,
        override: bool = False,
        history_reason: str = None,
    ) -> Booking:
        """
        Apply a status change and record it. Sends nothing.

        Args:
            booking: Booking to change
            new_status: Target status
            changed_by: Actor id recorded in the history
            reason: Stored as the cancellation reason when cancelling
            notes: Free text for the history row
            override: Admin override of the transition table
            history_reason: History row reason (defaults to `reason`)

        Returns:
            The updated booking

        Raises:
            InvalidTransitionError: move not allowed and no override
        """
        from_status = booking.status
        warning = validate_transition(from_status, new_status, override, booking.booking_reference)

        now = self.clock()
        fields = {"status": new_status}
        if new_status == BookingStatus.CONFIRMED:
            fields["confirmed_at"] = now
        elif new_status == BookingStatus.COMPLETED:
            fields["completed_at"] = now
        elif new_status == BookingStatus.CANCELLED:
            fields["cancelled_at"] = now
            fields["cancelled_by"] = changed_by
            fields["cancellation_reason"] = reason
        elif new_status == BookingStatus.PROCESSING:
            fields["payment_status"] = PaymentStatus.PROCESSING
        elif new_status == BookingStatus.PAYMENT_FAILED:
            fields["payment_status"] = PaymentStatus.FAILED

        history = {
            "from_status": from_status,
            "to_status": new_status,
            "changed_by": changed_by,
            "reason": history_reason or reason,
            "notes": "; ".join(part for part in (notes, warning) if part) or None,
        }
        booking = apply_status_change(self.db, booking.id, history, **fields)

        # A cancelled booking's slot is released by the caller instead
        if booking.time_slot_id and new_status != BookingStatus.CANCELLED:
            try:
                claim_time_slot(self.db, booking.time_slot_id, booking.booking_reference, new_status.value)
            except Exception as e:
                self.db.rollback()
                logger.warning(f"Failed to update slot flags for {booking.booking_reference}: {e}")

        logger.info(
            f"Booking {booking.booking_reference}: {from_status.value} -> {new_status.value} by {changed_by}"
        )
        return booking

    @service_operation("Failed to update booking status")
    def update_booking_status(
        self,
        booking_id: int,
        new_status: BookingStatus,
        changed_by: str,
        reason: str = None,
        notes: str = None,
        send_email: bool = True,
        override: bool = False,
    ) -> BookingRead:
        """Change a booking's status and notify the customer where relevant."""
        booking = get_booking(self.db, booking_id)
        if not booking:
            raise NotFoundError("Booking not found")

        booking = self.transition_status(booking, new_status, changed_by, reason, notes, override)
        if new_status == BookingStatus.CANCELLED:
            self.release_slot(booking)

        if send_email:
            self._send_status_notifications(booking, reason)
        return BookingRead.model_validate(booking)

    def release_slot(self, booking: Booking) -> bool:
        """
        Make a cancelled booking's slot bookable again.

        Best-effort: a failure is logged and leaves the cancellation in place.
        """
        if not booking.time_slot_id:
            return False
        try:
            return release_time_slot(self.db, booking.time_slot_id) is not None
        except Exception as e:
            self.db.rollback()
            logger.warning(
                f"Failed to release time slot {booking.time_slot_id} "
                f"for cancelled booking {booking.booking_reference}: {e}"
            )
            return False

    def _customer_for(self, booking: Booking) -> Optional[UserProfile]:
        """Customer profile for emails; lookup failures only disable the email."""
        try:
            customer = get_user_profile(self.db, booking.customer_id)
        except Exception as e:
            self.db.rollback()
            logger.error(f"Customer lookup failed for {booking.booking_reference}: {e}")
            return None
        if not customer or not customer.email:
            logger.warning(f"No customer email for {booking.booking_reference}; email skipped")
            return None
        return customer

    def _send_status_notifications(self, booking: Booking, reason: str = None) -> bool:
        status = booking.status
        if status not in CUSTOMER_NOTIFIED_STATUSES and status != BookingStatus.PAYMENT_FAILED:
            return False

        customer = self._customer_for(booking)
        if not customer:
            return False
        context = booking_context(booking, customer)

        if status == BookingStatus.PAYMENT_FAILED:
            payment_link = self.paypal.generate_payment_link(booking.total_price, booking.booking_reference)
            sent = self.notifier.dispatch(
                NotificationKind.PAYMENT_FAILED,
                email=customer.email,
                booking_reference=booking.booking_reference,
                customer_name=context["customer_name"],
                amount=booking.total_price,
                payment_link=payment_link,
            )
            self.notifier.dispatch(
                NotificationKind.PAYMENT_FAILED_ADMIN,
                booking_reference=booking.booking_reference,
                customer_name=context["customer_name"],
                customer_email=customer.email,
                amount=booking.total_price,
            )
            return sent

        message = STATUS_MESSAGES[status]
        if status == BookingStatus.CANCELLED and reason:
            message = f"{message} Reason: {reason}"
        return self.notifier.dispatch(
            NotificationKind.STATUS_UPDATE,
            email=customer.email,
            status_label=get_status_label(status),
            message=message,
            **context,
        )

    def confirm_booking(self, booking_id: int, admin_id: str, notes: str = None):
        return self.update_booking_status(booking_id, BookingStatus.CONFIRMED, admin_id, notes=notes)

    def decline_booking(self, booking_id: int, admin_id: str, reason: str = None):
        return self.update_booking_status(booking_id, BookingStatus.DECLINED, admin_id, reason=reason)

    @service_operation("Failed to mark booking as paid")
    def mark_booking_paid(self, booking_id: int, changed_by: str, amount: float = None) -> BookingRead:
        """
        Record a manually confirmed payment.

        Pending or processing bookings are confirmed at the same time.
        """
        booking = get_booking(self.db, booking_id)
        if not booking:
            raise NotFoundError("Booking not found")
        if booking.payment_status == PaymentStatus.COMPLETED:
            raise InvalidRequestError("Booking is already marked as paid")

        notes = None
        if amount is not None and round(amount, 2) != round(booking.total_price, 2):
            notes = f"Amount received £{amount:.2f} differs from total £{booking.total_price:.2f}"
            logger.warning(f"{booking.booking_reference}: {notes}")

        booking = update_booking(
            self.db, booking.id, payment_status=PaymentStatus.COMPLETED, paid_at=self.clock()
        )
        if booking.status in (BookingStatus.PENDING, BookingStatus.PROCESSING):
            booking = self.transition_status(
                booking, BookingStatus.CONFIRMED, changed_by, notes=notes, history_reason="Payment received"
            )

        customer = self._customer_for(booking)
        if customer:
            self.notifier.dispatch(
                NotificationKind.PAYMENT_CONFIRMATION,
                email=customer.email,
                amount=amount if amount is not None else booking.total_price,
                **booking_context(booking, customer),
            )
        return BookingRead.model_validate(booking)

    # ============== READS ==============

    @service_operation("Failed to fetch booking")
    def get_booking(self, booking_id: int, customer_id: int = None) -> BookingRead:
        booking = get_booking(self.db, booking_id)
        if not booking:
            raise NotFoundError("Booking not found")
        if customer_id is not None and booking.customer_id != customer_id:
            raise AccessDeniedError()
        return BookingRead.model_validate(booking)

    @service_operation("Failed to fetch status history")
    def get_status_history(self, booking_id: int) -> List[StatusHistoryRead]:
        if not get_booking(self.db, booking_id):
            raise NotFoundError("Booking not found")
        return [StatusHistoryRead.model_validate(row) for row in get_status_history(self.db, booking_id)]

    @service_operation("Failed to fetch next statuses")
    def get_valid_next_statuses(self, booking_id: int) -> List[str]:
        booking = get_booking(self.db, booking_id)
        if not booking:
            raise NotFoundError("Booking not found")
        return [status.value for status in get_valid_next_statuses(booking.status)]
