"""
Payment reminders for unpaid Love 4 Detailing bookings.

A booking in processing or payment_failed that is still unpaid once its
payment deadline passes is overdue. Each run of the batch sends at most
one reminder per booking, and only when the booking has crossed more
reminder thresholds than it has had reminders, up to max_reminders.

The per-booking counter is claimed with a compare-and-swap update before
the email goes out, so overlapping runs cannot send the same reminder twice.
"""
import logging
import time
from datetime import datetime, timedelta
from typing import Callable, List

from sqlalchemy.orm import Session

from config import Settings, get_settings
from db_models import BookingStatus, utcnow
from db_service import claim_reminder_slot, get_bookings_by_status_created_before, release_reminder_slot
from models import OverduePayment, ReminderRunResult, service_operation
from notifications import NotificationDispatcher, NotificationKind, get_notification_dispatcher
from paypal_service import PayPalService, format_deadline

logger = logging.getLogger(__name__)

OVERDUE_STATUSES = [BookingStatus.PROCESSING, BookingStatus.PAYMENT_FAILED]


class PaymentReminderService:
    def __init__(
        self,
        db: Session,
        settings: Settings = None,
        paypal: PayPalService = None,
        notifier: NotificationDispatcher = None,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.paypal = paypal or PayPalService(self.settings)
        self.notifier = notifier or get_notification_dispatcher()
        self.clock = clock
        self.sleep = sleep

    # ============== TIERS ==============

    def get_reminder_type(self, hours_overdue: int) -> str:
        """gentle, urgent or final depending on how long payment is overdue."""
        thresholds = sorted(self.settings.reminder_thresholds_hours)
        if hours_overdue >= thresholds[-1]:
            return "final"
        if len(thresholds) > 1 and hours_overdue >= thresholds[-2]:
            return "urgent"
        return "gentle"

    def thresholds_crossed(self, hours_overdue: int) -> int:
        return sum(1 for threshold in self.settings.reminder_thresholds_hours if hours_overdue >= threshold)

    def should_send_reminder(self, hours_overdue: int, reminder_count: int) -> bool:
        """One reminder per threshold crossed, never more than max_reminders."""
        if reminder_count >= self.settings.max_reminders:
            return False
        return reminder_count < self.thresholds_crossed(hours_overdue)

    # ============== OVERDUE QUERY ==============

    def find_overdue_payments(self) -> List[OverduePayment]:
        """
        Unpaid bookings past their payment deadline, oldest first.

        Bookings whose customer has no email address are left out since
        there is nobody to remind.
        """
        now = self.clock()
        deadline_hours = self.settings.payment_deadline_hours
        cutoff = now - timedelta(hours=deadline_hours)

        overdue = []
        for booking in get_bookings_by_status_created_before(self.db, OVERDUE_STATUSES, cutoff):
            customer = booking.customer
            if not customer or not customer.email:
                logger.warning(f"Skipping overdue booking {booking.booking_reference}: no customer email")
                continue

            created_at = booking.created_at.replace(tzinfo=None)
            deadline = created_at + timedelta(hours=deadline_hours)
            hours_overdue = int((now - deadline).total_seconds() // 3600)

            overdue.append(OverduePayment(
                id=booking.id,
                booking_reference=booking.booking_reference,
                customer_name=customer.display_name,
                customer_email=customer.email,
                total_price=booking.total_price,
                payment_link=self.paypal.generate_payment_link(
                    booking.total_price, booking.booking_reference, self.settings.app_url or None
                ),
                payment_deadline=format_deadline(deadline),
                created_at=created_at,
                hours_overdue=hours_overdue,
                reminder_count=booking.reminder_count or 0,
                last_reminder_at=booking.last_reminder_at,
            ))

        return overdue

    @service_operation("Failed to fetch overdue payments")
    def get_overdue_payments(self) -> List[OverduePayment]:
        return self.find_overdue_payments()

    # ============== SENDING ==============

    def send_reminder(self, payment: OverduePayment) -> bool:
        """
        Send the reminder for a booking whose counter slot is already claimed.

        Returns whether the email went out.
        """
        reminder_type = self.get_reminder_type(payment.hours_overdue)
        sent = self.notifier.dispatch(
            NotificationKind.PAYMENT_REMINDER,
            email=payment.customer_email,
            customer_name=payment.customer_name,
            booking_reference=payment.booking_reference,
            amount=payment.total_price,
            hours_overdue=payment.hours_overdue,
            reminder_type=reminder_type,
            payment_link=payment.payment_link,
        )
        if sent:
            logger.info(
                f"Sent {reminder_type} payment reminder #{payment.reminder_count + 1} "
                f"for {payment.booking_reference} ({payment.hours_overdue}h overdue)"
            )
        return sent

    def process_payment_reminders(self) -> ReminderRunResult:
        """
        Run one reminder batch.

        Never raises: a failing booking is recorded in `errors` and the
        batch moves on to the next one. A booking whose counter another
        run already moved is skipped silently.
        """
        result = ReminderRunResult()

        try:
            overdue = self.find_overdue_payments()
        except Exception as e:
            logger.error(f"Error fetching overdue payments: {e}")
            self.db.rollback()
            result.success = False
            result.errors.append(f"Failed to get overdue payments: {e}")
            return result

        result.processed = len(overdue)
        due = [p for p in overdue if self.should_send_reminder(p.hours_overdue, p.reminder_count)]

        for index, payment in enumerate(due):
            if index and self.settings.reminder_send_delay_seconds:
                self.sleep(self.settings.reminder_send_delay_seconds)

            try:
                if not claim_reminder_slot(self.db, payment.id, payment.reminder_count, self.clock()):
                    logger.info(f"Reminder for {payment.booking_reference} already claimed, skipping")
                    continue

                if self.send_reminder(payment):
                    result.sent += 1
                    continue

                release_reminder_slot(self.db, payment.id, payment.reminder_count, payment.last_reminder_at)
                result.errors.append(f"Failed to send reminder for {payment.booking_reference}: email not sent")
            except Exception as e:
                logger.error(f"Failed to send reminder for {payment.booking_reference}: {e}")
                self.db.rollback()
                result.errors.append(f"Failed to send reminder for {payment.booking_reference}: {e}")

        if result.errors:
            result.success = False

        logger.info(
            f"Payment reminder run: {result.processed} overdue, {result.sent} sent, {len(result.errors)} errors"
        )
        return result
