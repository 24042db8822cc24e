"""
Tests for the booking lifecycle: creation, status changes and payment.
"""
import logging
import re
import pytest
from datetime import time
from unittest.mock import MagicMock, patch

from booking_service import BookingService
from db_models import Booking, BookingStatus, BookingStatusHistory, PaymentStatus, VehicleSize
from db_service import create_time_slot, get_status_history, get_time_slot
from distance_service import DistanceResolver
from models import DistanceResult
from notifications import NotificationKind
from factories import NOW, TOMORROW, insert_test_booking, make_booking_request


@pytest.fixture
def resolver():
    """Every address is 12 km from the base."""
    resolver = MagicMock(spec=DistanceResolver)
    resolver.distance_from_base.return_value = DistanceResult(distance_km=12.0, duration_min=24, provider="offline")
    return resolver


def dispatched_kinds(notifier):
    return [call.args[0] for call in notifier.dispatch.call_args_list]


def dispatched(notifier, kind):
    for call in notifier.dispatch.call_args_list:
        if call.args[0] == kind:
            return call.kwargs
    raise AssertionError(f"{kind} was not dispatched")


def create(booking_service, customer, slot, services, **kwargs):
    response = booking_service.create_booking(
        customer.id, make_booking_request(slot.id, [s.id for s in services], **kwargs)
    )
    assert response.success is True, response.error
    return response.data


# =============================================================================
# Creation
# =============================================================================

class TestCreateBooking:
    def test_two_services_with_distance_surcharge(self, booking_service, customer, slot, services):
        booking = create(booking_service, customer, slot, services)

        assert re.match(r"^L4D-\d+-[A-Z0-9]{4}$", booking.booking_reference)
        assert booking.status == BookingStatus.PENDING
        assert booking.payment_status == PaymentStatus.PENDING
        assert booking.base_price == 65.0
        assert booking.distance_km == 12.0
        assert booking.distance_surcharge == 10.5
        assert booking.total_price == 75.5
        assert booking.estimated_duration == 150
        assert booking.scheduled_date == TOMORROW
        assert booking.scheduled_start_time == time(10, 0)
        assert booking.scheduled_end_time == time(12, 30)
        assert [s.price for s in booking.services] == [40.0, 25.0]
        assert booking.vehicle_details["registration"] == "AB12 CDE"
        assert booking.service_address["postcode"] == "NG1 1AA"
        assert booking.pricing_breakdown["subtotal"] == 65.0

    def test_surcharge_charged_once_per_booking(self, booking_service, customer, slot, services):
        booking = create(booking_service, customer, slot, services)

        assert booking.total_price == booking.base_price + 10.5

    def test_creation_history_row(self, booking_service, db_session, customer, slot, services):
        booking = create(booking_service, customer, slot, services)

        history = get_status_history(db_session, booking.id)
        assert len(history) == 1
        assert history[0].from_status is None
        assert history[0].to_status == BookingStatus.PENDING
        assert history[0].changed_by == str(customer.id)
        assert history[0].reason == "Booking created"

    def test_slot_flags_updated(self, booking_service, db_session, customer, slot, services):
        booking = create(booking_service, customer, slot, services)

        db_session.refresh(slot)
        assert slot.booking_reference == booking.booking_reference
        assert slot.booking_status == "pending"

    def test_confirmation_and_admin_emails(self, booking_service, notifier, customer, slot, services):
        booking = create(booking_service, customer, slot, services)

        assert dispatched_kinds(notifier) == [
            NotificationKind.BOOKING_CONFIRMATION,
            NotificationKind.ADMIN_NEW_BOOKING,
        ]
        confirmation = dispatched(notifier, NotificationKind.BOOKING_CONFIRMATION)
        assert confirmation["email"] == "jane.smith@example.com"
        assert confirmation["customer_name"] == "Jane Smith"
        assert confirmation["booking_reference"] == booking.booking_reference
        assert confirmation["payment_link"] == "https://paypal.me/love4detailing/75.50GBP"
        assert confirmation["vehicle"] == "Black Ford Focus (AB12 CDE)"
        assert dispatched(notifier, NotificationKind.ADMIN_NEW_BOOKING)["postcode"] == "NG1 1AA"

    def test_email_failure_does_not_fail_booking(self, booking_service, notifier, customer, slot, services):
        notifier.dispatch.return_value = False

        response = booking_service.create_booking(customer.id, make_booking_request(slot.id, [services[0].id]))

        assert response.success is True

    def test_unknown_customer(self, booking_service, slot, services):
        response = booking_service.create_booking(9999, make_booking_request(slot.id, [services[0].id]))

        assert response.success is False
        assert response.error.code == "NOT_FOUND"

    def test_unknown_slot(self, booking_service, customer, services):
        response = booking_service.create_booking(customer.id, make_booking_request(9999, [services[0].id]))

        assert response.error.code == "SLOT_UNAVAILABLE"

    def test_unavailable_slot(self, booking_service, db_session, customer, services):
        closed = create_time_slot(db_session, TOMORROW, time(16, 0), is_available=False)

        response = booking_service.create_booking(customer.id, make_booking_request(closed.id, [services[0].id]))

        assert response.error.code == "SLOT_UNAVAILABLE"

    def test_past_slot(self, booking_service, db_session, customer, services):
        earlier = create_time_slot(db_session, NOW.date(), time(8, 0))

        response = booking_service.create_booking(customer.id, make_booking_request(earlier.id, [services[0].id]))

        assert response.error.code == "SLOT_UNAVAILABLE"
        assert response.error.message == "Selected time slot is in the past"

    def test_slot_already_booked(self, booking_service, db_session, customer, other_customer, slot, services):
        insert_test_booking(db_session, other_customer.id, slot=slot, status=BookingStatus.CONFIRMED)

        response = booking_service.create_booking(customer.id, make_booking_request(slot.id, [services[0].id]))

        assert response.error.code == "SLOT_ALREADY_BOOKED"

    def test_slot_of_cancelled_booking_can_be_rebooked(
        self, booking_service, db_session, customer, other_customer, slot, services
    ):
        insert_test_booking(db_session, other_customer.id, slot=slot, status=BookingStatus.CANCELLED)

        response = booking_service.create_booking(customer.id, make_booking_request(slot.id, [services[0].id]))

        assert response.success is True

    def test_pricing_failure_writes_nothing(self, booking_service, db_session, customer, slot, services):
        request = make_booking_request(slot.id, [s.id for s in services], size=VehicleSize.XL)

        response = booking_service.create_booking(customer.id, request)

        assert response.error.code == "PRICING_NOT_CONFIGURED"
        assert db_session.query(Booking).count() == 0


class TestConcurrentCreation:
    def test_lost_race_maps_to_slot_already_booked(
        self, booking_service, db_session, customer, other_customer, slot, services
    ):
        # The winner's row lands after our fast-path check passed
        insert_test_booking(db_session, other_customer.id, slot=slot, status=BookingStatus.PENDING)

        with patch.object(BookingService, "_check_slot", return_value=slot):
            response = booking_service.create_booking(
                customer.id, make_booking_request(slot.id, [services[0].id])
            )

        assert response.success is False
        assert response.error.code == "SLOT_ALREADY_BOOKED"
        assert db_session.query(Booking).filter(Booking.customer_id == customer.id).count() == 0

    def test_only_one_of_two_requests_wins(self, booking_service, customer, other_customer, slot, services):
        first = booking_service.create_booking(customer.id, make_booking_request(slot.id, [services[0].id]))
        second = booking_service.create_booking(other_customer.id, make_booking_request(slot.id, [services[1].id]))

        assert first.success is True
        assert second.error.code == "SLOT_ALREADY_BOOKED"


class TestPartialWrites:
    def test_line_item_failure_removes_booking(self, booking_service, db_session, notifier, customer, slot, services):
        with patch("booking_service.insert_booking_services", side_effect=RuntimeError("disk full")):
            response = booking_service.create_booking(customer.id, make_booking_request(slot.id, [services[0].id]))

        assert response.success is False
        assert response.error.code == "PARTIAL_WRITE_FAILURE"
        assert db_session.query(Booking).count() == 0
        notifier.dispatch.assert_not_called()

    def test_failed_cleanup_reports_orphan(self, booking_service, db_session, customer, slot, services, caplog):
        with patch("booking_service.insert_booking_services", side_effect=RuntimeError("disk full")), \
                patch("booking_service.delete_booking", side_effect=RuntimeError("connection lost")), \
                caplog.at_level(logging.CRITICAL, logger="booking_service"):
            response = booking_service.create_booking(customer.id, make_booking_request(slot.id, [services[0].id]))

        assert response.error.code == "ORPHANED_BOOKING"
        assert response.error.details["cleanup_error"] == "connection lost"
        assert any(r.levelno == logging.CRITICAL for r in caplog.records)

    def test_history_failure_is_not_fatal(self, booking_service, db_session, customer, slot, services):
        with patch("booking_service.append_status_history", side_effect=RuntimeError("history down")):
            response = booking_service.create_booking(customer.id, make_booking_request(slot.id, [services[0].id]))

        assert response.success is True
        assert db_session.query(BookingStatusHistory).count() == 0


# =============================================================================
# Status changes
# =============================================================================

class TestUpdateBookingStatus:
    def test_confirm(self, booking_service, notifier, customer, slot, services):
        booking = create(booking_service, customer, slot, services)
        notifier.reset_mock()

        response = booking_service.update_booking_status(booking.id, BookingStatus.CONFIRMED, "admin-1")

        assert response.success is True
        assert response.data.status == BookingStatus.CONFIRMED
        assert response.data.confirmed_at == NOW
        update = dispatched(notifier, NotificationKind.STATUS_UPDATE)
        assert update["status_label"] == "Confirmed"
        assert update["email"] == "jane.smith@example.com"

    def test_history_appended(self, booking_service, db_session, customer, slot, services):
        booking = create(booking_service, customer, slot, services)

        booking_service.update_booking_status(booking.id, BookingStatus.CONFIRMED, "admin-1", notes="Looks good")

        history = get_status_history(db_session, booking.id)
        assert [(h.from_status, h.to_status) for h in history] == [
            (None, BookingStatus.PENDING),
            (BookingStatus.PENDING, BookingStatus.CONFIRMED),
        ]
        assert history[1].changed_by == "admin-1"
        assert history[1].notes == "Looks good"

    def test_slot_flags_follow_status(self, booking_service, db_session, customer, slot, services):
        booking = create(booking_service, customer, slot, services)

        booking_service.update_booking_status(booking.id, BookingStatus.CONFIRMED, "admin-1")

        assert get_time_slot(db_session, slot.id).booking_status == "confirmed"

    def test_invalid_transition(self, booking_service, db_session, notifier, customer, slot, services):
        booking = create(booking_service, customer, slot, services)
        notifier.reset_mock()

        response = booking_service.update_booking_status(booking.id, BookingStatus.COMPLETED, "admin-1")

        assert response.success is False
        assert response.error.code == "INVALID_TRANSITION"
        assert len(get_status_history(db_session, booking.id)) == 1
        notifier.dispatch.assert_not_called()

    def test_override_is_recorded(self, booking_service, db_session, customer, slot, services):
        booking = create(booking_service, customer, slot, services)

        response = booking_service.update_booking_status(
            booking.id, BookingStatus.COMPLETED, "admin-1", override=True
        )

        assert response.success is True
        assert response.data.completed_at == NOW
        assert "Status override" in get_status_history(db_session, booking.id)[-1].notes

    def test_no_email_when_disabled(self, booking_service, notifier, customer, slot, services):
        booking = create(booking_service, customer, slot, services)
        notifier.reset_mock()

        booking_service.update_booking_status(booking.id, BookingStatus.CONFIRMED, "admin-1", send_email=False)

        notifier.dispatch.assert_not_called()

    def test_in_progress_sends_nothing(self, booking_service, db_session, notifier, customer):
        booking = insert_test_booking(db_session, customer.id, status=BookingStatus.CONFIRMED)

        booking_service.update_booking_status(booking.id, BookingStatus.IN_PROGRESS, "detailer-1")

        notifier.dispatch.assert_not_called()

    def test_payment_failed(self, booking_service, db_session, notifier, customer):
        booking = insert_test_booking(db_session, customer.id, status=BookingStatus.PROCESSING)

        response = booking_service.update_booking_status(booking.id, BookingStatus.PAYMENT_FAILED, "system")

        assert response.data.payment_status == PaymentStatus.FAILED
        assert dispatched_kinds(notifier) == [NotificationKind.PAYMENT_FAILED, NotificationKind.PAYMENT_FAILED_ADMIN]
        assert dispatched(notifier, NotificationKind.PAYMENT_FAILED)["amount"] == 75.5

    def test_processing_moves_payment_status(self, booking_service, customer, slot, services):
        booking = create(booking_service, customer, slot, services)

        response = booking_service.update_booking_status(booking.id, BookingStatus.PROCESSING, "system")

        assert response.data.payment_status == PaymentStatus.PROCESSING

    def test_cancel_releases_slot(self, booking_service, db_session, customer, slot, services):
        booking = create(booking_service, customer, slot, services)

        response = booking_service.update_booking_status(
            booking.id, BookingStatus.CANCELLED, "admin-1", reason="Weather"
        )

        assert response.data.cancelled_by == "admin-1"
        assert response.data.cancellation_reason == "Weather"
        released = get_time_slot(db_session, slot.id)
        assert released.is_available is True
        assert released.booking_reference is None

    def test_history_failure_rolls_back_status(self, booking_service, db_session, notifier, customer, slot, services):
        booking = create(booking_service, customer, slot, services)
        notifier.reset_mock()

        with patch("db_service.BookingStatusHistory", side_effect=RuntimeError("history down")):
            response = booking_service.update_booking_status(
                booking.id, BookingStatus.CANCELLED, "admin-1", reason="Weather"
            )

        assert response.success is False
        assert response.error.code == "SERVICE_ERROR"
        stored = db_session.get(Booking, booking.id)
        assert stored.status == BookingStatus.PENDING
        assert stored.cancelled_by is None
        assert len(get_status_history(db_session, booking.id)) == 1
        assert get_time_slot(db_session, slot.id).booking_reference == booking.booking_reference
        notifier.dispatch.assert_not_called()

    def test_unknown_booking(self, booking_service):
        response = booking_service.update_booking_status(9999, BookingStatus.CONFIRMED, "admin-1")

        assert response.error.code == "NOT_FOUND"

    def test_confirm_and_decline_shortcuts(self, booking_service, db_session, customer, other_customer):
        first = insert_test_booking(db_session, customer.id, start_time=time(10, 0))
        second = insert_test_booking(db_session, other_customer.id, start_time=time(14, 0))

        assert booking_service.confirm_booking(first.id, "admin-1").data.status == BookingStatus.CONFIRMED
        assert booking_service.decline_booking(second.id, "admin-1", reason="Too far").data.status == BookingStatus.DECLINED


class TestMarkBookingPaid:
    def test_pending_booking_is_confirmed(self, booking_service, db_session, notifier, customer, slot, services):
        booking = create(booking_service, customer, slot, services)
        notifier.reset_mock()

        response = booking_service.mark_booking_paid(booking.id, "admin-1")

        assert response.data.payment_status == PaymentStatus.COMPLETED
        assert response.data.paid_at == NOW
        assert response.data.status == BookingStatus.CONFIRMED
        assert get_status_history(db_session, booking.id)[-1].reason == "Payment received"
        assert dispatched(notifier, NotificationKind.PAYMENT_CONFIRMATION)["amount"] == 75.5

    def test_confirmed_booking_keeps_status(self, booking_service, db_session, customer):
        booking = insert_test_booking(db_session, customer.id, status=BookingStatus.CONFIRMED)

        response = booking_service.mark_booking_paid(booking.id, "admin-1", amount=75.5)

        assert response.data.status == BookingStatus.CONFIRMED
        assert response.data.payment_status == PaymentStatus.COMPLETED

    def test_already_paid(self, booking_service, db_session, customer):
        booking = insert_test_booking(
            db_session, customer.id, status=BookingStatus.CONFIRMED, payment_status=PaymentStatus.COMPLETED
        )

        response = booking_service.mark_booking_paid(booking.id, "admin-1")

        assert response.error.code == "VALIDATION_ERROR"


class TestReads:
    def test_get_booking_scoped_to_customer(self, booking_service, customer, other_customer, slot, services):
        booking = create(booking_service, customer, slot, services)

        assert booking_service.get_booking(booking.id, customer.id).success is True
        assert booking_service.get_booking(booking.id, other_customer.id).error.code == "ACCESS_DENIED"
        assert booking_service.get_booking(9999).error.code == "NOT_FOUND"

    def test_status_history(self, booking_service, customer, slot, services):
        booking = create(booking_service, customer, slot, services)
        booking_service.confirm_booking(booking.id, "admin-1")

        history = booking_service.get_status_history(booking.id).data

        assert [h.to_status for h in history] == [BookingStatus.PENDING, BookingStatus.CONFIRMED]

    def test_valid_next_statuses(self, booking_service, customer, slot, services):
        booking = create(booking_service, customer, slot, services)

        response = booking_service.get_valid_next_statuses(booking.id)

        assert response.data == ["confirmed", "processing", "cancelled", "declined"]
