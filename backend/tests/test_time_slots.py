"""
Tests for time slot arithmetic, bulk slot creation and the availability calendar.
"""
import pytest
from datetime import date, time, datetime, timedelta

from db_models import BookingStatus
from db_service import create_time_slot
from models import TimeSlotCreate
from time_slots import (
    TimeSlotService,
    calculate_end_time,
    filter_new_slots,
    format_time_display,
    get_day_name,
    is_past_slot,
    scheduled_datetime,
)
from factories import NOW, TOMORROW, insert_test_booking


@pytest.fixture
def slot_service(db_session, settings, clock):
    return TimeSlotService(db_session, settings, clock=clock)


class TestSlotArithmetic:
    def test_end_time_same_day(self):
        assert calculate_end_time(date(2026, 6, 2), time(9, 0), 105) == (date(2026, 6, 2), time(10, 45))

    def test_end_time_past_midnight(self):
        assert calculate_end_time(date(2026, 6, 2), time(23, 0), 120) == (date(2026, 6, 3), time(1, 0))

    def test_scheduled_datetime_utc(self):
        assert scheduled_datetime(date(2026, 6, 2), time(10, 0)) == datetime(2026, 6, 2, 10, 0)

    def test_scheduled_datetime_british_summer_time(self):
        assert scheduled_datetime(date(2026, 6, 2), time(10, 0), "Europe/London") == datetime(2026, 6, 2, 9, 0)

    def test_scheduled_datetime_winter(self):
        assert scheduled_datetime(date(2026, 1, 15), time(10, 0), "Europe/London") == datetime(2026, 1, 15, 10, 0)

    def test_is_past_slot_respects_buffer(self):
        assert is_past_slot(NOW.date(), time(9, 3), NOW, buffer_minutes=5)
        assert not is_past_slot(NOW.date(), time(9, 10), NOW, buffer_minutes=5)
        assert is_past_slot(NOW.date() - timedelta(days=1), time(18, 0), NOW, buffer_minutes=0)

    def test_display_helpers(self):
        assert format_time_display(time(9, 5)) == "09:05"
        assert get_day_name(date(2026, 6, 1)) == "Monday"


class TestFilterNewSlots:
    def test_splits_duplicates_and_past(self, db_session):
        existing = [create_time_slot(db_session, TOMORROW, time(10, 0))]
        requested = [
            TimeSlotCreate(slot_date=TOMORROW, start_time="10:00"),
            TimeSlotCreate(slot_date=TOMORROW, start_time="12:00"),
            TimeSlotCreate(slot_date=TOMORROW, start_time="12:00"),
            TimeSlotCreate(slot_date=NOW.date(), start_time="08:00"),
        ]

        to_create, duplicates, past = filter_new_slots(requested, existing, NOW, 5)

        assert [s.start_time for s in to_create] == [time(12, 0)]
        assert len(duplicates) == 2
        assert len(past) == 1


class TestCreateSlots:
    def test_creates_slots(self, slot_service):
        response = slot_service.create_slots([
            TimeSlotCreate(slot_date=TOMORROW, start_time="10:00"),
            TimeSlotCreate(slot_date=TOMORROW, start_time="13:30", notes="Afternoon"),
        ], created_by="admin-1")

        assert response.success is True
        assert [s.start_time for s in response.data.created] == [time(10, 0), time(13, 30)]
        assert response.data.created[0].created_by == "admin-1"
        assert response.data.duplicates_skipped == 0

    def test_skips_duplicates_when_something_is_new(self, slot_service, slot):
        response = slot_service.create_slots([
            TimeSlotCreate(slot_date=TOMORROW, start_time="10:00"),
            TimeSlotCreate(slot_date=TOMORROW, start_time="14:00"),
        ])

        assert response.success is True
        assert len(response.data.created) == 1
        assert response.data.duplicates_skipped == 1

    def test_all_duplicates(self, slot_service, slot):
        response = slot_service.create_slots([TimeSlotCreate(slot_date=TOMORROW, start_time="10:00")])

        assert response.success is False
        assert response.error.code == "VALIDATION_ERROR"
        assert response.error.message == "Time slots already exist for: 10:00"

    def test_all_in_the_past(self, slot_service):
        response = slot_service.create_slots([TimeSlotCreate(slot_date=NOW.date(), start_time="08:00")])

        assert response.success is False
        assert response.error.message == "Cannot create time slots in the past"

    def test_empty_request(self, slot_service):
        response = slot_service.create_slots([])

        assert response.success is False
        assert response.error.message == "At least one time slot is required"


class TestAvailability:
    def test_calendar_covers_every_day(self, slot_service, slot):
        response = slot_service.get_availability(NOW.date(), TOMORROW + timedelta(days=1))

        assert response.success is True
        days = response.data
        assert [d.date for d in days] == [NOW.date(), TOMORROW, TOMORROW + timedelta(days=1)]
        assert [d.is_available for d in days] == [False, True, False]
        assert days[1].day_of_week == 1
        assert days[1].available_slots[0].id == slot.id

    def test_booked_slot_is_hidden(self, slot_service, db_session, customer, slot):
        insert_test_booking(db_session, customer.id, slot=slot, status=BookingStatus.CONFIRMED)

        days = slot_service.get_availability(TOMORROW).data

        assert days[0].available_slots == []
        assert days[0].is_available is False

    def test_cancelled_booking_frees_slot(self, slot_service, db_session, customer, slot):
        insert_test_booking(db_session, customer.id, slot=slot, status=BookingStatus.CANCELLED)

        days = slot_service.get_availability(TOMORROW).data

        assert [s.id for s in days[0].available_slots] == [slot.id]

    def test_unavailable_slot_is_hidden(self, slot_service, db_session):
        create_time_slot(db_session, TOMORROW, time(15, 0), is_available=False)

        assert slot_service.get_availability(TOMORROW).data[0].available_slots == []

    def test_today_respects_buffer(self, slot_service, db_session):
        create_time_slot(db_session, NOW.date(), time(9, 3))
        later = create_time_slot(db_session, NOW.date(), time(11, 0))

        day = slot_service.get_availability(NOW.date()).data[0]

        assert [s.id for s in day.available_slots] == [later.id]

    def test_past_range_rejected(self, slot_service):
        response = slot_service.get_availability(NOW.date() - timedelta(days=7), NOW.date() - timedelta(days=1))

        assert response.success is False
        assert response.error.message == "Cannot fetch availability for past dates"

    def test_inverted_range_rejected(self, slot_service):
        response = slot_service.get_availability(TOMORROW, NOW.date())

        assert response.success is False

    def test_range_limit(self, slot_service):
        response = slot_service.get_availability(NOW.date(), NOW.date() + timedelta(days=31))

        assert response.success is False
        assert "31" in response.error.message
