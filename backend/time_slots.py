"""
Time slot logic for the Love 4 Detailing booking system.

Slot arithmetic (end times, scheduled datetimes), admin slot creation
with duplicate and past-slot filtering, and the customer availability
calendar. A slot counts as booked while a non-cancelled booking holds it.
"""
import logging
from datetime import date, time, datetime, timedelta, timezone
from typing import Callable, List, Tuple
from zoneinfo import ZoneInfo

from sqlalchemy.orm import Session

from config import Settings, get_settings
from db_models import TimeSlot, utcnow
from db_service import (
    get_time_slots_for_dates,
    get_available_time_slots,
    get_booked_slot_ids,
    create_time_slots,
)
from errors import InvalidRequestError
from models import (
    AvailableSlot,
    BulkSlotResult,
    CalendarDay,
    TimeSlotCreate,
    TimeSlotRead,
    service_operation,
)

logger = logging.getLogger(__name__)

MAX_CALENDAR_DAYS = 31


def calculate_end_time(
    slot_date: date,
    start_time: time,
    duration_minutes: int,
) -> Tuple[date, time]:
    """
    Calculate when a booking ends.

    Args:
        slot_date: Date of the slot
        start_time: Start time of the slot
        duration_minutes: Total estimated duration of the booked services

    Returns:
        Tuple of (end_date, end_time); end_date moves on if the work runs past midnight

    Examples:
        - 09:00 + 105 min -> 10:45 same day
        - 23:00 + 120 min -> 01:00 next day
    """
    start = datetime.combine(slot_date, start_time)
    end = start + timedelta(minutes=duration_minutes)
    return end.date(), end.time()


def scheduled_datetime(slot_date: date, start_time: time, tz_name: str = "UTC") -> datetime:
    """
    Appointment start as a naive UTC datetime.

    Slot dates and times are wall-clock times in the business timezone;
    everything else is compared in UTC.
    """
    local = datetime.combine(slot_date, start_time).replace(tzinfo=ZoneInfo(tz_name))
    return local.astimezone(timezone.utc).replace(tzinfo=None)


def format_time_display(t: time) -> str:
    """
    Format a time object for display.

    Args:
        t: A time object

    Returns:
        String in HH:MM format
    """
    return t.strftime("%H:%M")


def get_day_name(d: date) -> str:
    """Day name for a date (e.g. "Monday")."""
    return d.strftime("%A")


def is_past_slot(
    slot_date: date,
    start_time: time,
    now: datetime,
    buffer_minutes: int,
    tz_name: str = "UTC",
) -> bool:
    """A slot is past when it starts no later than now + buffer (now is naive UTC)."""
    return scheduled_datetime(slot_date, start_time, tz_name) <= now + timedelta(minutes=buffer_minutes)


def filter_new_slots(
    requested: List[TimeSlotCreate],
    existing: List[TimeSlot],
    now: datetime,
    buffer_minutes: int,
    tz_name: str = "UTC",
) -> Tuple[List[TimeSlotCreate], List[TimeSlotCreate], List[TimeSlotCreate]]:
    """
    Split requested slots into (to_create, duplicates, past).

    Duplicates are slots already stored or repeated within the request.
    """
    taken = {(slot.slot_date, slot.start_time) for slot in existing}
    to_create, duplicates, past = [], [], []

    for slot in requested:
        key = (slot.slot_date, slot.start_time)
        if key in taken:
            duplicates.append(slot)
        elif is_past_slot(slot.slot_date, slot.start_time, now, buffer_minutes, tz_name):
            past.append(slot)
        else:
            taken.add(key)
            to_create.append(slot)

    return to_create, duplicates, past


class TimeSlotService:
    """Admin slot creation and the customer-facing availability calendar."""

    def __init__(
        self,
        db: Session,
        settings: Settings = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.clock = clock

    @service_operation("Failed to create time slots")
    def create_slots(self, slots: List[TimeSlotCreate], created_by: str = None) -> BulkSlotResult:
        """
        Create one or more slots, skipping duplicates and past times.

        Fails when nothing is left to create.
        """
        if not slots:
            raise InvalidRequestError("At least one time slot is required")

        existing = get_time_slots_for_dates(self.db, {slot.slot_date for slot in slots})
        to_create, duplicates, past = filter_new_slots(
            slots,
            existing,
            self.clock(),
            self.settings.slot_past_buffer_minutes,
            self.settings.business_timezone,
        )

        if not to_create:
            if duplicates:
                times = ", ".join(format_time_display(slot.start_time) for slot in duplicates)
                raise InvalidRequestError(f"Time slots already exist for: {times}")
            raise InvalidRequestError("Cannot create time slots in the past")

        created = create_time_slots(self.db, [slot.model_dump() for slot in to_create], created_by=created_by)
        logger.info(
            f"Created {len(created)} time slots "
            f"(skipped {len(duplicates)} duplicates, {len(past)} past)"
        )

        return BulkSlotResult(
            created=[TimeSlotRead.model_validate(slot) for slot in created],
            duplicates_skipped=len(duplicates),
            past_skipped=len(past),
        )

    @service_operation("Failed to fetch availability")
    def get_availability(self, date_from: date, date_to: date = None) -> List[CalendarDay]:
        """
        Bookable slots per day in [date_from, date_to].

        Slots held by an active booking are left out, as are today's
        slots starting within the booking buffer.
        """
        now = self.clock()
        date_to = date_to or date_from
        if date_to < date_from:
            raise InvalidRequestError("date_to must not be before date_from")
        if date_to < now.date():
            raise InvalidRequestError("Cannot fetch availability for past dates")
        if (date_to - date_from).days >= MAX_CALENDAR_DAYS:
            raise InvalidRequestError(f"Date range cannot exceed {MAX_CALENDAR_DAYS} days")

        slots = get_available_time_slots(self.db, max(date_from, now.date()), date_to)
        booked = get_booked_slot_ids(self.db, [slot.id for slot in slots])
        buffer_minutes = self.settings.slot_past_buffer_minutes

        by_date = {}
        for slot in slots:
            if slot.id in booked:
                continue
            if is_past_slot(slot.slot_date, slot.start_time, now, buffer_minutes, self.settings.business_timezone):
                continue
            by_date.setdefault(slot.slot_date, []).append(
                AvailableSlot(id=slot.id, start_time=slot.start_time, available=True)
            )

        days = []
        current = date_from
        while current <= date_to:
            day_slots = by_date.get(current, [])
            days.append(CalendarDay(
                date=current,
                day_of_week=current.weekday(),
                available_slots=day_slots,
                is_available=len(day_slots) > 0,
            ))
            current += timedelta(days=1)

        return days
