"""
Database service layer for CRUD operations.

Single-row reads/writes and filtered selects over the booking tables.
Every write commits on its own; multi-step consistency is the caller's job.
"""
from sqlalchemy.orm import Session, joinedload
from sqlalchemy.exc import IntegrityError
from sqlalchemy import and_
from datetime import date, time, datetime, timezone
from typing import Optional, List, Iterable, Dict, Set
import random
import string

from db_models import (
    UserProfile, Service, ServicePricing, TimeSlot, Booking,
    BookingServiceItem, BookingStatusHistory, BookingStatus, utcnow
)


def generate_booking_reference(prefix: str = "L4D", now: datetime = None) -> str:
    """Generate a booking reference like L4D-1718000000000-7K2Q."""
    now = now or utcnow()
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    millis = int(now.timestamp() * 1000)
    suffix = ''.join(random.choices(string.ascii_uppercase + string.digits, k=4))
    return f"{prefix}-{millis}-{suffix}"


# ============== CUSTOMER OPERATIONS ==============

def get_user_profile(db: Session, user_id: int) -> Optional[UserProfile]:
    """Get a profile by ID."""
    return db.query(UserProfile).filter(UserProfile.id == user_id).first()


def get_user_profiles(db: Session, user_ids: Iterable[int]) -> Dict[int, UserProfile]:
    """Get profiles for several IDs, keyed by ID."""
    ids = list(set(user_ids))
    if not ids:
        return {}
    profiles = db.query(UserProfile).filter(UserProfile.id.in_(ids)).all()
    return {profile.id: profile for profile in profiles}


def create_user_profile(
    db: Session,
    email: str,
    first_name: str = None,
    last_name: str = None,
    phone: str = None,
    role: str = "customer",
) -> UserProfile:
    """Create a customer (or admin) profile."""
    profile = UserProfile(
        email=email.strip().lower(),
        first_name=first_name,
        last_name=last_name,
        phone=phone,
        role=role,
    )
    db.add(profile)
    db.commit()
    db.refresh(profile)
    return profile


# ============== SERVICE & PRICING OPERATIONS ==============

def get_active_service(db: Session, service_id: int) -> Optional[Service]:
    """Get a service only if it is active."""
    return db.query(Service).filter(
        and_(Service.id == service_id, Service.is_active.is_(True))
    ).first()


def get_service_pricing(db: Session, service_id: int) -> Optional[ServicePricing]:
    """Get the per-tier price row of a service."""
    return db.query(ServicePricing).filter(ServicePricing.service_id == service_id).first()


def create_service(
    db: Session,
    name: str,
    estimated_duration: int = None,
    short_description: str = None,
    is_active: bool = True,
) -> Service:
    """Create a detailing service."""
    service = Service(
        name=name,
        estimated_duration=estimated_duration,
        short_description=short_description,
        is_active=is_active,
    )
    db.add(service)
    db.commit()
    db.refresh(service)
    return service


def upsert_service_pricing(
    db: Session,
    service_id: int,
    small: float = None,
    medium: float = None,
    large: float = None,
    extra_large: float = None,
) -> ServicePricing:
    """Create or replace the price row of a service."""
    pricing = get_service_pricing(db, service_id)
    if not pricing:
        pricing = ServicePricing(service_id=service_id)
        db.add(pricing)

    pricing.small = small
    pricing.medium = medium
    pricing.large = large
    pricing.extra_large = extra_large
    db.commit()
    db.refresh(pricing)
    return pricing


# ============== TIME SLOT OPERATIONS ==============

def get_time_slot(db: Session, slot_id: int) -> Optional[TimeSlot]:
    """Get a time slot by ID."""
    return db.query(TimeSlot).filter(TimeSlot.id == slot_id).first()


def create_time_slot(
    db: Session,
    slot_date: date,
    start_time: time,
    created_by: str = None,
    is_available: bool = True,
    notes: str = None,
) -> TimeSlot:
    """Create a single time slot."""
    slot = TimeSlot(
        slot_date=slot_date,
        start_time=start_time,
        created_by=created_by,
        is_available=is_available,
        notes=notes,
    )
    db.add(slot)
    db.commit()
    db.refresh(slot)
    return slot


def create_time_slots(db: Session, slots: List[dict], created_by: str = None) -> List[TimeSlot]:
    """Insert several time slots in one transaction."""
    rows = [
        TimeSlot(
            slot_date=slot["slot_date"],
            start_time=slot["start_time"],
            is_available=slot.get("is_available", True),
            notes=slot.get("notes"),
            created_by=created_by,
        )
        for slot in slots
    ]
    db.add_all(rows)
    db.commit()
    for row in rows:
        db.refresh(row)
    return rows


def get_time_slots_for_dates(db: Session, dates: Iterable[date]) -> List[TimeSlot]:
    """Get every slot on the given dates (availability ignored)."""
    dates = list(dates)
    if not dates:
        return []
    return db.query(TimeSlot).filter(TimeSlot.slot_date.in_(dates)).all()


def get_available_time_slots(db: Session, date_from: date, date_to: date) -> List[TimeSlot]:
    """Get available slots in a date range, ordered by date and start time."""
    return db.query(TimeSlot).filter(
        and_(
            TimeSlot.slot_date >= date_from,
            TimeSlot.slot_date <= date_to,
            TimeSlot.is_available.is_(True),
        )
    ).order_by(TimeSlot.slot_date, TimeSlot.start_time).all()


def claim_time_slot(
    db: Session,
    slot_id: int,
    booking_reference: str,
    booking_status: str,
) -> Optional[TimeSlot]:
    """Mark a slot as held by a booking (denormalized fields only)."""
    slot = get_time_slot(db, slot_id)
    if slot:
        slot.booking_reference = booking_reference
        slot.booking_status = booking_status
        db.commit()
        db.refresh(slot)
    return slot


def release_time_slot(db: Session, slot_id: int) -> Optional[TimeSlot]:
    """Make a slot available again and clear its booking fields."""
    slot = get_time_slot(db, slot_id)
    if slot:
        slot.is_available = True
        slot.booking_reference = None
        slot.booking_status = None
        db.commit()
        db.refresh(slot)
    return slot


def delete_time_slot(db: Session, slot_id: int) -> bool:
    """Delete a slot. Returns False if it does not exist."""
    slot = get_time_slot(db, slot_id)
    if not slot:
        return False
    db.delete(slot)
    db.commit()
    return True


# ============== BOOKING OPERATIONS ==============

def get_booking(db: Session, booking_id: int) -> Optional[Booking]:
    """Get booking by ID."""
    return db.query(Booking).filter(Booking.id == booking_id).first()


def get_booking_for_customer(db: Session, booking_id: int, customer_id: int) -> Optional[Booking]:
    """Get a booking only if it belongs to the customer."""
    return db.query(Booking).filter(
        and_(Booking.id == booking_id, Booking.customer_id == customer_id)
    ).first()


def get_booking_by_reference(db: Session, reference: str) -> Optional[Booking]:
    """Get booking by reference."""
    return db.query(Booking).filter(Booking.booking_reference == reference).first()


def booking_reference_exists(db: Session, reference: str) -> bool:
    return db.query(Booking.id).filter(Booking.booking_reference == reference).first() is not None


def get_active_booking_for_slot(db: Session, slot_id: int) -> Optional[Booking]:
    """Get the non-cancelled booking holding a slot, if any."""
    return db.query(Booking).filter(
        and_(
            Booking.time_slot_id == slot_id,
            Booking.status != BookingStatus.CANCELLED,
        )
    ).first()


def get_booked_slot_ids(db: Session, slot_ids: Iterable[int]) -> Set[int]:
    """IDs among `slot_ids` held by a non-cancelled booking."""
    slot_ids = list(slot_ids)
    if not slot_ids:
        return set()
    rows = db.query(Booking.time_slot_id).filter(
        and_(
            Booking.time_slot_id.in_(slot_ids),
            Booking.status != BookingStatus.CANCELLED,
        )
    ).all()
    return {row[0] for row in rows}


def insert_booking(db: Session, **fields) -> Booking:
    """
    Insert a booking row.

    Raises:
        IntegrityError: unique reference or active-slot index violated.
            The session is rolled back before re-raising.
    """
    booking = Booking(**fields)
    db.add(booking)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise
    db.refresh(booking)
    return booking


def update_booking(db: Session, booking_id: int, **fields) -> Optional[Booking]:
    """Update columns of a booking."""
    booking = get_booking(db, booking_id)
    if booking:
        for key, value in fields.items():
            setattr(booking, key, value)
        db.commit()
        db.refresh(booking)
    return booking


def delete_booking(db: Session, booking_id: int) -> bool:
    """Delete a booking and its line items."""
    booking = get_booking(db, booking_id)
    if not booking:
        return False
    db.delete(booking)
    db.commit()
    return True


def get_bookings_by_status_created_before(
    db: Session,
    statuses: List[BookingStatus],
    cutoff: datetime,
) -> List[Booking]:
    """Bookings in any of `statuses` created before `cutoff`, oldest first, with customers loaded."""
    return db.query(Booking).options(joinedload(Booking.customer)).filter(
        and_(
            Booking.status.in_(statuses),
            Booking.created_at < cutoff,
        )
    ).order_by(Booking.created_at).all()


def get_cancelled_bookings(
    db: Session,
    date_from: datetime = None,
    date_to: datetime = None,
) -> List[Booking]:
    """Cancelled bookings, optionally filtered by cancellation time."""
    query = db.query(Booking).filter(Booking.status == BookingStatus.CANCELLED)
    if date_from:
        query = query.filter(Booking.cancelled_at >= date_from)
    if date_to:
        query = query.filter(Booking.cancelled_at <= date_to)
    return query.order_by(Booking.cancelled_at).all()


def claim_reminder_slot(db: Session, booking_id: int, expected_count: int, now: datetime) -> bool:
    """
    Atomically bump reminder_count from `expected_count` to the next value.

    Returns False when another worker already moved the counter.
    """
    updated = db.query(Booking).filter(
        and_(Booking.id == booking_id, Booking.reminder_count == expected_count)
    ).update(
        {Booking.reminder_count: expected_count + 1, Booking.last_reminder_at: now},
        synchronize_session=False,
    )
    db.commit()
    return updated == 1


def release_reminder_slot(
    db: Session,
    booking_id: int,
    claimed_count: int,
    previous_sent_at: datetime = None,
) -> bool:
    """Give back a claim taken by claim_reminder_slot (send failed)."""
    updated = db.query(Booking).filter(
        and_(Booking.id == booking_id, Booking.reminder_count == claimed_count + 1)
    ).update(
        {Booking.reminder_count: claimed_count, Booking.last_reminder_at: previous_sent_at},
        synchronize_session=False,
    )
    db.commit()
    return updated == 1


# ============== LINE ITEM OPERATIONS ==============

def insert_booking_services(db: Session, booking_id: int, items: List[dict]) -> List[BookingServiceItem]:
    """Insert the line items of a booking in one transaction."""
    rows = [
        BookingServiceItem(
            booking_id=booking_id,
            service_id=item["service_id"],
            service_details=item.get("service_details"),
            price=item["price"],
            estimated_duration=item["estimated_duration"],
        )
        for item in items
    ]
    db.add_all(rows)
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    return rows


# ============== STATUS HISTORY OPERATIONS ==============

def append_status_history(
    db: Session,
    booking_id: int,
    to_status: BookingStatus,
    from_status: BookingStatus = None,
    changed_by: str = None,
    reason: str = None,
    notes: str = None,
) -> BookingStatusHistory:
    """Append a status history row. History is never updated or deleted."""
    entry = BookingStatusHistory(
        booking_id=booking_id,
        from_status=from_status,
        to_status=to_status,
        changed_by=changed_by,
        reason=reason,
        notes=notes,
    )
    db.add(entry)
    db.commit()
    db.refresh(entry)
    return entry


def apply_status_change(
    db: Session,
    booking_id: int,
    history: dict,
    **fields,
) -> Optional[Booking]:
    """
    Update booking columns and append the matching history row in one commit.

    Either both land or neither does; a failed write is rolled back and re-raised.
    """
    booking = get_booking(db, booking_id)
    if not booking:
        return None
    try:
        for key, value in fields.items():
            setattr(booking, key, value)
        db.add(BookingStatusHistory(booking_id=booking.id, **history))
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(booking)
    return booking


def get_status_history(db: Session, booking_id: int) -> List[BookingStatusHistory]:
    """History of a booking, oldest first."""
    return db.query(BookingStatusHistory).filter(
        BookingStatusHistory.booking_id == booking_id
    ).order_by(BookingStatusHistory.created_at, BookingStatusHistory.id).all()
