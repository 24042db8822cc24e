"""
SQLAlchemy database models for the Love 4 Detailing booking system.
"""
from datetime import datetime, timezone
from sqlalchemy import (
    Column, Integer, String, DateTime, Date, Time, Float,
    ForeignKey, Enum, Boolean, Text, JSON, Index, UniqueConstraint, text
)
from sqlalchemy.orm import relationship
from database import Base
import enum


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (the storage convention)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class BookingStatus(enum.Enum):
    """Status of a booking. Payment sub-track shares the same field."""
    PENDING = "pending"                 # Created, awaiting review
    PROCESSING = "processing"           # Awaiting payment
    PAYMENT_FAILED = "payment_failed"   # Payment not received / failed
    CONFIRMED = "confirmed"             # Accepted by the business
    RESCHEDULED = "rescheduled"         # Moved to another slot
    IN_PROGRESS = "in_progress"         # Detailer on site
    COMPLETED = "completed"             # Service delivered
    DECLINED = "declined"               # Rejected by the business
    CANCELLED = "cancelled"             # Cancelled by customer or admin
    NO_SHOW = "no_show"                 # Customer not available


class PaymentStatus(enum.Enum):
    """Status of the booking payment."""
    PENDING = "pending"           # Nothing requested yet
    PROCESSING = "processing"     # Payment link sent
    COMPLETED = "completed"       # Payment received
    FAILED = "failed"             # Payment failed / deadline missed
    REFUNDED = "refunded"         # Payment refunded


class VehicleSize(enum.Enum):
    """Vehicle size tier, serialized as a letter code."""
    S = "S"
    M = "M"
    L = "L"
    XL = "XL"

    @property
    def display_name(self) -> str:
        return VEHICLE_SIZE_NAMES[self]

    @property
    def pricing_column(self) -> str:
        """Column of service_pricing holding this tier's price."""
        return VEHICLE_SIZE_PRICING_COLUMNS[self]


VEHICLE_SIZE_NAMES = {
    VehicleSize.S: "Small",
    VehicleSize.M: "Medium",
    VehicleSize.L: "Large",
    VehicleSize.XL: "Extra Large",
}

VEHICLE_SIZE_PRICING_COLUMNS = {
    VehicleSize.S: "small",
    VehicleSize.M: "medium",
    VehicleSize.L: "large",
    VehicleSize.XL: "extra_large",
}


class UserProfile(Base):
    """Customer or admin profile."""
    __tablename__ = "user_profiles"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    first_name = Column(String(100))
    last_name = Column(String(100))
    phone = Column(String(20))
    role = Column(String(20), default="customer", nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow)

    bookings = relationship("Booking", back_populates="customer")

    @property
    def display_name(self) -> str:
        name = " ".join(part for part in (self.first_name, self.last_name) if part)
        return name or "Customer"

    def __repr__(self):
        return f"<UserProfile {self.display_name} ({self.email})>"


class CustomerAddress(Base):
    """Saved service address for a customer."""
    __tablename__ = "customer_addresses"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("user_profiles.id"), nullable=False, index=True)

    address_line_1 = Column(String(255), nullable=False)
    address_line_2 = Column(String(255))
    city = Column(String(100), nullable=False)
    postcode = Column(String(20), nullable=False)
    is_primary = Column(Boolean, default=False)

    created_at = Column(DateTime(timezone=True), default=utcnow)


class CustomerVehicle(Base):
    """Saved vehicle for a customer."""
    __tablename__ = "customer_vehicles"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("user_profiles.id"), nullable=False, index=True)

    make = Column(String(100), nullable=False)
    model = Column(String(100), nullable=False)
    year = Column(Integer)
    color = Column(String(50))
    registration = Column(String(20))
    size = Column(Enum(VehicleSize), default=VehicleSize.M, nullable=False)
    is_primary = Column(Boolean, default=False)

    created_at = Column(DateTime(timezone=True), default=utcnow)


class Service(Base):
    """A detailing service offered by the business."""
    __tablename__ = "services"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    short_description = Column(String(255))
    estimated_duration = Column(Integer)  # minutes
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow)

    pricing = relationship("ServicePricing", back_populates="service", uselist=False)

    def __repr__(self):
        return f"<Service {self.name}>"


class ServicePricing(Base):
    """Per-tier prices for a service (denormalized, one row per service)."""
    __tablename__ = "service_pricing"

    id = Column(Integer, primary_key=True, index=True)
    service_id = Column(Integer, ForeignKey("services.id"), nullable=False, unique=True)

    small = Column(Float)
    medium = Column(Float)
    large = Column(Float)
    extra_large = Column(Float)

    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    service = relationship("Service", back_populates="pricing")


class TimeSlot(Base):
    """A reservable unit of business capacity (date + start time)."""
    __tablename__ = "time_slots"
    __table_args__ = (
        UniqueConstraint("slot_date", "start_time", name="uq_time_slots_date_start"),
    )

    id = Column(Integer, primary_key=True, index=True)
    slot_date = Column(Date, nullable=False, index=True)
    start_time = Column(Time, nullable=False)
    is_available = Column(Boolean, default=True, nullable=False)
    created_by = Column(String(64))
    notes = Column(Text)

    # Denormalized for fast availability checks
    booking_reference = Column(String(40))
    booking_status = Column(String(20))

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<TimeSlot {self.slot_date} {self.start_time}>"


class Booking(Base):
    """Core booking record. Vehicle, address and pricing are snapshots."""
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    booking_reference = Column(String(40), unique=True, nullable=False, index=True)

    customer_id = Column(Integer, ForeignKey("user_profiles.id"), nullable=False, index=True)
    time_slot_id = Column(Integer, ForeignKey("time_slots.id"), nullable=True, index=True)

    # Snapshots captured by value
    vehicle_details = Column(JSON, nullable=False)
    service_address = Column(JSON, nullable=False)
    distance_km = Column(Float, default=0)

    # Scheduling
    scheduled_date = Column(Date, nullable=False)
    scheduled_start_time = Column(Time, nullable=False)
    scheduled_end_time = Column(Time, nullable=False)
    estimated_duration = Column(Integer, nullable=False)  # minutes

    # Frozen pricing
    base_price = Column(Float, nullable=False)
    distance_surcharge = Column(Float, nullable=False, default=0)
    total_price = Column(Float, nullable=False)
    pricing_breakdown = Column(JSON, nullable=False)

    special_instructions = Column(Text)

    status = Column(Enum(BookingStatus), default=BookingStatus.PENDING, nullable=False, index=True)
    payment_status = Column(Enum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False)

    # Transition timestamps
    confirmed_at = Column(DateTime(timezone=True))
    completed_at = Column(DateTime(timezone=True))
    cancelled_at = Column(DateTime(timezone=True))
    cancelled_by = Column(String(64))
    cancellation_reason = Column(Text)
    paid_at = Column(DateTime(timezone=True))

    # Payment reminder tracking
    reminder_count = Column(Integer, default=0, nullable=False)
    last_reminder_at = Column(DateTime(timezone=True))

    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    customer = relationship("UserProfile", back_populates="bookings")
    time_slot = relationship("TimeSlot")
    services = relationship("BookingServiceItem", back_populates="booking", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Booking {self.booking_reference} - {self.status.value}>"


# At most one non-cancelled booking per slot. Enum columns persist member names.
Index(
    "uq_bookings_active_time_slot",
    Booking.time_slot_id,
    unique=True,
    sqlite_where=text("status != 'CANCELLED'"),
    postgresql_where=text("status != 'CANCELLED'"),
)


class BookingServiceItem(Base):
    """Line item: one booked service with its captured price."""
    __tablename__ = "booking_services"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True)
    service_id = Column(Integer, ForeignKey("services.id"), nullable=False)

    service_details = Column(JSON)
    price = Column(Float, nullable=False)
    estimated_duration = Column(Integer, nullable=False)

    booking = relationship("Booking", back_populates="services")


class BookingStatusHistory(Base):
    """Append-only audit trail of booking status changes."""
    __tablename__ = "booking_status_history"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)

    from_status = Column(Enum(BookingStatus), nullable=True)
    to_status = Column(Enum(BookingStatus), nullable=False)
    changed_by = Column(String(64))
    reason = Column(String(255))
    notes = Column(Text)

    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)

    def __repr__(self):
        from_value = self.from_status.value if self.from_status else None
        return f"<BookingStatusHistory {self.booking_id}: {from_value} -> {self.to_status.value}>"
