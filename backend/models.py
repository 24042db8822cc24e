"""
Data models for the Love 4 Detailing booking system.

Request/result models shared by the services and the API, plus the
uniform success/failure envelope every public operation returns.
"""
import logging
from datetime import date, time, datetime
from functools import wraps
from typing import Any, Optional, List
from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy.exc import OperationalError

from db_models import BookingStatus, PaymentStatus, VehicleSize
from errors import BookingError

logger = logging.getLogger(__name__)


# ============== RESPONSE ENVELOPE ==============

class ServiceError(BaseModel):
    """Error payload of a failed operation."""
    message: str
    code: str = "SERVICE_ERROR"
    details: Any = None


class ServiceResponse(BaseModel):
    """Uniform envelope: callers branch on `success`."""
    success: bool
    data: Any = None
    error: Optional[ServiceError] = None

    @classmethod
    def ok(cls, data: Any = None) -> "ServiceResponse":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, message: str, code: str = "SERVICE_ERROR", details: Any = None) -> "ServiceResponse":
        return cls(success=False, error=ServiceError(message=message, code=code, details=details))


def service_operation(failure_message: str):
    """
    Wrap a service method so it always returns a ServiceResponse.

    BookingError subclasses become failures carrying their own code.
    A lost database connection becomes UPSTREAM_UNAVAILABLE. Anything else
    is logged with its traceback and reported as a generic
    SERVICE_ERROR with `failure_message`; the original error goes in details.
    """
    def decorator(func):
        @wraps(func)
        def wrapper(self, *args, **kwargs):
            try:
                return ServiceResponse.ok(func(self, *args, **kwargs))
            except BookingError as e:
                return ServiceResponse.fail(e.message, e.code, e.details)
            except OperationalError as e:
                logger.error(f"{failure_message}: database unavailable: {e}")
                db = getattr(self, "db", None)
                if db is not None:
                    db.rollback()
                return ServiceResponse.fail(failure_message, "UPSTREAM_UNAVAILABLE", str(e))
            except Exception as e:
                logger.exception(f"{failure_message}: {e}")
                db = getattr(self, "db", None)
                if db is not None:
                    db.rollback()
                return ServiceResponse.fail(failure_message, "SERVICE_ERROR", str(e))
        return wrapper
    return decorator


# ============== SNAPSHOTS & REQUESTS ==============

class VehicleSnapshot(BaseModel):
    """Vehicle details captured by value at booking time."""
    make: str
    model: str
    year: Optional[int] = None
    color: Optional[str] = None
    registration: Optional[str] = None
    size: VehicleSize = VehicleSize.M


class AddressSnapshot(BaseModel):
    """Service address captured by value at booking time."""
    address_line_1: str
    address_line_2: Optional[str] = None
    city: str
    postcode: str

    @field_validator("postcode")
    @classmethod
    def normalize_postcode(cls, v):
        return " ".join(v.upper().split())


class CreateBookingRequest(BaseModel):
    """Request to create a booking."""
    time_slot_id: int
    services: List[int] = Field(min_length=1)
    vehicle: VehicleSnapshot
    address: AddressSnapshot
    customer_notes: Optional[str] = None


class CancellationRequest(BaseModel):
    """Customer cancellation request."""
    booking_id: int
    customer_id: int
    reason: str
    acknowledge_no_refund: bool = False  # Required if within 24 hours


class StatusUpdateRequest(BaseModel):
    """Admin status change."""
    status: BookingStatus
    changed_by: str
    reason: Optional[str] = None
    notes: Optional[str] = None
    send_email: bool = True
    override: bool = False


class TimeSlotCreate(BaseModel):
    """A slot to create (admin single or bulk)."""
    slot_date: date
    start_time: time
    is_available: bool = True
    notes: Optional[str] = None

    @field_validator("start_time", mode="before")
    @classmethod
    def parse_time(cls, v):
        if isinstance(v, str) and len(v.split(":")) == 2:
            hours, minutes = v.split(":")
            return time(int(hours), int(minutes))
        return v


# ============== RESULTS ==============

class DistanceResult(BaseModel):
    """Resolved driving distance between two postcodes."""
    distance_km: float
    duration_min: int
    provider: str


class PriceCalculation(BaseModel):
    """Price of one service for one vehicle tier, with its full breakdown."""
    service_id: int
    service_name: str
    vehicle_size: VehicleSize
    vehicle_size_name: str
    base_price: float
    distance_surcharge: float
    total_price: float
    distance_km: Optional[float] = None
    estimated_duration: int
    breakdown: dict


class BookingServiceRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    service_id: int
    service_details: Optional[dict] = None
    price: float
    estimated_duration: int


class BookingRead(BaseModel):
    """Booking as returned to callers."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    booking_reference: str
    customer_id: int
    time_slot_id: Optional[int] = None
    vehicle_details: dict
    service_address: dict
    distance_km: Optional[float] = None
    scheduled_date: date
    scheduled_start_time: time
    scheduled_end_time: time
    estimated_duration: int
    base_price: float
    distance_surcharge: float
    total_price: float
    pricing_breakdown: dict
    special_instructions: Optional[str] = None
    status: BookingStatus
    payment_status: PaymentStatus
    confirmed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[str] = None
    cancellation_reason: Optional[str] = None
    paid_at: Optional[datetime] = None
    reminder_count: int = 0
    created_at: Optional[datetime] = None
    services: List[BookingServiceRead] = []


class StatusHistoryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    booking_id: int
    from_status: Optional[BookingStatus] = None
    to_status: BookingStatus
    changed_by: Optional[str] = None
    reason: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None


class TimeSlotRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    slot_date: date
    start_time: time
    is_available: bool
    created_by: Optional[str] = None
    notes: Optional[str] = None
    booking_reference: Optional[str] = None
    booking_status: Optional[str] = None


class BulkSlotResult(BaseModel):
    """Outcome of a bulk slot creation."""
    created: List[TimeSlotRead]
    duplicates_skipped: int = 0
    past_skipped: int = 0


class AvailableSlot(BaseModel):
    id: int
    start_time: time
    available: bool
    booking_count: int = 0


class CalendarDay(BaseModel):
    """Availability for one day of the booking calendar."""
    date: date
    day_of_week: int  # 0 = Monday
    available_slots: List[AvailableSlot]
    is_available: bool


class CancellationPolicyCheck(BaseModel):
    """Derived, non-persisted evaluation of whether a booking may be cancelled."""
    can_cancel: bool
    is_within_24_hours: bool
    hours_until_appointment: float
    refund_eligible: bool
    warning_message: Optional[str] = None


class CancellationResult(BaseModel):
    booking: BookingRead
    policy_info: Optional[CancellationPolicyCheck] = None
    time_slot_freed: bool
    email_sent: bool
    refund_amount: Optional[float] = None


class OverduePayment(BaseModel):
    """A booking whose payment deadline has passed."""
    id: int
    booking_reference: str
    customer_name: str
    customer_email: str
    total_price: float
    payment_link: Optional[str] = None
    payment_deadline: Optional[str] = None
    created_at: datetime
    hours_overdue: int
    reminder_count: int
    last_reminder_at: Optional[datetime] = None


class ReminderRunResult(BaseModel):
    """Summary of one payment reminder batch."""
    success: bool = True
    processed: int = 0
    sent: int = 0
    errors: List[str] = []
