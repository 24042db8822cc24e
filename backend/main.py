"""
FastAPI application for the Love 4 Detailing booking system.

Thin HTTP layer over the booking services:
- Price services for a vehicle size and distance
- Look up distances between postcodes
- Show the availability calendar and create time slots
- Create bookings and move them through their lifecycle
- Cancel bookings under the cancellation policy
- Run the payment reminder batch from a cron trigger

Every service returns a ServiceResponse envelope; failures are turned into
HTTP errors here based on the envelope's error code.
"""
import logging
from datetime import date, datetime
from typing import List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from booking_service import BookingService
from cancellation_service import CancellationService
from config import Settings, get_settings
from database import get_db, init_db
from db_models import VehicleSize
from distance_service import DistanceResolver, get_distance_resolver
from email_scheduler import start_scheduler, stop_scheduler
from models import (
    CancellationRequest,
    CreateBookingRequest,
    ServiceResponse,
    StatusUpdateRequest,
    TimeSlotCreate,
)
from notifications import NotificationDispatcher, get_notification_dispatcher
from payment_reminders import PaymentReminderService
from pricing_service import PricingService
from time_slots import TimeSlotService

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


# Initialize FastAPI app
app = FastAPI(
    title="Love 4 Detailing Booking API",
    description="Backend API for the Love 4 Detailing mobile valeting booking system",
    version="1.0.0",
)

# Configure CORS for frontend access
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",  # Next.js dev server
        "http://localhost:5173",  # Vite dev server
        "https://love4detailing.com",
        "https://www.love4detailing.com",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def startup_event():
    """Initialize database and start background scheduler on startup."""
    init_db()
    start_scheduler()


@app.on_event("shutdown")
async def shutdown_event():
    """Stop background scheduler on shutdown."""
    stop_scheduler()


# ============================================================================
# ENVELOPE -> HTTP
# ============================================================================

ERROR_STATUS_CODES = {
    "NOT_FOUND": 404,
    "ACCESS_DENIED": 403,
    "SLOT_UNAVAILABLE": 409,
    "SLOT_ALREADY_BOOKED": 409,
    "INVALID_TRANSITION": 409,
    "CANNOT_CANCEL": 409,
    "POLICY_VIOLATION": 409,
    "ACKNOWLEDGMENT_REQUIRED": 422,
    "PRICING_NOT_CONFIGURED": 422,
    "VALIDATION_ERROR": 422,
    "UPSTREAM_UNAVAILABLE": 503,
    "DISTANCE_UNAVAILABLE": 503,
}


def unwrap(response: ServiceResponse) -> ServiceResponse:
    """Return a successful envelope as-is, raise the matching HTTP error otherwise."""
    if response.success:
        return response

    error = response.error
    status_code = ERROR_STATUS_CODES.get(error.code, 500)
    if status_code >= 500:
        logger.error(f"Request failed with {error.code}: {error.message} ({error.details})")
    raise HTTPException(
        status_code=status_code,
        detail={"message": error.message, "code": error.code, "details": error.details},
    )


# ============================================================================
# SERVICE DEPENDENCIES
# ============================================================================

def get_pricing_service(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    resolver: DistanceResolver = Depends(get_distance_resolver),
) -> PricingService:
    return PricingService(db, settings, distance_resolver=resolver)


def get_booking_service(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    pricing: PricingService = Depends(get_pricing_service),
    notifier: NotificationDispatcher = Depends(get_notification_dispatcher),
) -> BookingService:
    return BookingService(db, settings, pricing=pricing, notifier=notifier)


def get_cancellation_service(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    bookings: BookingService = Depends(get_booking_service),
) -> CancellationService:
    return CancellationService(db, settings, booking_service=bookings)


def get_time_slot_service(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> TimeSlotService:
    return TimeSlotService(db, settings)


def get_reminder_service(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    notifier: NotificationDispatcher = Depends(get_notification_dispatcher),
) -> PaymentReminderService:
    return PaymentReminderService(db, settings, notifier=notifier)


# ============================================================================
# REQUEST MODELS
# ============================================================================

class PriceCalculationRequest(BaseModel):
    service_ids: List[int] = Field(min_length=1)
    vehicle_size: VehicleSize = VehicleSize.M
    distance_km: Optional[float] = Field(default=None, ge=0)
    postcode: Optional[str] = None


class BulkSlotRequest(BaseModel):
    slots: List[TimeSlotCreate]
    created_by: Optional[str] = None


class BookingCreateBody(CreateBookingRequest):
    customer_id: int


class AdminActionRequest(BaseModel):
    admin_id: str
    notes: Optional[str] = None
    reason: Optional[str] = None


class MarkPaidRequest(BaseModel):
    admin_id: str
    amount: Optional[float] = Field(default=None, gt=0)


class CustomerCancelRequest(BaseModel):
    customer_id: int
    reason: str
    acknowledge_no_refund: bool = False


class AdminCancelRequest(BaseModel):
    admin_id: str
    reason: str
    refund_amount: Optional[float] = Field(default=None, ge=0)


# ============================================================================
# API ENDPOINTS
# ============================================================================

@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "healthy", "service": "Love 4 Detailing Booking API"}


# --- Pricing & distance ---

@app.post("/api/pricing/calculate", response_model=ServiceResponse)
def calculate_price(
    request: PriceCalculationRequest,
    pricing: PricingService = Depends(get_pricing_service),
):
    """
    Price one or more services for a vehicle size.

    Pass `distance_km` directly or a `postcode` to resolve it; the distance
    surcharge applies once to the booking, not once per service.
    Plain def: postcode lookups use a blocking HTTP client.
    """
    return unwrap(pricing.price_many(
        request.service_ids, request.vehicle_size, request.distance_km, request.postcode
    ))


@app.get("/api/pricing/rules", response_model=ServiceResponse)
async def get_pricing_rules(pricing: PricingService = Depends(get_pricing_service)):
    return unwrap(pricing.get_pricing_rules())


@app.get("/api/pricing/services/{service_id}/range", response_model=ServiceResponse)
async def get_service_price_range(service_id: int, pricing: PricingService = Depends(get_pricing_service)):
    return unwrap(pricing.get_service_price_range(service_id))


@app.get("/api/distance", response_model=ServiceResponse)
def get_distance(
    to_postcode: str,
    from_postcode: Optional[str] = None,
    resolver: DistanceResolver = Depends(get_distance_resolver),
    settings: Settings = Depends(get_settings),
):
    """
    Distance between two postcodes; `from_postcode` defaults to the business base.

    Plain def: providers are called with a blocking HTTP client.
    """
    return unwrap(resolver.distance(from_postcode or settings.business_postcode, to_postcode))


# --- Time slots ---

@app.get("/api/slots/availability", response_model=ServiceResponse)
async def get_availability(
    date_from: date,
    date_to: Optional[date] = None,
    slots: TimeSlotService = Depends(get_time_slot_service),
):
    """Bookable slots per day between date_from and date_to (inclusive)."""
    return unwrap(slots.get_availability(date_from, date_to))


@app.post("/api/admin/slots", response_model=ServiceResponse)
async def create_slots(request: BulkSlotRequest, slots: TimeSlotService = Depends(get_time_slot_service)):
    """Create time slots; duplicates and past slots are skipped and counted."""
    return unwrap(slots.create_slots(request.slots, request.created_by))


# --- Bookings ---

@app.post("/api/bookings", response_model=ServiceResponse)
def create_booking(request: BookingCreateBody, bookings: BookingService = Depends(get_booking_service)):
    """
    Create a pending booking for a customer.

    The slot is re-checked at insert time; losing a race for it returns 409.
    Plain def: pricing resolves the distance with a blocking HTTP client.
    """
    return unwrap(bookings.create_booking(request.customer_id, request))


@app.get("/api/bookings/{booking_id}", response_model=ServiceResponse)
async def get_booking(
    booking_id: int,
    customer_id: Optional[int] = None,
    bookings: BookingService = Depends(get_booking_service),
):
    return unwrap(bookings.get_booking(booking_id, customer_id))


@app.get("/api/bookings/{booking_id}/history", response_model=ServiceResponse)
async def get_booking_history(booking_id: int, bookings: BookingService = Depends(get_booking_service)):
    return unwrap(bookings.get_status_history(booking_id))


@app.get("/api/bookings/{booking_id}/next-statuses", response_model=ServiceResponse)
async def get_next_statuses(booking_id: int, bookings: BookingService = Depends(get_booking_service)):
    return unwrap(bookings.get_valid_next_statuses(booking_id))


@app.patch("/api/admin/bookings/{booking_id}/status", response_model=ServiceResponse)
async def update_booking_status(
    booking_id: int,
    request: StatusUpdateRequest,
    bookings: BookingService = Depends(get_booking_service),
):
    """Move a booking to a new status. `override` allows moves outside the normal flow."""
    return unwrap(bookings.update_booking_status(
        booking_id,
        request.status,
        request.changed_by,
        reason=request.reason,
        notes=request.notes,
        send_email=request.send_email,
        override=request.override,
    ))


@app.post("/api/admin/bookings/{booking_id}/confirm", response_model=ServiceResponse)
async def confirm_booking(
    booking_id: int,
    request: AdminActionRequest,
    bookings: BookingService = Depends(get_booking_service),
):
    return unwrap(bookings.confirm_booking(booking_id, request.admin_id, notes=request.notes))


@app.post("/api/admin/bookings/{booking_id}/decline", response_model=ServiceResponse)
async def decline_booking(
    booking_id: int,
    request: AdminActionRequest,
    bookings: BookingService = Depends(get_booking_service),
):
    return unwrap(bookings.decline_booking(booking_id, request.admin_id, reason=request.reason))


@app.post("/api/admin/bookings/{booking_id}/mark-paid", response_model=ServiceResponse)
async def mark_booking_paid(
    booking_id: int,
    request: MarkPaidRequest,
    bookings: BookingService = Depends(get_booking_service),
):
    """Record a PayPal payment checked manually by an admin."""
    return unwrap(bookings.mark_booking_paid(booking_id, request.admin_id, request.amount))


# --- Cancellation ---

@app.get("/api/bookings/{booking_id}/cancellation-policy", response_model=ServiceResponse)
async def get_cancellation_policy(
    booking_id: int,
    cancellations: CancellationService = Depends(get_cancellation_service),
):
    """Whether the booking can be cancelled now and whether a refund applies."""
    return unwrap(cancellations.check_cancellation_policy(booking_id))


@app.post("/api/bookings/{booking_id}/cancel", response_model=ServiceResponse)
async def cancel_booking(
    booking_id: int,
    request: CustomerCancelRequest,
    cancellations: CancellationService = Depends(get_cancellation_service),
):
    """
    Cancel a booking as its customer.

    Inside the no-refund window this returns 422 ACKNOWLEDGMENT_REQUIRED
    unless `acknowledge_no_refund` is true.
    """
    return unwrap(cancellations.cancel_booking(CancellationRequest(
        booking_id=booking_id,
        customer_id=request.customer_id,
        reason=request.reason,
        acknowledge_no_refund=request.acknowledge_no_refund,
    )))


@app.post("/api/admin/bookings/{booking_id}/cancel", response_model=ServiceResponse)
async def admin_cancel_booking(
    booking_id: int,
    request: AdminCancelRequest,
    cancellations: CancellationService = Depends(get_cancellation_service),
):
    return unwrap(cancellations.admin_cancel_booking(
        booking_id, request.admin_id, request.reason, request.refund_amount
    ))


@app.get("/api/admin/cancellations/stats", response_model=ServiceResponse)
async def get_cancellation_stats(
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    cancellations: CancellationService = Depends(get_cancellation_service),
):
    return unwrap(cancellations.get_cancellation_stats(date_from, date_to))


# --- Payment reminders ---

@app.get("/api/admin/payment-reminders", response_model=ServiceResponse)
async def get_overdue_payments(reminders: PaymentReminderService = Depends(get_reminder_service)):
    """Bookings past their payment deadline."""
    return unwrap(reminders.get_overdue_payments())


@app.post("/api/cron/payment-reminders")
def run_payment_reminders(
    authorization: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
    reminders: PaymentReminderService = Depends(get_reminder_service),
):
    """
    Run the payment reminder batch now.

    Expects header: Authorization: Bearer <cron_secret> when a secret is set.
    Plain def so the batch (which sleeps between sends) runs in the threadpool.
    """
    if settings.cron_secret:
        parts = (authorization or "").split()
        if len(parts) != 2 or parts[0].lower() != "bearer" or parts[1] != settings.cron_secret:
            raise HTTPException(status_code=401, detail="Unauthorized")

    result = reminders.process_payment_reminders()
    return {
        "success": result.success,
        "message": f"Processed {result.processed} overdue payments, sent {result.sent} reminders",
        "data": result.model_dump(),
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
