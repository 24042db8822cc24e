"""
Pytest configuration and shared fixtures.

Every test gets a fresh in-memory SQLite database, settings built for the
scenario (UTC business timezone, no outbound providers, no send delay),
a controllable clock and a mock notification dispatcher.
"""
import pytest
from datetime import time
from pathlib import Path
from unittest.mock import MagicMock

# Load .env file before any imports that might use settings
from dotenv import load_dotenv

backend_dir = Path(__file__).parent.parent
env_file = backend_dir / ".env"
if env_file.exists():
    load_dotenv(env_file)

import httpx
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from config import Settings
from database import Base
import db_models  # noqa: F401  registers the tables on Base
from db_service import create_service, create_time_slot, create_user_profile, upsert_service_pricing
from distance_service import DistanceResolver
from notifications import NotificationDispatcher
from pricing_service import PricingService
from booking_service import BookingService
from factories import FakeClock, TOMORROW


# One shared in-memory database for the test session and the API under test
test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


def override_get_db():
    """Override database dependency for testing."""
    db = TestSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def db_session():
    """Fresh schema per test."""
    Base.metadata.create_all(bind=test_engine)
    db = TestSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        business_timezone="UTC",
        business_postcode="NG5 1FB",
        free_radius_km=5.0,
        surcharge_per_km=1.5,
        google_maps_api_key="",
        mapbox_access_token="",
        postcodes_io_enabled=False,
        sendgrid_api_key="",
        reminder_send_delay_seconds=0,
        app_url="",
        cron_secret="",
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def notifier():
    """Dispatcher double; every notification reports as sent."""
    dispatcher = MagicMock(spec=NotificationDispatcher)
    dispatcher.dispatch.return_value = True
    return dispatcher


@pytest.fixture
def resolver(settings):
    """Resolver with no network: only the offline table answers."""
    return DistanceResolver(settings, client=MagicMock(spec=httpx.Client))


@pytest.fixture
def pricing_service(db_session, settings, resolver):
    return PricingService(db_session, settings, distance_resolver=resolver)


@pytest.fixture
def booking_service(db_session, settings, pricing_service, notifier, clock):
    return BookingService(db_session, settings, pricing=pricing_service, notifier=notifier, clock=clock)


# =============================================================================
# Factories
# =============================================================================

@pytest.fixture
def customer(db_session):
    return create_user_profile(db_session, "Jane.Smith@Example.com", first_name="Jane", last_name="Smith")


@pytest.fixture
def other_customer(db_session):
    return create_user_profile(db_session, "bob@example.com", first_name="Bob")


@pytest.fixture
def services(db_session):
    """Full Valet (£40 at Medium, 90 min) and Interior Deep Clean (£25 at Medium, 60 min)."""
    valet = create_service(db_session, "Full Valet", estimated_duration=90)
    upsert_service_pricing(db_session, valet.id, small=35.0, medium=40.0, large=50.0, extra_large=60.0)
    interior = create_service(db_session, "Interior Deep Clean", estimated_duration=60)
    upsert_service_pricing(db_session, interior.id, small=20.0, medium=25.0, large=30.0, extra_large=None)
    return valet, interior


@pytest.fixture
def slot(db_session):
    return create_time_slot(db_session, TOMORROW, time(10, 0), created_by="admin")


