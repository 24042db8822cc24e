"""
Configuration management for the Love 4 Detailing booking system.
"""
from typing import List
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Pricing
    free_radius_km: float = 5.0
    surcharge_per_km: float = 1.50
    business_postcode: str = "NG5 1FB"  # Nottingham base
    default_service_duration_minutes: int = 60

    # Distance providers
    google_maps_api_key: str = ""
    mapbox_access_token: str = ""
    postcodes_io_enabled: bool = True
    distance_cache_ttl_hours: int = 24
    external_request_timeout_seconds: float = 5.0
    offline_default_distance_km: float = 10.0

    # Bookings
    booking_reference_prefix: str = "L4D"
    cancellation_window_hours: int = 24
    slot_past_buffer_minutes: int = 5
    business_timezone: str = "Europe/London"  # slot dates/times are local to the business

    # Payment reminders
    payment_deadline_hours: int = 48
    reminder_thresholds_hours: List[int] = [24, 48, 72]
    max_reminders: int = 3
    reminder_send_delay_seconds: float = 1.0
    reminder_check_interval_minutes: int = 60

    # SendGrid
    sendgrid_api_key: str = ""
    from_email: str = "no-reply@love4detailing.com"
    from_name: str = "Love 4 Detailing"
    admin_email: str = "zell@love4detailing.com"

    # PayPal.me
    paypal_me_username: str = "love4detailing"
    paypal_business_email: str = "zell@love4detailing.com"
    currency: str = "GBP"
    app_url: str = ""

    # Cron endpoint (Authorization: Bearer <secret>); open when empty
    cron_secret: str = ""

    # Environment
    environment: str = "development"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore extra fields like DATABASE_URL
    )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def is_email_configured() -> bool:
    """Check if SendGrid is configured."""
    return bool(get_settings().sendgrid_api_key)
