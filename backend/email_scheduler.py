"""
Background payment reminder scheduler using APScheduler.

Runs the payment reminder batch every `reminder_check_interval_minutes`.
Each run opens its own database session; the reminder counter makes
overlapping or repeated runs safe.
"""
import logging
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import Session

from config import get_settings
from database import SessionLocal
from email_service import is_email_enabled
from models import ReminderRunResult
from payment_reminders import PaymentReminderService

logger = logging.getLogger(__name__)

# Scheduler instance
scheduler = BackgroundScheduler()

JOB_ID = "process_payment_reminders"


def get_db() -> Session:
    """Get a database session."""
    return SessionLocal()


def process_payment_reminders() -> Optional[ReminderRunResult]:
    """Main job: send whatever payment reminders are due."""
    if not is_email_enabled():
        logger.debug("Email not configured, skipping payment reminders")
        return None

    db = get_db()
    try:
        result = PaymentReminderService(db).process_payment_reminders()
        for error in result.errors:
            logger.warning(error)
        return result
    except Exception as e:
        logger.error(f"Error processing payment reminders: {str(e)}")
        db.rollback()
        return None
    finally:
        db.close()


def start_scheduler():
    """Start the payment reminder scheduler."""
    if scheduler.running:
        logger.info("Scheduler already running")
        return

    interval = get_settings().reminder_check_interval_minutes
    scheduler.add_job(
        process_payment_reminders,
        trigger=IntervalTrigger(minutes=interval),
        id=JOB_ID,
        name="Send payment reminders for overdue bookings",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    scheduler.start()
    logger.info(f"Payment reminder scheduler started - checking every {interval} minutes")


def stop_scheduler():
    """Stop the payment reminder scheduler."""
    if scheduler.running:
        scheduler.shutdown()
        logger.info("Payment reminder scheduler stopped")


def trigger_immediate_check() -> Optional[ReminderRunResult]:
    """Run the reminder batch now instead of waiting for the next interval."""
    return process_payment_reminders()
