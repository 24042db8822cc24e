"""
Email service for sending booking emails via SendGrid.

One composer per notification kind; each returns True if SendGrid
accepted the message. Nothing here raises on delivery problems.
"""
import logging
from datetime import date, time
from html import escape
from typing import List, Optional

from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail, Email, To, Content

from config import get_settings, is_email_configured

logger = logging.getLogger(__name__)

BRAND_NAME = "Love 4 Detailing"
BRAND_COLOR = "#9747FF"

REMINDER_STYLES = {
    "gentle": {"banner": "PAYMENT REMINDER", "color": "#9747FF"},
    "urgent": {"banner": "URGENT REMINDER", "color": "#EA580C"},
    "final": {"banner": "FINAL NOTICE", "color": "#DC2626"},
}


def is_email_enabled() -> bool:
    """Check if email sending is enabled (API key is configured)."""
    return is_email_configured()


def send_email(to_email: str, subject: str, html_content: str, text_content: str = None) -> bool:
    """
    Send an email via SendGrid.

    Returns True if sent successfully, False otherwise.
    """
    settings = get_settings()
    if not settings.sendgrid_api_key:
        logger.warning(f"SendGrid API key not configured - email not sent: {subject}")
        return False

    try:
        message = Mail(
            from_email=Email(settings.from_email, settings.from_name),
            to_emails=To(to_email),
            subject=subject,
        )
        if text_content:
            message.add_content(Content("text/plain", text_content))
        message.add_content(Content("text/html", html_content))

        sg = SendGridAPIClient(settings.sendgrid_api_key)
        response = sg.send(message)

        if response.status_code in (200, 201, 202):
            logger.info(f"Email sent successfully to {to_email}: {subject}")
            return True
        logger.error(f"Failed to send email to {to_email}: {response.status_code}")
        return False

    except Exception as e:
        logger.error(f"Error sending email to {to_email}: {str(e)}")
        return False


# ============== FORMATTING HELPERS ==============

def format_money(amount: float) -> str:
    return f"£{amount:.2f}"


def format_date_long(d: date) -> str:
    """e.g. 'Saturday, 28 December 2025'"""
    return f"{d.strftime('%A')}, {d.day} {d.strftime('%B %Y')}"


def format_time_short(t: time) -> str:
    return t.strftime("%H:%M")


def _detail_rows(rows: List[tuple]) -> str:
    """Two-column detail table rows from (label, value) pairs."""
    return "".join(
        f"""
                    <tr>
                        <td style="padding: 10px 0; border-bottom: 1px solid #e5e5e5; color: #666; width: 40%;">{escape(label)}</td>
                        <td style="padding: 10px 0; border-bottom: 1px solid #e5e5e5; font-weight: 500;">{value}</td>
                    </tr>"""
        for label, value in rows
    )


def _render(title: str, banner: str, banner_color: str, body_html: str) -> str:
    """Wrap a message body in the shared branded layout."""
    return f"""
    <!DOCTYPE html>
    <html>
    <head>
        <meta charset="utf-8">
        <meta name="viewport" content="width=device-width, initial-scale=1.0">
        <title>{escape(title)}</title>
    </head>
    <body style="margin: 0; padding: 0; font-family: 'Helvetica Neue', Arial, sans-serif; background-color: #f5f5f5; color: #333;">
        <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
            <div style="background: #141414; padding: 30px; text-align: center; border-radius: 10px 10px 0 0;">
                <h1 style="color: {BRAND_COLOR}; margin: 0; font-size: 28px; font-weight: bold;">{BRAND_NAME}</h1>
                <p style="color: #ffffff; margin: 10px 0 0 0; font-size: 14px;">Mobile Vehicle Detailing</p>
            </div>
            <div style="background: {banner_color}; padding: 18px; text-align: center;">
                <h2 style="color: #ffffff; margin: 0; font-size: 22px;">{escape(banner)}</h2>
            </div>
            <div style="background: #ffffff; padding: 30px; border-radius: 0 0 10px 10px;">
                {body_html}
            </div>
            <div style="text-align: center; padding: 20px; color: #999; font-size: 12px;">
                <p style="margin: 0;">{BRAND_NAME} | Nottingham</p>
            </div>
        </div>
    </body>
    </html>
    """


def _reference_box(booking_reference: str) -> str:
    return f"""
                <div style="background: #141414; padding: 20px; text-align: center; border-radius: 8px; margin-bottom: 25px;">
                    <p style="color: #cccccc; margin: 0 0 5px 0; font-size: 12px; text-transform: uppercase; letter-spacing: 1px;">Booking Reference</p>
                    <p style="color: {BRAND_COLOR}; margin: 0; font-size: 22px; font-weight: bold; letter-spacing: 1px;">{escape(booking_reference)}</p>
                </div>"""


def _pay_button(payment_link: str, label: str = "Pay Now with PayPal") -> str:
    return f"""
                <div style="text-align: center; margin: 25px 0;">
                    <a href="{escape(payment_link)}" style="display: inline-block; background: {BRAND_COLOR}; color: #ffffff; padding: 14px 35px; text-decoration: none; border-radius: 6px; font-weight: bold;">{label}</a>
                </div>"""


# ============== CUSTOMER EMAILS ==============

def send_booking_confirmation_email(
    email: str,
    customer_name: str,
    booking_reference: str,
    scheduled_date: date,
    start_time: time,
    services: List[dict],
    vehicle: str,
    address: str,
    distance_surcharge: float,
    total_price: float,
    payment_link: Optional[str] = None,
    payment_deadline: Optional[str] = None,
) -> bool:
    """
    Send booking received email to the customer.

    Args:
        email: Customer email address
        customer_name: Name to greet
        booking_reference: e.g. L4D-1718000000000-7K2Q
        scheduled_date: Appointment date
        start_time: Appointment start time
        services: [{"name": ..., "price": ...}] per booked service
        vehicle: e.g. "Black Ford Focus (AB12 CDE)"
        address: One-line service address
        distance_surcharge: Travel surcharge
        total_price: Total due
        payment_link: PayPal.me link, if payment is requested now
        payment_deadline: Human deadline for the payment

    Returns:
        True if sent successfully, False otherwise.
    """
    subject = f"Booking Received - {booking_reference} | {BRAND_NAME}"

    rows = [
        ("Date", format_date_long(scheduled_date)),
        ("Time", format_time_short(start_time)),
        ("Vehicle", escape(vehicle)),
        ("Address", escape(address)),
    ]
    rows += [(service["name"], format_money(service["price"])) for service in services]
    if distance_surcharge:
        rows.append(("Travel surcharge", format_money(distance_surcharge)))
    rows.append(("Total", f"<strong>{format_money(total_price)}</strong>"))

    payment_section = ""
    if payment_link:
        payment_section = _pay_button(payment_link)
        if payment_deadline:
            payment_section += f"""
                <p style="font-size: 14px; color: #666;">Please complete payment by <strong>{escape(payment_deadline)}</strong> to secure your booking.</p>"""

    body = f"""
                <p style="font-size: 16px;">Hi {escape(customer_name)},</p>
                <p style="font-size: 16px;">Thank you for booking with {BRAND_NAME}. We'll review your booking and confirm it shortly.</p>
                {_reference_box(booking_reference)}
                <table style="width: 100%; border-collapse: collapse; margin-bottom: 25px;">{_detail_rows(rows)}
                </table>
                {payment_section}"""

    html_content = _render(subject, "Booking Received", BRAND_COLOR, body)
    return send_email(email, subject, html_content)


def send_status_update_email(
    email: str,
    customer_name: str,
    booking_reference: str,
    status_label: str,
    scheduled_date: date,
    start_time: time,
    message: str,
) -> bool:
    """Tell the customer their booking moved to a new status."""
    subject = f"Booking {status_label} - {booking_reference} | {BRAND_NAME}"

    body = f"""
                <p style="font-size: 16px;">Hi {escape(customer_name)},</p>
                <p style="font-size: 16px;">{escape(message)}</p>
                {_reference_box(booking_reference)}
                <table style="width: 100%; border-collapse: collapse;">{_detail_rows([
                    ("Status", escape(status_label)),
                    ("Date", format_date_long(scheduled_date)),
                    ("Time", format_time_short(start_time)),
                ])}
                </table>"""

    html_content = _render(subject, f"Booking {status_label}", BRAND_COLOR, body)
    return send_email(email, subject, html_content)


def send_cancellation_confirmation_email(
    email: str,
    customer_name: str,
    booking_reference: str,
    scheduled_date: date,
    start_time: time,
    reason: str,
    refund_amount: float,
) -> bool:
    """Confirm a cancellation to the customer, with the refund outcome."""
    subject = f"Booking Cancelled - {booking_reference} | {BRAND_NAME}"

    if refund_amount and refund_amount > 0:
        refund_text = f"A refund of {format_money(refund_amount)} will be processed within 5-7 working days."
    else:
        refund_text = "As this cancellation was made within 24 hours of the appointment, no refund will be provided."

    body = f"""
                <p style="font-size: 16px;">Hi {escape(customer_name)},</p>
                <p style="font-size: 16px;">Your booking has been cancelled.</p>
                {_reference_box(booking_reference)}
                <table style="width: 100%; border-collapse: collapse; margin-bottom: 25px;">{_detail_rows([
                    ("Date", format_date_long(scheduled_date)),
                    ("Time", format_time_short(start_time)),
                    ("Reason", escape(reason or "Not given")),
                ])}
                </table>
                <p style="font-size: 14px; color: #666;">{refund_text}</p>"""

    html_content = _render(subject, "Booking Cancelled", "#DC2626", body)
    return send_email(email, subject, html_content)


def send_payment_confirmation_email(
    email: str,
    customer_name: str,
    booking_reference: str,
    amount: float,
    scheduled_date: date,
    start_time: time,
) -> bool:
    """Thank the customer for a received payment."""
    subject = f"Payment Received - {booking_reference} | {BRAND_NAME}"

    body = f"""
                <p style="font-size: 16px;">Hi {escape(customer_name)},</p>
                <p style="font-size: 16px;">We've received your payment of <strong>{format_money(amount)}</strong>. Your booking is confirmed.</p>
                {_reference_box(booking_reference)}
                <table style="width: 100%; border-collapse: collapse;">{_detail_rows([
                    ("Date", format_date_long(scheduled_date)),
                    ("Time", format_time_short(start_time)),
                ])}
                </table>"""

    html_content = _render(subject, "Payment Received", "#22c55e", body)
    return send_email(email, subject, html_content)


def get_reminder_subject(reminder_type: str, booking_reference: str) -> str:
    if reminder_type == "urgent":
        return f"Urgent: Payment Required - Booking {booking_reference} | {BRAND_NAME}"
    if reminder_type == "final":
        return f"Final Notice: Payment Overdue - Booking {booking_reference} | {BRAND_NAME}"
    return f"Payment Reminder - Booking {booking_reference} | {BRAND_NAME}"


def get_reminder_message(reminder_type: str, hours_overdue: int) -> str:
    if reminder_type == "urgent":
        return (
            f"Your payment for the vehicle detailing service is significantly overdue ({hours_overdue} hours). "
            "IMMEDIATE ACTION REQUIRED: Please complete your payment within the next 24 hours "
            "to avoid booking cancellation."
        )
    if reminder_type == "final":
        return (
            f"FINAL NOTICE: Your payment is critically overdue ({hours_overdue} hours). "
            "Your booking will be automatically cancelled within 24 hours if payment is not received. "
            "This is your last opportunity to complete payment and secure your booking."
        )
    return (
        "This is a friendly reminder that payment for your vehicle detailing booking is now overdue. "
        "To avoid any service delays or cancellation, please complete your payment at your earliest convenience."
    )


def send_payment_reminder_email(
    email: str,
    customer_name: str,
    booking_reference: str,
    amount: float,
    hours_overdue: int,
    reminder_type: str,
    payment_link: Optional[str] = None,
) -> bool:
    """
    Send a tiered payment reminder (gentle, urgent or final).

    Sent with both HTML and plain text parts.
    """
    style = REMINDER_STYLES.get(reminder_type, REMINDER_STYLES["gentle"])
    subject = get_reminder_subject(reminder_type, booking_reference)
    message = get_reminder_message(reminder_type, hours_overdue)

    body = f"""
                <p style="font-size: 16px;">Dear {escape(customer_name)},</p>
                <p style="font-size: 16px;">{escape(message)}</p>
                {_reference_box(booking_reference)}
                <table style="width: 100%; border-collapse: collapse;">{_detail_rows([
                    ("Amount Due", format_money(amount)),
                    ("Hours Overdue", f'<span style="color: #dc2626;">{hours_overdue} hours</span>'),
                ])}
                </table>
                {_pay_button(payment_link) if payment_link else ""}"""
    html_content = _render(subject, style["banner"], style["color"], body)

    settings = get_settings()
    pay_line = f"\nPay Now: {payment_link}\n" if payment_link else ""
    text_content = f"""{style["banner"]} - {BRAND_NAME}

Dear {customer_name},

{message}

Booking Details:
- Booking Reference: {booking_reference}
- Amount Due: {format_money(amount)}
- Hours Overdue: {hours_overdue} hours
{pay_line}
If you have any questions, please contact us at:
Email: {settings.admin_email}

Thank you,
{BRAND_NAME} Team"""

    return send_email(email, subject, html_content, text_content)


def send_payment_failed_email(
    email: str,
    customer_name: str,
    booking_reference: str,
    amount: float,
    payment_link: Optional[str] = None,
) -> bool:
    """Tell the customer their payment failed or the deadline passed."""
    subject = f"Payment Not Received - {booking_reference} | {BRAND_NAME}"

    body = f"""
                <p style="font-size: 16px;">Hi {escape(customer_name)},</p>
                <p style="font-size: 16px;">We haven't been able to take payment of <strong>{format_money(amount)}</strong> for your booking. Please get in touch if you'd still like to go ahead.</p>
                {_reference_box(booking_reference)}
                {_pay_button(payment_link, "Try Again") if payment_link else ""}"""

    html_content = _render(subject, "Payment Failed", "#DC2626", body)
    return send_email(email, subject, html_content)


# ============== ADMIN EMAILS ==============

def send_admin_new_booking_alert(
    booking_reference: str,
    customer_name: str,
    customer_email: str,
    scheduled_date: date,
    start_time: time,
    services: List[dict],
    postcode: str,
    distance_km: Optional[float],
    total_price: float,
) -> bool:
    """Alert the admin inbox about a new booking."""
    settings = get_settings()
    subject = f"New Booking - {booking_reference}"

    rows = [
        ("Customer", f"{escape(customer_name)} ({escape(customer_email)})"),
        ("Date", format_date_long(scheduled_date)),
        ("Time", format_time_short(start_time)),
        ("Services", escape(", ".join(service["name"] for service in services))),
        ("Postcode", escape(postcode)),
        ("Distance", f"{distance_km:.1f} km" if distance_km is not None else "Unknown"),
        ("Total", format_money(total_price)),
    ]
    body = f"""
                {_reference_box(booking_reference)}
                <table style="width: 100%; border-collapse: collapse;">{_detail_rows(rows)}
                </table>"""

    html_content = _render(subject, "New Booking", BRAND_COLOR, body)
    return send_email(settings.admin_email, subject, html_content)


def send_admin_cancellation_alert(
    booking_reference: str,
    customer_name: str,
    customer_email: str,
    scheduled_date: date,
    start_time: time,
    reason: str,
    cancelled_by: str,
    refund_amount: float,
) -> bool:
    """Alert the admin inbox about a cancellation and the refund owed."""
    settings = get_settings()
    subject = f"Booking Cancelled - {booking_reference}"

    rows = [
        ("Customer", f"{escape(customer_name)} ({escape(customer_email)})"),
        ("Date", format_date_long(scheduled_date)),
        ("Time", format_time_short(start_time)),
        ("Cancelled by", escape(cancelled_by)),
        ("Reason", escape(reason or "Not given")),
        ("Refund due", format_money(refund_amount or 0)),
    ]
    body = f"""
                {_reference_box(booking_reference)}
                <table style="width: 100%; border-collapse: collapse;">{_detail_rows(rows)}
                </table>"""

    html_content = _render(subject, "Booking Cancelled", "#DC2626", body)
    return send_email(settings.admin_email, subject, html_content)


def send_payment_failed_admin_alert(
    booking_reference: str,
    customer_name: str,
    customer_email: str,
    amount: float,
) -> bool:
    """Alert the admin inbox that a booking's payment failed."""
    settings = get_settings()
    subject = f"Payment Failed - {booking_reference}"

    body = f"""
                {_reference_box(booking_reference)}
                <table style="width: 100%; border-collapse: collapse;">{_detail_rows([
                    ("Customer", f"{escape(customer_name)} ({escape(customer_email)})"),
                    ("Amount", format_money(amount)),
                ])}
                </table>"""

    html_content = _render(subject, "Payment Failed", "#DC2626", body)
    return send_email(settings.admin_email, subject, html_content)
