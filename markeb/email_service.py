"""
Email service using Resend
MJML templates are compiled to HTML and every message is blind-copied to the
operations mailbox.
"""

import logging
from typing import Awaitable, Optional, Union

import resend
from mjml import mjml_to_html

from .config import EMAIL_FROM_ADDRESS, OPERATIONS_EMAIL, RESEND_API_KEY
from .email_templates import (
    booking_confirmation_template,
    cancellation_confirmation_template,
    milestone_template,
    password_reset_template,
    payment_confirmation_template,
    payment_link_template,
    reminder_template,
    reschedule_confirmation_template,
    service_modification_template,
    welcome_email_template,
)

logger = logging.getLogger(__name__)

resend.api_key = RESEND_API_KEY


class EmailDeliveryError(Exception):
    pass


def compile_mjml_to_html(mjml_content: str) -> str:
    """Compile MJML template to production-ready HTML"""
    try:
        result = mjml_to_html(mjml_content)
    except Exception as e:
        logger.error(f"MJML compilation error: {e}")
        raise EmailDeliveryError(f"Failed to compile MJML template: {e}") from e

    # Newer releases return an object/dict with html and errors
    if isinstance(result, dict):
        if result.get("errors"):
            logger.warning(f"MJML compilation warnings: {result['errors']}")
        return result.get("html", "")
    html = getattr(result, "html", None)
    if html is not None:
        if getattr(result, "errors", None):
            logger.warning(f"MJML compilation warnings: {result.errors}")
        return html
    return str(result)


async def send_email(
    to: Union[str, list[str]],
    subject: str,
    mjml_content: str,
    from_address: Optional[str] = None,
) -> dict:
    """
    Send an email through Resend.

    Args:
        to: Recipient email(s)
        subject: Email subject line
        mjml_content: MJML template content (compiled to HTML here)
        from_address: Optional custom from address
    """
    if not RESEND_API_KEY:
        logger.error("❌ RESEND_API_KEY missing - email service not configured")
        raise EmailDeliveryError("Email service not configured")

    html_content = compile_mjml_to_html(mjml_content)
    recipients = [to] if isinstance(to, str) else to

    email_data = {
        "from": from_address or EMAIL_FROM_ADDRESS,
        "to": recipients,
        "subject": subject,
        "html": html_content,
    }
    if OPERATIONS_EMAIL and OPERATIONS_EMAIL not in recipients:
        email_data["bcc"] = [OPERATIONS_EMAIL]

    try:
        logger.info(f"📧 Sending '{subject}' via Resend to: {recipients}")
        response = resend.Emails.send(email_data)
    except Exception as e:
        logger.error(f"❌ Email send error to {recipients}: {e}")
        raise EmailDeliveryError(f"Failed to send email: {e}") from e

    logger.info(f"✅ Email sent via Resend: {response}")
    return response


async def notify(send: Awaitable) -> bool:
    """
    Run a send and report whether it went out.

    Emails never fail the operation that triggered them; the error is logged
    and the caller reports emailSent=false.
    """
    try:
        await send
        return True
    except Exception as e:
        logger.error(f"❌ Notification failed: {e}")
        return False


# ============================================
# Pre-built emails
# ============================================


async def send_booking_confirmation(booking: dict, payment_status: str) -> dict:
    return await send_email(
        to=booking["clientEmail"],
        subject=f"Booking Confirmed - {booking['bookingRef']}",
        mjml_content=booking_confirmation_template(booking, payment_status),
    )


async def send_payment_confirmation(booking: dict, amount) -> dict:
    return await send_email(
        to=booking["clientEmail"],
        subject=f"Payment Received - {booking['bookingRef']}",
        mjml_content=payment_confirmation_template(booking, amount),
    )


async def send_payment_link(booking: dict, amount, payment_url: str) -> dict:
    return await send_email(
        to=booking["clientEmail"],
        subject=f"Payment Required - {booking['bookingRef']}",
        mjml_content=payment_link_template(booking, amount, payment_url),
    )


async def send_reschedule_confirmation(booking: dict, old_date: str, old_time: str) -> dict:
    return await send_email(
        to=booking["clientEmail"],
        subject=f"Booking Rescheduled - {booking['bookingRef']}",
        mjml_content=reschedule_confirmation_template(booking, old_date, old_time),
    )


async def send_cancellation_confirmation(booking: dict, fee, refund, note: str) -> dict:
    return await send_email(
        to=booking["clientEmail"],
        subject=f"Booking Cancelled - {booking['bookingRef']}",
        mjml_content=cancellation_confirmation_template(booking, fee, refund, note),
    )


async def send_service_modification(booking: dict, payment_action: str, difference) -> dict:
    return await send_email(
        to=booking["clientEmail"],
        subject=f"Booking Modified - {booking['bookingRef']}",
        mjml_content=service_modification_template(booking, payment_action, difference),
    )


async def send_booking_reminder(booking: dict) -> dict:
    return await send_email(
        to=booking["clientEmail"],
        subject=f"Reminder: Your shoot tomorrow - {booking['bookingRef']}",
        mjml_content=reminder_template(booking),
    )


async def send_welcome_email(to: str, name: str) -> dict:
    return await send_email(
        to=to,
        subject="Welcome to Markeb Media",
        mjml_content=welcome_email_template(name),
    )


async def send_password_reset_email(to: str, name: str, reset_link: str) -> dict:
    return await send_email(
        to=to,
        subject="Reset Your Password - Markeb Media",
        mjml_content=password_reset_template(name, reset_link),
    )


async def send_milestone_email(to: str, name: str, milestone, balance: int) -> dict:
    return await send_email(
        to=to,
        subject=milestone.subject,
        mjml_content=milestone_template(
            name, milestone.points, milestone.value, milestone.kind, milestone.tier, balance
        ),
    )
