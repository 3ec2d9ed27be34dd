"""
MJML Email Templates
Customer-facing booking emails. Every value that came from a customer or the
record store is escaped before it is placed in the markup.
"""

from typing import Optional

from .config import SITE_URL
from .utils.sanitization import format_money, sanitize_string as esc

# Markeb brand colours
THEME = {
    "primary": "#3b82f6",
    "primary_dark": "#2563eb",
    "primary_light": "#dbeafe",
    "background": "#f8fafc",
    "card_bg": "#f8fafc",
    "text_primary": "#0f172a",
    "text_secondary": "#334155",
    "text_muted": "#64748b",
    "border": "#e2e8f0",
    "success": "#10b981",
    "success_light": "#d1fae5",
    "warning": "#f59e0b",
    "warning_light": "#fef3c7",
    "danger": "#ef4444",
}

LOGO_URL = f"{SITE_URL}/assets/images/markeb-media-logo.png"


def get_base_template(
    title: str,
    preview_text: str,
    content_sections: str,
    cta_url: Optional[str] = None,
    cta_label: Optional[str] = None,
) -> str:
    """Base MJML template wrapper for all emails"""

    cta_section = ""
    if cta_url and cta_label:
        cta_section = f"""
        <mj-section background-color="#ffffff" padding="0 40px 40px 40px">
          <mj-column>
            <mj-button
              href="{cta_url}"
              background-color="{THEME['primary']}"
              color="#ffffff"
              font-weight="600"
              border-radius="8px"
              padding="8px 0"
              inner-padding="16px 36px"
              font-size="16px">
              {cta_label}
            </mj-button>
          </mj-column>
        </mj-section>
        """

    return f"""
    <mjml>
      <mj-head>
        <mj-title>{title}</mj-title>
        <mj-preview>{preview_text}</mj-preview>
        <mj-attributes>
          <mj-all font-family="-apple-system, BlinkMacSystemFont, 'Segoe UI', Arial, sans-serif" />
          <mj-text font-size="16px" line-height="1.6" color="{THEME['text_secondary']}" />
        </mj-attributes>
      </mj-head>
      <mj-body background-color="{THEME['background']}">
        <mj-section background-color="{THEME['primary_dark']}" padding="32px 20px">
          <mj-column>
            <mj-image src="{LOGO_URL}" alt="Markeb Media" width="160px" href="{SITE_URL}" padding="0 0 16px 0" />
            <mj-text align="center" color="#ffffff" font-size="28px" font-weight="700" padding="0">
              {title}
            </mj-text>
          </mj-column>
        </mj-section>

        <mj-section background-color="#ffffff" padding="40px 40px 16px 40px">
          <mj-column>
            {content_sections}
          </mj-column>
        </mj-section>

        {cta_section}

        <mj-section padding="28px 20px">
          <mj-column>
            <mj-text align="center" font-size="13px" color="{THEME['text_muted']}" padding="0">
              Markeb Media - Property photography, video and drone
            </mj-text>
            <mj-text align="center" font-size="13px" color="{THEME['text_muted']}" padding="8px 0 0 0">
              Questions? Reply to this email or contact commercial@markebmedia.com
            </mj-text>
          </mj-column>
        </mj-section>
      </mj-body>
    </mjml>
    """


def greeting(name: str) -> str:
    return f"<mj-text>Hi {esc(name) or 'there'},</mj-text>"


def details_block(heading: str, rows: list[tuple[str, str]]) -> str:
    """Boxed key/value list. Values must already be escaped."""
    lines = "<br/>".join(f"<strong>{label}:</strong> {value}" for label, value in rows if value)
    return f"""
    <mj-text
      container-background-color="{THEME['card_bg']}"
      padding="20px 24px"
      border-left="4px solid {THEME['primary']}">
      <span style="font-size: 18px; font-weight: 600; color: {THEME['text_primary']};">{heading}</span><br/><br/>
      {lines}
    </mj-text>
    <mj-spacer height="16px" />
    """


def notice_block(text: str, tone: str = "warning") -> str:
    background = THEME["success_light"] if tone == "success" else THEME["warning_light"]
    border = THEME["success"] if tone == "success" else THEME["warning"]
    return f"""
    <mj-text container-background-color="{background}" padding="16px 20px" border="2px solid {border}">
      {text}
    </mj-text>
    <mj-spacer height="16px" />
    """


def _booking_rows(booking: dict) -> list[tuple[str, str]]:
    return [
        ("Reference", esc(booking.get("bookingRef"))),
        ("Service", esc(booking.get("service"))),
        ("Date", esc(booking.get("date"))),
        ("Time", esc(booking.get("time"))),
        ("Property", esc(booking.get("propertyAddress"))),
    ]


def manage_booking_url(booking_ref: str) -> str:
    return f"{SITE_URL}/manage-booking?ref={esc(booking_ref)}"


# ============================================
# Booking lifecycle
# ============================================


def booking_confirmation_template(booking: dict, payment_status: str) -> str:
    rows = _booking_rows(booking)
    if booking.get("discountCode"):
        rows.append(("Discount", f"{esc(booking['discountCode'])} (-{format_money(booking.get('discountAmount'))})"))
    rows.append(("Total", format_money(booking.get("finalPrice"))))

    if payment_status == "Paid":
        payment_note = notice_block("<strong>Payment received.</strong> Thank you.", tone="success")
    elif payment_status == "Reserved":
        payment_note = notice_block(
            "<strong>Reserved on account.</strong> We will send a payment link once your media is delivered."
        )
    else:
        payment_note = notice_block(
            "<strong>Payment pending.</strong> Your slot is reserved while we wait for payment."
        )

    content = f"""
    {greeting(booking.get("clientName", ""))}
    <mj-text>Thank you for booking with Markeb Media. Your shoot is in the diary.</mj-text>
    {details_block("Booking Details", rows)}
    {payment_note}
    <mj-text font-size="14px" color="{THEME['text_muted']}">
      You can cancel or reschedule free of charge up to 24 hours before your shoot.
      Inside 24 hours a 50% cancellation fee applies.
    </mj-text>
    """
    return get_base_template(
        title="Booking Confirmed",
        preview_text=f"Your booking {esc(booking.get('bookingRef'))} is confirmed",
        content_sections=content,
        cta_url=manage_booking_url(booking.get("bookingRef", "")),
        cta_label="Manage Booking",
    )


def payment_confirmation_template(booking: dict, amount) -> str:
    content = f"""
    {greeting(booking.get("clientName", ""))}
    <mj-text>We have received your payment of <strong>{format_money(amount)}</strong>.</mj-text>
    {details_block("Booking Details", _booking_rows(booking))}
    """
    return get_base_template(
        title="Payment Received",
        preview_text=f"Payment received for {esc(booking.get('bookingRef'))}",
        content_sections=content,
        cta_url=manage_booking_url(booking.get("bookingRef", "")),
        cta_label="View Booking",
    )


def payment_link_template(booking: dict, amount, payment_url: str) -> str:
    content = f"""
    {greeting(booking.get("clientName", ""))}
    <mj-text>Your media for the booking below is ready. Please complete payment using the secure link.</mj-text>
    {details_block("Booking Details", _booking_rows(booking) + [("Amount Due", format_money(amount))])}
    """
    return get_base_template(
        title="Payment Required",
        preview_text=f"Payment of {format_money(amount)} due for {esc(booking.get('bookingRef'))}",
        content_sections=content,
        cta_url=esc(payment_url),
        cta_label="Pay Now",
    )


def reschedule_confirmation_template(booking: dict, old_date: str, old_time: str) -> str:
    rows = _booking_rows(booking)
    rows.insert(2, ("Previously", f"{esc(old_date)} at {esc(old_time)}"))
    content = f"""
    {greeting(booking.get("clientName", ""))}
    <mj-text>Your booking has been moved to a new date and time.</mj-text>
    {details_block("Updated Booking", rows)}
    """
    return get_base_template(
        title="Booking Rescheduled",
        preview_text=f"New date for {esc(booking.get('bookingRef'))}: {esc(booking.get('date'))}",
        content_sections=content,
        cta_url=manage_booking_url(booking.get("bookingRef", "")),
        cta_label="Manage Booking",
    )


def cancellation_confirmation_template(booking: dict, fee, refund, note: str) -> str:
    rows = _booking_rows(booking) + [
        ("Cancellation Fee", format_money(fee)),
        ("Refund", format_money(refund)),
    ]
    content = f"""
    {greeting(booking.get("clientName", ""))}
    <mj-text>Your booking has been cancelled.</mj-text>
    {details_block("Cancelled Booking", rows)}
    {notice_block(esc(note), tone="success" if not fee else "warning")}
    <mj-text>We hope to work with you again soon.</mj-text>
    """
    return get_base_template(
        title="Booking Cancelled",
        preview_text=f"Booking {esc(booking.get('bookingRef'))} has been cancelled",
        content_sections=content,
        cta_url=f"{SITE_URL}/booking",
        cta_label="Book Again",
    )


def service_modification_template(booking: dict, payment_action: str, difference) -> str:
    amount = format_money(abs(difference))
    notes = {
        "charge": notice_block(f"<strong>Additional Charge:</strong> {amount} has been charged to your saved payment method."),
        "refund": notice_block(
            f"<strong>Refund Processed:</strong> {amount} has been refunded to your original payment method.",
            tone="success",
        ),
        "charge_required": notice_block(
            f"<strong>Payment Required:</strong> An additional {amount} is due. We'll contact you to collect payment."
        ),
    }
    rows = _booking_rows(booking) + [("New Total", format_money(booking.get("finalPrice")))]
    content = f"""
    {greeting(booking.get("clientName", ""))}
    <mj-text>Your booking has been successfully modified.</mj-text>
    {notes.get(payment_action, "")}
    {details_block("Updated Booking Details", rows)}
    """
    return get_base_template(
        title="Booking Modified",
        preview_text=f"Booking {esc(booking.get('bookingRef'))} has been updated",
        content_sections=content,
        cta_url=manage_booking_url(booking.get("bookingRef", "")),
        cta_label="Manage Booking",
    )


def reminder_template(booking: dict) -> str:
    content = f"""
    {greeting(booking.get("clientName", ""))}
    <mj-text>A quick reminder that your Markeb Media shoot is <strong>tomorrow</strong>.</mj-text>
    {details_block("Booking Details", _booking_rows(booking))}
    <mj-text>
      <strong>Preparing the property:</strong><br/>
      Please make sure the property is clean, tidy and well lit, with cars moved
      off the driveway and personal items put away.
    </mj-text>
    """
    return get_base_template(
        title="Your Shoot Is Tomorrow",
        preview_text=f"Reminder: {esc(booking.get('service'))} at {esc(booking.get('time'))} tomorrow",
        content_sections=content,
        cta_url=manage_booking_url(booking.get("bookingRef", "")),
        cta_label="View Booking",
    )


# ============================================
# Accounts
# ============================================


def welcome_email_template(name: str) -> str:
    content = f"""
    {greeting(name)}
    <mj-text>Your Markeb Media account is ready. From your dashboard you can book shoots,
    track deliveries and collect loyalty points on every paid booking.</mj-text>
    """
    return get_base_template(
        title="Welcome to Markeb Media",
        preview_text="Your account has been created",
        content_sections=content,
        cta_url=f"{SITE_URL}/dashboard",
        cta_label="Go to Dashboard",
    )


def password_reset_template(name: str, reset_link: str) -> str:
    content = f"""
    {greeting(name)}
    <mj-text>We received a request to reset your password. The link below is valid for one hour.</mj-text>
    <mj-text font-size="14px" color="{THEME['text_muted']}">
      If you didn't ask for this you can ignore this email. Your password will not change.
    </mj-text>
    """
    return get_base_template(
        title="Reset Your Password",
        preview_text="Reset your Markeb Media password",
        content_sections=content,
        cta_url=esc(reset_link),
        cta_label="Reset Password",
    )


# ============================================
# Loyalty
# ============================================


def milestone_template(name: str, points: int, value: int, kind: str, tier: str, balance: int) -> str:
    if kind == "progress":
        intro = (
            f"You're building momentum! You've now earned <strong>{points:,} points</strong> "
            f"with Markeb Media. Keep booking to unlock your next free service."
        )
        title = "Great Progress!"
        cta_label = "View Dashboard"
        highlight = ""
    else:
        intro = (
            f"Congratulations! You've reached <strong>{points:,} points</strong> "
            f"and unlocked the <strong>{esc(tier)}</strong> tier."
        )
        title = f"{esc(tier)} Tier Unlocked"
        cta_label = "Book Your Free Service"
        highlight = notice_block(
            f"<strong>Available to spend:</strong> {format_money(value)}<br/>"
            f"<strong>Current balance:</strong> {balance:,} points",
            tone="success",
        )

    content = f"""
    {greeting(name)}
    <mj-text>{intro}</mj-text>
    {highlight}
    <mj-text font-size="14px" color="{THEME['text_muted']}">Your points never expire.</mj-text>
    """
    return get_base_template(
        title=title,
        preview_text=f"{points:,} points earned",
        content_sections=content,
        cta_url=f"{SITE_URL}/dashboard",
        cta_label=cta_label,
    )
