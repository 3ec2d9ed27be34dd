"""Booking record model - typed view over an Airtable Bookings row"""

import json
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Optional
from zoneinfo import ZoneInfo

from ...config import BUSINESS_TIMEZONE
from .fees import to_money

logger = logging.getLogger(__name__)

BUSINESS_TZ = ZoneInfo(BUSINESS_TIMEZONE)

# Column names in the Bookings table
REFERENCE = "Booking Reference"
DATE = "Date"
TIME = "Time"
SERVICE = "Service"
SERVICE_NAME = "Service Name"
SERVICE_ID = "Service ID"
DURATION = "Duration (mins)"
BEDROOMS = "Bedrooms"
BASE_PRICE = "Base Price"
EXTRA_BEDROOM_FEE = "Extra Bedroom Fee"
ADDONS = "Add-Ons"
ADDONS_PRICE = "Add-ons Price"
TOTAL_PRICE = "Total Price"
FINAL_PRICE = "Final Price"
PRICE_BEFORE_DISCOUNT = "Price Before Discount"
DISCOUNT_CODE = "Discount Code"
DISCOUNT_AMOUNT = "Discount Amount"
DISCOUNT_TYPE = "Discount Type"
DISCOUNT_VALUE = "Discount Value"
CLIENT_NAME = "Client Name"
CLIENT_EMAIL = "Client Email"
CLIENT_PHONE = "Client Phone"
CLIENT_NOTES = "Client Notes"
PROPERTY_ADDRESS = "Property Address"
POSTCODE = "Postcode"
REGION = "Region"
TERRITORY = "Territory"
MEDIA_SPECIALIST = "Media Specialist"
ACCESS_TYPE = "Access Type"
KEY_PICKUP_LOCATION = "Key Pickup Location"
BOOKING_STATUS = "Booking Status"
LEGACY_STATUS = "Status"
PAYMENT_STATUS = "Payment Status"
PAYMENT_METHOD = "Payment Method"
STRIPE_CUSTOMER_ID = "Stripe Customer ID"
STRIPE_PAYMENT_METHOD_ID = "Stripe Payment Method ID"
STRIPE_PAYMENT_INTENT_ID = "Stripe Payment Intent ID"
STRIPE_SESSION_ID = "Stripe Session ID"
AMOUNT_PAID = "Amount Paid"
PAYMENT_DATE = "Payment Date"
CANCELLATION_ALLOWED_UNTIL = "Cancellation Allowed Until"
DELIVERY_LINK = "Delivery Link"
CREATED_DATE = "Created Date"

# Audit trail columns
CANCELLATION_DATE = "Cancellation Date"
CANCELLATION_REASON = "Cancellation Reason"
CANCELLATION_CHARGE = "Cancellation Charge"
CANCELLATION_CHARGE_PERCENT = "Cancellation Charge %"
CANCELLATION_PAYMENT_ID = "Cancellation Payment ID"
CANCELLED_BY = "Cancelled By"
REFUND_AMOUNT = "Refund Amount"
REFUND_ID = "Refund ID"
REFUND_PROCESSED = "Refund Processed"
RESCHEDULED = "Rescheduled"
RESCHEDULED_BY = "Rescheduled By"
ORIGINAL_DATE = "Original Date"
ORIGINAL_TIME = "Original Time"
RESCHEDULE_DATE = "Reschedule Date"
SERVICE_MODIFIED = "Service Modified"
SERVICE_MODIFIED_DATE = "Service Modified Date"
PREVIOUS_SERVICE = "Previous Service"
PREVIOUS_PRICE = "Previous Price"
PRICE_ADJUSTMENT = "Price Adjustment"
ADJUSTMENT_TRANSACTION_ID = "Adjustment Transaction ID"
MANUAL_REVIEW_REQUIRED = "Manual Review Required"
MANUAL_REVIEW_NOTE = "Manual Review Note"

CANCELLED = "Cancelled"


def _as_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _as_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def parse_date(value: str) -> date:
    return date.fromisoformat(str(value)[:10])


def parse_time(value: str) -> time:
    hours, minutes = str(value).strip().split(":")[:2]
    return time(int(hours), int(minutes))


def combine_schedule(booking_date: str, booking_time: Optional[str]) -> datetime:
    """Scheduled instant for a date + HH:MM pair in the business timezone"""
    slot = parse_time(booking_time) if booking_time else time(0, 0)
    return datetime.combine(parse_date(booking_date), slot, tzinfo=BUSINESS_TZ)


def parse_addons(raw: Any) -> list[dict]:
    """Add-ons are stored as JSON by newer handlers and as plain text by older ones"""
    if not raw:
        return []
    if isinstance(raw, list):
        return raw
    try:
        parsed = json.loads(raw)
        return parsed if isinstance(parsed, list) else []
    except (TypeError, ValueError):
        return [{"name": line.strip()} for line in str(raw).replace(",", "\n").splitlines() if line.strip()]


@dataclass
class Booking:
    record_id: str
    reference: str
    date: str
    time: str
    fields: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "Booking":
        fields = record.get("fields", {})
        return cls(
            record_id=record["id"],
            reference=fields.get(REFERENCE, ""),
            date=fields.get(DATE, ""),
            time=fields.get(TIME, ""),
            fields=fields,
        )

    # -- schedule ---------------------------------------------------------

    @property
    def scheduled_at(self) -> datetime:
        return combine_schedule(self.date, self.time)

    # -- status -----------------------------------------------------------

    @property
    def booking_status(self) -> str:
        return self.fields.get(BOOKING_STATUS) or self.fields.get(LEGACY_STATUS) or "Booked"

    @property
    def is_cancelled(self) -> bool:
        # Older handlers wrote the legacy column; either one marks cancellation
        return CANCELLED in (self.fields.get(BOOKING_STATUS), self.fields.get(LEGACY_STATUS))

    @property
    def payment_status(self) -> str:
        return self.fields.get(PAYMENT_STATUS) or "Pending"

    @property
    def is_paid(self) -> bool:
        return self.payment_status == "Paid"

    # -- party ------------------------------------------------------------

    @property
    def client_email(self) -> str:
        return (self.fields.get(CLIENT_EMAIL) or "").strip()

    @property
    def client_name(self) -> str:
        return self.fields.get(CLIENT_NAME) or ""

    @property
    def property_address(self) -> str:
        return self.fields.get(PROPERTY_ADDRESS) or ""

    # -- service ----------------------------------------------------------

    @property
    def service_name(self) -> str:
        """Display name of the booked service.

        Rows written by different handlers carry the label under "Service Name"
        or under "Service". Neither column is treated as authoritative; a
        mismatch is logged so the drift can be migrated.
        """
        name = self.fields.get(SERVICE_NAME)
        legacy = self.fields.get(SERVICE)
        if name and legacy and name != legacy and legacy != self.fields.get(SERVICE_ID):
            logger.warning(
                f"⚠️ Schema drift on {self.reference}: '{SERVICE_NAME}'={name!r} vs '{SERVICE}'={legacy!r}"
            )
        return name or legacy or ""

    @property
    def bedrooms(self) -> int:
        return _as_int(self.fields.get(BEDROOMS))

    @property
    def addons(self) -> list[dict]:
        return parse_addons(self.fields.get(ADDONS))

    # -- money ------------------------------------------------------------

    @property
    def total_price(self) -> Decimal:
        return to_money(_as_float(self.fields.get(TOTAL_PRICE)))

    @property
    def final_price(self) -> Decimal:
        """Price the customer actually owes (after discount)"""
        final = self.fields.get(FINAL_PRICE)
        if final in (None, ""):
            return self.total_price
        return to_money(_as_float(final))

    @property
    def discount_code(self) -> str:
        return self.fields.get(DISCOUNT_CODE) or ""

    @property
    def discount_amount(self) -> Decimal:
        return to_money(_as_float(self.fields.get(DISCOUNT_AMOUNT)))

    @property
    def payment_intent_id(self) -> Optional[str]:
        return self.fields.get(STRIPE_PAYMENT_INTENT_ID) or None

    @property
    def payment_method_id(self) -> Optional[str]:
        return self.fields.get(STRIPE_PAYMENT_METHOD_ID) or None

    @property
    def customer_id(self) -> Optional[str]:
        return self.fields.get(STRIPE_CUSTOMER_ID) or None

    def summary(self) -> dict[str, Any]:
        """Shape returned to the booking management pages"""
        return {
            "id": self.record_id,
            "bookingRef": self.reference,
            "date": self.date,
            "time": self.time,
            "service": self.service_name,
            "serviceId": self.fields.get(SERVICE_ID),
            "duration": self.fields.get(DURATION),
            "bedrooms": self.bedrooms,
            "addons": self.addons,
            "propertyAddress": self.property_address,
            "postcode": self.fields.get(POSTCODE),
            "region": self.fields.get(REGION),
            "mediaSpecialist": self.fields.get(MEDIA_SPECIALIST),
            "clientName": self.client_name,
            "clientEmail": self.client_email,
            "totalPrice": float(self.total_price),
            "finalPrice": float(self.final_price),
            "discountCode": self.discount_code or None,
            "discountAmount": float(self.discount_amount),
            "bookingStatus": self.booking_status,
            "paymentStatus": self.payment_status,
            "deliveryLink": self.fields.get(DELIVERY_LINK),
        }

    def schedule_view(self) -> dict[str, Any]:
        """What a media specialist sees: the job, never the price"""
        return {
            "id": self.record_id,
            "bookingRef": self.reference,
            "date": self.date,
            "time": self.time,
            "propertyAddress": self.property_address,
            "postcode": self.fields.get(POSTCODE) or "",
            "region": self.fields.get(REGION) or "",
            "service": self.service_name,
            "serviceId": self.fields.get(SERVICE_ID) or "",
            "duration": _as_int(self.fields.get(DURATION)),
            "bedrooms": self.bedrooms,
            "addons": [a.get("name") if isinstance(a, dict) else str(a) for a in self.addons],
            "bookingStatus": self.booking_status,
            "clientName": self.client_name,
            "clientPhone": self.fields.get(CLIENT_PHONE) or "",
            "clientNotes": self.fields.get(CLIENT_NOTES) or "",
            "accessType": self.fields.get(ACCESS_TYPE) or "",
            "keyPickupLocation": self.fields.get(KEY_PICKUP_LOCATION) or "",
            "mediaSpecialist": self.fields.get(MEDIA_SPECIALIST),
        }
