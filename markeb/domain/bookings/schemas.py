"""Booking domain schemas - Pydantic models for request validation"""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, field_validator

from ...shared.validators import (
    normalize_uk_postcode,
    validate_booking_date,
    validate_booking_time,
    validate_email,
    validate_uk_phone,
)


class AddOn(BaseModel):
    name: str
    price: Decimal = Decimal("0")


class BookingCreate(BaseModel):
    """
    Booking form submission.

    Everything is optional at the schema level so that the service can report
    all missing fields at once.
    """

    postcode: Optional[str] = None
    propertyAddress: Optional[str] = None
    territory: Optional[str] = None
    mediaSpecialist: Optional[str] = None
    date: Optional[str] = None
    time: Optional[str] = None
    serviceId: Optional[str] = None
    service: Optional[str] = None
    duration: Optional[int] = None
    bedrooms: int = 0
    basePrice: Optional[Decimal] = None
    addons: list[AddOn] = []
    totalPrice: Optional[Decimal] = None
    discountCode: Optional[str] = None
    clientName: Optional[str] = None
    clientEmail: Optional[str] = None
    clientPhone: Optional[str] = None
    clientNotes: Optional[str] = None
    paymentMethodId: Optional[str] = None

    @field_validator("postcode")
    @classmethod
    def validate_postcode(cls, v):
        return normalize_uk_postcode(v) if v else v

    @field_validator("clientEmail")
    @classmethod
    def validate_client_email(cls, v):
        return validate_email(v) if v else v

    @field_validator("clientPhone")
    @classmethod
    def validate_phone(cls, v):
        return validate_uk_phone(v) if v else v

    @field_validator("date")
    @classmethod
    def validate_date(cls, v):
        return validate_booking_date(v) if v else v

    @field_validator("time")
    @classmethod
    def validate_time(cls, v):
        return validate_booking_time(v) if v else v


class CancelRequest(BaseModel):
    bookingId: str
    clientEmail: str
    reason: Optional[str] = None


class PaidCancelRequest(BaseModel):
    bookingRef: str
    clientEmail: str
    cancellationFee: Decimal
    reason: Optional[str] = None


class ProcessCancellationRequest(BaseModel):
    sessionId: str


class RescheduleRequest(BaseModel):
    bookingRef: str
    clientEmail: str
    newDate: str
    newTime: str

    @field_validator("newDate")
    @classmethod
    def validate_date(cls, v):
        return validate_booking_date(v)

    @field_validator("newTime")
    @classmethod
    def validate_time(cls, v):
        return validate_booking_time(v)


class ServiceChange(BaseModel):
    newServiceId: str
    newServiceName: str
    newServicePrice: Decimal
    newServiceDuration: Optional[int] = None
    bedrooms: int = 0
    addons: list[AddOn] = []


class ModifyServiceRequest(ServiceChange):
    bookingId: str
    clientEmail: str


class CheckoutRequest(BookingCreate):
    """Booking paid up front through Stripe Checkout"""


class AvailabilityRequest(BaseModel):
    postcode: str
    region: str
    selectedDate: str
    excludeBookingId: Optional[str] = None

    @field_validator("selectedDate")
    @classmethod
    def validate_date(cls, v):
        return validate_booking_date(v)


# ============================================================================
# ADMIN
# ============================================================================


class AdminCancelRequest(BaseModel):
    reason: str = "Cancelled by Markeb Media"
    sendEmail: bool = True


class AdminRescheduleRequest(BaseModel):
    newDate: str
    newTime: str
    sendEmail: bool = True

    @field_validator("newDate")
    @classmethod
    def validate_date(cls, v):
        return validate_booking_date(v)

    @field_validator("newTime")
    @classmethod
    def validate_time(cls, v):
        return validate_booking_time(v)


class AdminModifyServiceRequest(ServiceChange):
    sendEmail: bool = True
