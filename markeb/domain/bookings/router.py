"""Booking router - FastAPI endpoints for the booking lifecycle"""

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query

from ...auth import get_current_specialist, require_admin
from ...cache import Cache, get_cache
from ...rate_limiter import create_rate_limiter
from ...record_store import AirtableClient, get_record_store
from ...services.payment_bridge import PaymentBridge, get_payment_bridge
from ...services.storage import DropboxClient, get_storage
from ..discounts.service import DiscountService
from ..users.repository import UserRepository
from .availability import AvailabilityService, DriveTimeClient
from .lifecycle import BookingLocks, get_booking_locks
from .repository import BookingRepository
from .schemas import (
    AdminCancelRequest,
    AdminModifyServiceRequest,
    AdminRescheduleRequest,
    AvailabilityRequest,
    BookingCreate,
    CancelRequest,
    CheckoutRequest,
    ModifyServiceRequest,
    PaidCancelRequest,
    ProcessCancellationRequest,
    RescheduleRequest,
    ServiceChange,
)
from .service import BookingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bookings", tags=["Bookings"])
admin_router = APIRouter(prefix="/admin/bookings", tags=["Admin"], dependencies=[Depends(require_admin)])
specialist_router = APIRouter(prefix="/specialists", tags=["Specialists"])

booking_limiter = create_rate_limiter(limit=10, window_seconds=60, key_prefix="booking_write")
lookup_limiter = create_rate_limiter(limit=30, window_seconds=60, key_prefix="booking_lookup")


def get_availability_service(
    store: AirtableClient = Depends(get_record_store),
    cache: Cache = Depends(get_cache),
) -> AvailabilityService:
    return AvailabilityService(BookingRepository(store), DriveTimeClient(cache=cache))


def get_booking_service(
    store: AirtableClient = Depends(get_record_store),
    payments: PaymentBridge = Depends(get_payment_bridge),
    locks: BookingLocks = Depends(get_booking_locks),
    storage: DropboxClient = Depends(get_storage),
    availability: AvailabilityService = Depends(get_availability_service),
) -> BookingService:
    """Dependency injection for BookingService"""
    return BookingService(
        BookingRepository(store),
        payments,
        locks,
        users=UserRepository(store),
        discounts=DiscountService(store),
        storage=storage,
        availability=availability,
    )


def _service_change(data: ServiceChange) -> ServiceChange:
    return ServiceChange(**data.model_dump(include=set(ServiceChange.model_fields)))


# ============================================================================
# CUSTOMER
# ============================================================================


@router.post("")
async def create_booking(
    data: BookingCreate,
    _: None = Depends(booking_limiter),
    service: BookingService = Depends(get_booking_service),
):
    """Create a booking without taking payment up front"""
    return await service.create_booking(data)


@router.post("/checkout")
async def create_checkout(
    data: CheckoutRequest,
    _: None = Depends(booking_limiter),
    service: BookingService = Depends(get_booking_service),
):
    """Start a Stripe Checkout; the booking is written when the webhook arrives"""
    return await service.start_checkout(data)


@router.post("/availability")
async def check_availability(
    data: AvailabilityRequest,
    _: None = Depends(lookup_limiter),
    availability: AvailabilityService = Depends(get_availability_service),
):
    result = await availability.check(
        data.postcode, data.region, data.selectedDate, datetime.now(timezone.utc), data.excludeBookingId
    )
    return {"success": True, **result}


@router.get("")
async def list_bookings(
    email: str = Query(...),
    _: None = Depends(lookup_limiter),
    service: BookingService = Depends(get_booking_service),
):
    return await service.list_client_bookings(email)


@router.get("/{booking_ref}")
async def get_booking(
    booking_ref: str,
    email: str = Query(...),
    _: None = Depends(lookup_limiter),
    service: BookingService = Depends(get_booking_service),
):
    return await service.get_booking(booking_ref, email)


@router.post("/cancel")
async def cancel_booking(
    data: CancelRequest,
    _: None = Depends(booking_limiter),
    service: BookingService = Depends(get_booking_service),
):
    """Free cancellation, 24 hours or more before the appointment"""
    return await service.cancel_booking(data.bookingId, data.clientEmail, data.reason)


@router.post("/cancel-with-payment")
async def cancel_with_payment(
    data: PaidCancelRequest,
    _: None = Depends(booking_limiter),
    service: BookingService = Depends(get_booking_service),
):
    return await service.start_paid_cancellation(
        data.bookingRef, data.clientEmail, data.cancellationFee, data.reason
    )


@router.post("/process-cancellation")
async def process_cancellation(
    data: ProcessCancellationRequest,
    service: BookingService = Depends(get_booking_service),
):
    return await service.process_cancellation_session(data.sessionId)


@router.post("/reschedule")
async def reschedule_booking(
    data: RescheduleRequest,
    _: None = Depends(booking_limiter),
    service: BookingService = Depends(get_booking_service),
):
    return await service.reschedule_booking(data.bookingRef, data.clientEmail, data.newDate, data.newTime)


@router.post("/modify-service")
async def modify_service(
    data: ModifyServiceRequest,
    _: None = Depends(booking_limiter),
    service: BookingService = Depends(get_booking_service),
):
    return await service.modify_service(data.bookingId, data.clientEmail, _service_change(data))


# ============================================================================
# ADMIN
# ============================================================================


@admin_router.get("")
async def admin_list_bookings(
    startDate: Optional[str] = Query(None),
    endDate: Optional[str] = Query(None),
    region: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    paymentStatus: Optional[str] = Query(None),
    service: BookingService = Depends(get_booking_service),
):
    """All bookings, newest first; paymentStatus=Reserved also matches unpaid rows"""
    return await service.admin_list_bookings(startDate, endDate, region, status, paymentStatus)


@admin_router.post("/{booking_id}/cancel")
async def admin_cancel_booking(
    booking_id: str,
    data: AdminCancelRequest,
    service: BookingService = Depends(get_booking_service),
):
    return await service.admin_cancel(booking_id, data.reason, data.sendEmail)


@admin_router.post("/{booking_id}/reschedule")
async def admin_reschedule_booking(
    booking_id: str,
    data: AdminRescheduleRequest,
    service: BookingService = Depends(get_booking_service),
):
    return await service.admin_reschedule(booking_id, data.newDate, data.newTime, data.sendEmail)


@admin_router.post("/{booking_id}/modify-service")
async def admin_modify_service(
    booking_id: str,
    data: AdminModifyServiceRequest,
    service: BookingService = Depends(get_booking_service),
):
    return await service.admin_modify_service(booking_id, _service_change(data), data.sendEmail)


@admin_router.post("/{booking_id}/charge")
async def charge_booking(booking_id: str, service: BookingService = Depends(get_booking_service)):
    """Charge the saved card on a reserved booking"""
    return await service.charge_reserved_booking(booking_id)


@admin_router.post("/{booking_id}/payment-link")
async def send_payment_link(booking_id: str, service: BookingService = Depends(get_booking_service)):
    return await service.send_payment_link(booking_id)


# ============================================================================
# MEDIA SPECIALISTS
# ============================================================================


@specialist_router.get("/me/bookings")
async def specialist_bookings(
    specialist: str = Depends(get_current_specialist),
    service: BookingService = Depends(get_booking_service),
):
    return await service.specialist_schedule(specialist)
