"""Booking lifecycle - statuses, guards and per-booking mutation locks"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from enum import Enum

from ...errors import BookingConflict, OwnershipMismatch
from .fees import FREE_CANCELLATION_WINDOW, hours_until
from .models import Booking

logger = logging.getLogger(__name__)


class BookingStatus(str, Enum):
    BOOKED = "Booked"
    RESERVED = "Reserved"
    CONFIRMED = "Confirmed"
    CANCELLED = "Cancelled"


class PaymentStatus(str, Enum):
    PENDING = "Pending"
    RESERVED = "Reserved"
    PAID = "Paid"


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


# ============================================================================
# GUARDS
# ============================================================================


def ensure_not_cancelled(booking: Booking) -> None:
    if booking.is_cancelled:
        raise BookingConflict("Booking is already cancelled")


def ensure_owner(booking: Booking, client_email: str) -> None:
    if normalize_email(booking.client_email) != normalize_email(client_email):
        logger.warning(f"⚠️ Ownership check failed for booking {booking.reference}")
        raise OwnershipMismatch("Unauthorized - email does not match booking")


def ensure_outside_fee_window(booking: Booking, now: datetime, action: str = "cancel") -> None:
    """Free self-service changes need at least 24 hours' notice"""
    remaining = booking.scheduled_at - now
    if remaining < FREE_CANCELLATION_WINDOW:
        hours = round(hours_until(booking.scheduled_at, now), 1)
        if action == "cancel":
            raise BookingConflict(
                "Cannot cancel within 24 hours of booking. A cancellation fee applies.",
                {"requiresPayment": True, "hoursUntil": hours},
            )
        raise BookingConflict(
            f"Cannot {action} within 24 hours of booking. Please contact us.",
            {"hoursUntil": hours},
        )


# ============================================================================
# LOCKS
# ============================================================================


class BookingLocks:
    """
    In-process lock per booking reference.

    Mutating operations hold the lock for their whole read-check-write
    sequence, so two requests for the same booking in this process run one
    after the other. Locks are dropped once nobody holds or waits on them.
    """

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str):
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


_locks = BookingLocks()


def get_booking_locks() -> BookingLocks:
    return _locks
