import asyncio
from datetime import datetime
from itertools import count
from typing import Any, Optional
from unittest.mock import AsyncMock, Mock

import pytest

from markeb.domain.bookings import models as f
from markeb.domain.bookings.lifecycle import BookingLocks
from markeb.domain.bookings.models import BUSINESS_TZ, Booking
from markeb.domain.bookings.service import BookingService
from markeb.errors import RecordNotFound


def london(*args) -> datetime:
    return datetime(*args, tzinfo=BUSINESS_TZ)


class InMemoryBookingRepository:
    """BookingRepository stand-in backed by a dict of Airtable-style records"""

    def __init__(self):
        self.records: dict[str, dict[str, Any]] = {}
        self.updates: list[tuple[str, dict]] = []
        self._ids = count(1)

    def add(self, **fields) -> Booking:
        record_id = f"rec{next(self._ids):04d}"
        self.records[record_id] = dict(fields)
        return Booking.from_record({"id": record_id, "fields": self.records[record_id]})

    def fields(self, record_id: str) -> dict:
        return self.records[record_id]

    def _booking(self, record_id: str) -> Booking:
        return Booking.from_record({"id": record_id, "fields": dict(self.records[record_id])})

    async def get(self, record_id: str) -> Booking:
        if record_id not in self.records:
            raise RecordNotFound("Record not found")
        return self._booking(record_id)

    async def find_by_reference(self, reference: str, client_email: Optional[str] = None) -> Optional[Booking]:
        for record_id, fields in self.records.items():
            if fields.get(f.REFERENCE) != reference:
                continue
            if client_email and (fields.get(f.CLIENT_EMAIL) or "").lower() != client_email.strip().lower():
                continue
            return self._booking(record_id)
        return None

    async def find_by_session(self, session_id: str) -> Optional[Booking]:
        for record_id, fields in self.records.items():
            if fields.get(f.STRIPE_SESSION_ID) == session_id:
                return self._booking(record_id)
        return None

    async def list_for_client(self, client_email: str) -> list[Booking]:
        return [
            self._booking(record_id)
            for record_id, fields in self.records.items()
            if (fields.get(f.CLIENT_EMAIL) or "").lower() == client_email.lower()
        ]

    async def list_for_date(self, booking_date: str) -> list[Booking]:
        bookings = [self._booking(r) for r, fields in self.records.items() if fields.get(f.DATE) == booking_date]
        return [b for b in bookings if not b.is_cancelled]

    async def search(self, start_date=None, end_date=None, region=None, status=None, payment_status=None):
        bookings = [self._booking(record_id) for record_id in self.records]
        if start_date:
            bookings = [b for b in bookings if b.date >= start_date]
        if end_date:
            bookings = [b for b in bookings if b.date <= end_date]
        if region:
            bookings = [b for b in bookings if b.fields.get(f.REGION) == region]
        if status:
            bookings = [b for b in bookings if b.fields.get(f.BOOKING_STATUS) == status]
        if payment_status:
            bookings = [b for b in bookings if b.fields.get(f.PAYMENT_STATUS) == payment_status]
        return sorted(bookings, key=lambda b: b.date, reverse=True)

    async def list_for_specialist(self, specialist: str) -> list[Booking]:
        return [
            self._booking(record_id)
            for record_id, fields in self.records.items()
            if fields.get(f.MEDIA_SPECIALIST) == specialist
        ]

    async def create(self, fields: dict[str, Any]) -> Booking:
        return self.add(**fields)

    async def update(self, record_id: str, fields: dict[str, Any]) -> Booking:
        # Yield like a real network call so concurrent callers can interleave
        await asyncio.sleep(0)
        if record_id not in self.records:
            raise RecordNotFound("Record not found")
        self.records[record_id].update(fields)
        self.updates.append((record_id, dict(fields)))
        return self._booking(record_id)


def paid_booking_fields(**overrides) -> dict:
    fields = {
        f.REFERENCE: "BK-1001",
        f.DATE: "2025-06-10",
        f.TIME: "14:00",
        f.SERVICE: "essentials",
        f.SERVICE_ID: "essentials",
        f.SERVICE_NAME: "Essentials Package",
        f.BASE_PRICE: 120,
        f.BEDROOMS: 3,
        f.TOTAL_PRICE: 120,
        f.FINAL_PRICE: 120,
        f.CLIENT_NAME: "Sam Agent",
        f.CLIENT_EMAIL: "sam@agency.co.uk",
        f.CLIENT_PHONE: "+447700900123",
        f.PROPERTY_ADDRESS: "12 High Street, Leeds",
        f.POSTCODE: "LS1 4AP",
        f.REGION: "Yorkshire",
        f.BOOKING_STATUS: "Confirmed",
        f.PAYMENT_STATUS: "Paid",
        f.STRIPE_PAYMENT_INTENT_ID: "pi_original",
        f.STRIPE_PAYMENT_METHOD_ID: "pm_saved",
        f.STRIPE_CUSTOMER_ID: "cus_123",
    }
    fields.update(overrides)
    return fields


@pytest.fixture
def repo():
    return InMemoryBookingRepository()


@pytest.fixture
def payments():
    bridge = Mock()
    bridge.charge.return_value = "pi_extra"
    bridge.refund.return_value = "re_123"
    bridge.line_item.side_effect = lambda name, amount, description=None: {"name": name, "amount": amount}
    bridge.create_checkout_session.return_value = ("cs_test_1", "https://checkout.stripe.com/c/cs_test_1")
    bridge.create_payment_link.return_value = "https://buy.stripe.com/link_1"
    bridge.ensure_customer.return_value = "cus_new"
    return bridge


@pytest.fixture
def mailer():
    return AsyncMock()


@pytest.fixture
def clock():
    """Mutable clock: tests set clock.now"""
    holder = Mock()
    holder.now = london(2025, 6, 1, 10, 0)
    holder.side_effect = lambda: holder.now
    return holder


@pytest.fixture
def service(repo, payments, mailer, clock):
    return BookingService(repo, payments, BookingLocks(), mailer=mailer, clock=clock)
