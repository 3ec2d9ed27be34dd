"""Booking repository - record store operations for bookings"""

from typing import Any, Optional

from ...config import AIRTABLE_BOOKINGS_TABLE
from ...record_store import (
    AirtableClient,
    all_of,
    any_of,
    date_on_or_after,
    date_on_or_before,
    field_equals,
    field_not_equals,
    lower_equals,
    quote_value,
)
from . import models
from .models import Booking


class BookingRepository:
    """Repository for the Bookings table"""

    def __init__(self, store: AirtableClient, table: str = AIRTABLE_BOOKINGS_TABLE):
        self.store = store
        self.table = table

    async def get(self, record_id: str) -> Booking:
        record = await self.store.get_record(self.table, record_id)
        return Booking.from_record(record)

    async def find_by_reference(self, reference: str, client_email: Optional[str] = None) -> Optional[Booking]:
        conditions = [field_equals(models.REFERENCE, reference)]
        if client_email:
            conditions.append(lower_equals(models.CLIENT_EMAIL, client_email))
        record = await self.store.first(self.table, all_of(*conditions))
        return Booking.from_record(record) if record else None

    async def find_by_session(self, session_id: str) -> Optional[Booking]:
        record = await self.store.first(self.table, field_equals(models.STRIPE_SESSION_ID, session_id))
        return Booking.from_record(record) if record else None

    async def list_for_client(self, client_email: str) -> list[Booking]:
        records = await self.store.list_records(
            self.table,
            formula=lower_equals(models.CLIENT_EMAIL, client_email),
            sort=[(models.DATE, "desc")],
        )
        return [Booking.from_record(r) for r in records]

    async def list_for_date(self, booking_date: str) -> list[Booking]:
        """Non-cancelled bookings on a given YYYY-MM-DD"""
        formula = all_of(
            f"IS_SAME({{{models.DATE}}}, {quote_value(booking_date)}, 'day')",
            field_not_equals(models.BOOKING_STATUS, models.CANCELLED),
        )
        records = await self.store.list_records(self.table, formula=formula)
        bookings = [Booking.from_record(r) for r in records]
        # Rows cancelled through the legacy column still carry another Booking Status
        return [b for b in bookings if not b.is_cancelled]

    async def search(
        self,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        region: Optional[str] = None,
        status: Optional[str] = None,
        payment_status: Optional[str] = None,
    ) -> list[Booking]:
        """Admin listing; every filter is optional and the date range is inclusive"""
        conditions = []
        if start_date:
            conditions.append(date_on_or_after(models.DATE, start_date))
        if end_date:
            conditions.append(date_on_or_before(models.DATE, end_date))
        if region:
            conditions.append(field_equals(models.REGION, region))
        if status:
            conditions.append(field_equals(models.BOOKING_STATUS, status))
        if payment_status == "Reserved":
            # Anything not yet paid: older rows left Payment Status blank
            conditions.append(
                any_of(
                    field_equals(models.PAYMENT_STATUS, "Reserved"),
                    field_equals(models.PAYMENT_STATUS, "Pending"),
                    f"{{{models.PAYMENT_STATUS}}} = BLANK()",
                )
            )
        elif payment_status:
            conditions.append(field_equals(models.PAYMENT_STATUS, payment_status))

        records = await self.store.list_records(
            self.table,
            formula=all_of(*conditions) if conditions else None,
            sort=[(models.DATE, "desc"), (models.TIME, "asc")],
        )
        return [Booking.from_record(r) for r in records]

    async def list_for_specialist(self, specialist: str) -> list[Booking]:
        records = await self.store.list_records(
            self.table,
            formula=field_equals(models.MEDIA_SPECIALIST, specialist),
            sort=[(models.DATE, "desc")],
        )
        return [Booking.from_record(r) for r in records]

    async def create(self, fields: dict[str, Any]) -> Booking:
        record = await self.store.create_record(self.table, fields)
        return Booking.from_record(record)

    async def update(self, record_id: str, fields: dict[str, Any]) -> Booking:
        record = await self.store.update_record(self.table, record_id, fields)
        return Booking.from_record(record)
