"""
Slot availability for a region and day.

A media specialist covers one region per day. A new slot is offered when:
  * it is at least 24 hours away,
  * it does not overlap another booking in the region (45 minutes' buffer
    either side for travel and setup),
  * the property is within 45 minutes' drive of every other booking that day.
"""

import logging
import re
from datetime import datetime
from typing import Optional

import httpx

from ...cache import Cache, drive_time_key
from ...config import GOOGLE_MAPS_API_KEY, LOOKUP_TIMEOUT_SECONDS
from ...errors import UpstreamError, ValidationFailed
from .fees import FREE_CANCELLATION_WINDOW
from .models import DURATION, POSTCODE, REGION, Booking, combine_schedule
from .repository import BookingRepository

logger = logging.getLogger(__name__)

FIRST_SLOT_MINUTES = 9 * 60
LAST_SLOT_MINUTES = 15 * 60
SLOT_STEP_MINUTES = 30
TRAVEL_BUFFER_MINUTES = 45
MAX_DRIVE_MINUTES = 45
DEFAULT_DURATION_MINUTES = 90

BLOCKING_STATUSES = ("Booked", "Confirmed")

DISTANCE_MATRIX_URL = "https://maps.googleapis.com/maps/api/distancematrix/json"
DRIVE_TIME_CACHE_SECONDS = 7 * 24 * 3600

_POSTCODE_IN_ADDRESS = re.compile(r"([A-Z]{1,2}\d{1,2}[A-Z]?\s?\d[A-Z]{2})", re.IGNORECASE)


def minutes_to_time(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def time_to_minutes(value: str) -> int:
    hours, minutes = value.split(":")[:2]
    return int(hours) * 60 + int(minutes)


def all_slots() -> list[str]:
    """09:00 to 15:00 inclusive, every 30 minutes"""
    return [minutes_to_time(m) for m in range(FIRST_SLOT_MINUTES, LAST_SLOT_MINUTES + 1, SLOT_STEP_MINUTES)]


def booking_postcode(booking: Booking) -> str:
    postcode = booking.fields.get(POSTCODE)
    if postcode:
        return postcode
    match = _POSTCODE_IN_ADDRESS.search(booking.property_address)
    return match.group(1).upper() if match else ""


def blocked_window(booking: Booking) -> tuple[int, int]:
    start = time_to_minutes(booking.time)
    duration = int(booking.fields.get(DURATION) or DEFAULT_DURATION_MINUTES)
    return start - TRAVEL_BUFFER_MINUTES, start + duration + TRAVEL_BUFFER_MINUTES


class DriveTimeClient:
    """Driving minutes between two postcodes from the Google Distance Matrix API"""

    def __init__(
        self,
        api_key: Optional[str] = GOOGLE_MAPS_API_KEY,
        cache: Optional[Cache] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = LOOKUP_TIMEOUT_SECONDS,
    ):
        self.api_key = api_key
        self.cache = cache
        self._transport = transport
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def minutes(self, origin: str, destination: str) -> int:
        key = drive_time_key(origin, destination)
        if self.cache:
            cached = self.cache.get(key)
            if cached is not None:
                return cached

        params = {
            "origins": origin,
            "destinations": destination,
            "mode": "driving",
            "key": self.api_key,
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(DISTANCE_MATRIX_URL, params=params)
        except httpx.HTTPError as e:
            logger.error(f"❌ Distance Matrix transport error: {e}")
            raise UpstreamError("Drive time lookup unavailable") from e

        data = response.json() if response.status_code == 200 else {}
        try:
            element = data["rows"][0]["elements"][0]
            if data.get("status") != "OK" or element.get("status") != "OK":
                raise KeyError("status")
            minutes = round(element["duration"]["value"] / 60)
        except (KeyError, IndexError) as e:
            logger.error(f"❌ Distance Matrix returned no route {origin} -> {destination}: {data.get('status')}")
            raise UpstreamError("Drive time lookup failed") from e

        if self.cache:
            self.cache.set(key, minutes, DRIVE_TIME_CACHE_SECONDS)
        return minutes


class AvailabilityService:
    def __init__(self, repo: BookingRepository, drive_times: DriveTimeClient):
        self.repo = repo
        self.drive_times = drive_times

    async def bookings_in_region(
        self, region: str, booking_date: str, exclude_record_id: Optional[str] = None
    ) -> list[Booking]:
        bookings = await self.repo.list_for_date(booking_date)
        return [
            b
            for b in bookings
            if (b.fields.get(REGION) or "").lower() == region.lower()
            and b.booking_status in BLOCKING_STATUSES
            and b.record_id != exclude_record_id
        ]

    async def _drive_time_block(self, postcode: str, bookings: list[Booking]) -> Optional[str]:
        """Reason the whole day is blocked for this property, if any"""
        if not self.drive_times.configured:
            logger.warning("⚠️ GOOGLE_MAPS_API_KEY not configured - skipping drive time check")
            return None

        for booking in bookings:
            other = booking_postcode(booking)
            if not other:
                continue
            try:
                minutes = await self.drive_times.minutes(postcode, other)
            except UpstreamError:
                return "Unable to verify drive time"
            if minutes > MAX_DRIVE_MINUTES:
                return f"Too far from existing booking at {booking.time} ({minutes} min drive)"
        return None

    async def check(
        self,
        postcode: str,
        region: str,
        booking_date: str,
        now: datetime,
        exclude_record_id: Optional[str] = None,
    ) -> dict:
        if not postcode or not region or not booking_date:
            raise ValidationFailed("Missing required fields: postcode, region, selectedDate")

        slots = [{"time": t, "available": True} for t in all_slots()]

        for slot in slots:
            if combine_schedule(booking_date, slot["time"]) - now < FREE_CANCELLATION_WINDOW:
                slot.update(available=False, reason="Bookings require 24 hours notice")

        bookings = await self.bookings_in_region(region, booking_date, exclude_record_id)
        if not bookings:
            return {"availableSlots": slots, "existingBookings": 0, "region": region}

        reason = await self._drive_time_block(postcode, bookings)
        if reason:
            logger.info(f"🚗 Blocking {booking_date} in {region}: {reason}")
            for slot in slots:
                slot.update(available=False, reason=reason)
            return {"availableSlots": slots, "existingBookings": len(bookings), "region": region}

        for booking in bookings:
            start, end = blocked_window(booking)
            for slot in slots:
                if slot["available"] and start <= time_to_minutes(slot["time"]) < end:
                    slot.update(available=False, reason=f"Specialist already booked at {booking.time}")

        return {"availableSlots": slots, "existingBookings": len(bookings), "region": region}

    async def is_available(
        self,
        postcode: str,
        region: str,
        booking_date: str,
        booking_time: str,
        now: datetime,
        exclude_record_id: Optional[str] = None,
    ) -> bool:
        result = await self.check(postcode, region, booking_date, now, exclude_record_id)
        return any(s["time"] == booking_time and s["available"] for s in result["availableSlots"])
