import asyncio

import pytest

from markeb.domain.bookings import models as f
from markeb.domain.bookings.lifecycle import (
    BookingLocks,
    ensure_not_cancelled,
    ensure_outside_fee_window,
    ensure_owner,
)
from markeb.domain.bookings.models import Booking
from markeb.errors import BookingConflict, OwnershipMismatch
from tests.conftest import london, paid_booking_fields


def make_booking(**overrides) -> Booking:
    return Booking.from_record({"id": "rec1", "fields": paid_booking_fields(**overrides)})


def test_owner_check_ignores_case_and_whitespace():
    ensure_owner(make_booking(), "  SAM@Agency.co.uk ")


def test_owner_check_rejects_other_email():
    with pytest.raises(OwnershipMismatch) as exc:
        ensure_owner(make_booking(), "someone@else.com")
    assert exc.value.status_code == 403


@pytest.mark.parametrize("column", [f.BOOKING_STATUS, f.LEGACY_STATUS])
def test_cancelled_in_either_status_column(column):
    booking = make_booking(**{column: "Cancelled"})
    with pytest.raises(BookingConflict, match="already cancelled"):
        ensure_not_cancelled(booking)


def test_fee_window_for_cancel_asks_for_payment():
    with pytest.raises(BookingConflict) as exc:
        ensure_outside_fee_window(make_booking(), london(2025, 6, 9, 15, 0), "cancel")
    assert exc.value.extra["requiresPayment"] is True
    assert exc.value.extra["hoursUntil"] == 23.0


def test_fee_window_for_reschedule_has_no_payment_flag():
    with pytest.raises(BookingConflict) as exc:
        ensure_outside_fee_window(make_booking(), london(2025, 6, 9, 15, 0), "reschedule")
    assert "requiresPayment" not in exc.value.extra


def test_fee_window_allows_exactly_24_hours():
    ensure_outside_fee_window(make_booking(), london(2025, 6, 9, 14, 0))


async def test_locks_serialise_same_key():
    locks = BookingLocks()
    order = []

    async def worker(name):
        async with locks.hold("BK-1"):
            order.append(f"{name}-in")
            await asyncio.sleep(0.01)
            order.append(f"{name}-out")

    await asyncio.gather(worker("a"), worker("b"))
    assert order in (["a-in", "a-out", "b-in", "b-out"], ["b-in", "b-out", "a-in", "a-out"])


async def test_locks_do_not_block_other_keys():
    locks = BookingLocks()
    async with locks.hold("BK-1"):
        await asyncio.wait_for(_enter(locks, "BK-2"), timeout=0.5)


async def _enter(locks, key):
    async with locks.hold(key):
        return True


async def test_idle_locks_are_dropped():
    locks = BookingLocks()
    async with locks.hold("BK-1"):
        assert len(locks) == 1
    assert len(locks) == 0
