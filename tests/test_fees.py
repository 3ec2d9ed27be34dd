from datetime import timedelta
from decimal import Decimal

import pytest

from markeb.domain.bookings.fees import (
    FeeQuote,
    calculate_cancellation_fee,
    fee_matches,
    fee_percentage_for,
    refund_note,
    to_money,
)
from tests.conftest import london

SLOT = london(2025, 6, 10, 14, 0)


@pytest.mark.parametrize(
    "now, fee, refund, percentage",
    [
        (london(2025, 6, 9, 13, 0), "0.00", "120.00", 0),
        (london(2025, 6, 9, 15, 0), "60.00", "60.00", 50),
        (london(2025, 6, 10, 15, 0), "120.00", "0.00", 100),
    ],
)
def test_cancellation_fee_scenarios(now, fee, refund, percentage):
    quote = calculate_cancellation_fee(SLOT, now, 120)
    assert quote.fee == Decimal(fee)
    assert quote.refund == Decimal(refund)
    assert quote.fee_percentage == percentage


def test_exactly_24_hours_out_is_free():
    assert fee_percentage_for(SLOT, SLOT - timedelta(hours=24)) == 0


def test_one_second_inside_window_is_charged():
    assert fee_percentage_for(SLOT, SLOT - timedelta(hours=24) + timedelta(seconds=1)) == 50


def test_at_the_slot_is_late_not_past():
    assert fee_percentage_for(SLOT, SLOT) == 50
    assert fee_percentage_for(SLOT, SLOT + timedelta(seconds=1)) == 100


def test_fee_and_refund_always_add_up_to_total():
    quote = calculate_cancellation_fee(SLOT, london(2025, 6, 10, 9, 0), "99.99")
    assert quote.fee == Decimal("50.00")
    assert quote.fee + quote.refund == Decimal("99.99")


def test_zero_price_booking_has_no_fee():
    quote = calculate_cancellation_fee(SLOT, london(2025, 6, 10, 9, 0), 0)
    assert quote.fee == Decimal("0.00")
    assert quote.refund == Decimal("0.00")


def test_to_money_rounds_floats_to_pence():
    assert to_money(0.1 + 0.2) == Decimal("0.30")
    assert to_money(None) == Decimal("0.00")
    assert to_money("12.345") == Decimal("12.35")


def test_fee_matches_within_a_penny():
    assert fee_matches(Decimal("60.00"), 60.01)
    assert fee_matches("60", "59.99")
    assert not fee_matches(Decimal("60.00"), 60.02)


def test_as_dict_uses_response_field_names():
    quote = FeeQuote(fee=Decimal("60.00"), fee_percentage=50, refund=Decimal("60.00"))
    assert quote.as_dict() == {
        "cancellationCharge": 60.0,
        "cancellationChargePercentage": 50,
        "refundAmount": 60.0,
    }


def test_refund_note_matches_fee_tier():
    assert "Full refund" in refund_note(calculate_cancellation_fee(SLOT, london(2025, 6, 1, 9, 0), 100))
    assert "50%" in refund_note(calculate_cancellation_fee(SLOT, london(2025, 6, 10, 9, 0), 100))
    assert "No refund" in refund_note(calculate_cancellation_fee(SLOT, london(2025, 6, 11, 9, 0), 100))
