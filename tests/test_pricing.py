from decimal import Decimal

from markeb.domain.bookings.pricing import (
    addons_total,
    discount_amount_for,
    extra_bedroom_fee,
    price_booking,
)


def test_four_bedrooms_are_included():
    assert extra_bedroom_fee(4) == Decimal("0.00")
    assert extra_bedroom_fee(0) == Decimal("0.00")
    assert extra_bedroom_fee(6) == Decimal("60.00")


def test_addons_total_ignores_missing_prices():
    assert addons_total([{"name": "Drone", "price": 40}, {"name": "Floorplan"}]) == Decimal("40.00")


def test_price_breakdown_without_discount():
    breakdown = price_booking("120", 5, [{"name": "Drone", "price": "49.99"}])
    assert breakdown.extra_bedroom_fee == Decimal("30.00")
    assert breakdown.total == Decimal("199.99")
    assert breakdown.final == breakdown.total
    assert breakdown.discount_amount == Decimal("0.00")


def test_percentage_discount_follows_new_total():
    assert discount_amount_for(Decimal("150"), "Percentage", 10) == Decimal("15.00")


def test_fixed_discount_keeps_its_amount():
    assert discount_amount_for(Decimal("150"), "Fixed Amount", 25) == Decimal("25.00")


def test_untyped_discount_keeps_previous_ratio():
    amount = discount_amount_for(Decimal("200"), None, None, previous_amount=12, previous_total=120)
    assert amount == Decimal("20.00")


def test_discount_never_exceeds_price():
    breakdown = price_booking("20", 3, [], discount_type="Fixed Amount", discount_value=50)
    assert breakdown.discount_amount == Decimal("20.00")
    assert breakdown.final == Decimal("0.00")
