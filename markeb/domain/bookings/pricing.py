"""Booking price arithmetic - bedroom surcharge, add-ons and discounts"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional

from .fees import to_money

INCLUDED_BEDROOMS = 4
EXTRA_BEDROOM_PRICE = Decimal("30.00")

PERCENTAGE = "Percentage"
FIXED_AMOUNT = "Fixed Amount"


def extra_bedroom_fee(bedrooms: int) -> Decimal:
    """£30 for every bedroom above the four included in every package"""
    extra = max(0, int(bedrooms or 0) - INCLUDED_BEDROOMS)
    return to_money(EXTRA_BEDROOM_PRICE * extra)


def addons_total(addons: Iterable[dict]) -> Decimal:
    return to_money(sum((to_money(a.get("price") or 0) for a in addons), Decimal("0")))


@dataclass(frozen=True)
class PriceBreakdown:
    base_price: Decimal
    extra_bedroom_fee: Decimal
    addons_price: Decimal
    total: Decimal
    discount_amount: Decimal
    final: Decimal


def discount_amount_for(
    total: Decimal,
    discount_type: Optional[str],
    discount_value,
    previous_amount=None,
    previous_total=None,
) -> Decimal:
    """
    Discount to apply to `total`.

    Percentage codes are recomputed against the new total, fixed-amount codes
    keep their amount. Rows without a recorded type fall back to the ratio of
    the previous discount to the previous total. The discount never exceeds
    the price.
    """
    total = to_money(total)
    if discount_type == PERCENTAGE and discount_value:
        amount = total * to_money(discount_value) / 100
    elif discount_type == FIXED_AMOUNT and discount_value:
        amount = to_money(discount_value)
    elif previous_amount and previous_total and to_money(previous_total) > 0:
        amount = total * to_money(previous_amount) / to_money(previous_total)
    else:
        amount = Decimal("0")
    return min(to_money(amount), total)


def price_booking(
    base_price,
    bedrooms: int,
    addons: Iterable[dict],
    discount_type: Optional[str] = None,
    discount_value=None,
    previous_discount=None,
    previous_total=None,
) -> PriceBreakdown:
    addons = list(addons)
    base = to_money(base_price)
    bedroom_fee = extra_bedroom_fee(bedrooms)
    addons_price = addons_total(addons)
    total = base + bedroom_fee + addons_price
    discount = discount_amount_for(total, discount_type, discount_value, previous_discount, previous_total)
    return PriceBreakdown(
        base_price=base,
        extra_bedroom_fee=bedroom_fee,
        addons_price=addons_price,
        total=total,
        discount_amount=discount,
        final=total - discount,
    )
