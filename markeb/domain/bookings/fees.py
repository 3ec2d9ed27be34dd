"""
Cancellation fee rules.

One rule for every cancellation path (customer free cancel, customer paid
cancel, admin cancel, cancellation webhook):

    more than 24h before the slot   ->   0% fee, full refund
    inside the last 24h             ->  50% fee
    slot already started or passed  -> 100% fee, no refund

The boundary is half-open: exactly 24 hours out is still free.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Union

FREE_CANCELLATION_WINDOW = timedelta(hours=24)
LATE_CANCELLATION_PERCENTAGE = 50
PAST_CANCELLATION_PERCENTAGE = 100
FEE_TOLERANCE = Decimal("0.01")

PENNY = Decimal("0.01")

Amount = Union[Decimal, float, int, str]


def to_money(value: Amount) -> Decimal:
    """Coerce a price to a Decimal rounded to whole pence"""
    if value is None:
        return Decimal("0.00")
    if isinstance(value, float):
        value = repr(value)
    return Decimal(value).quantize(PENNY, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class FeeQuote:
    fee: Decimal
    fee_percentage: int
    refund: Decimal

    @property
    def is_free(self) -> bool:
        return self.fee_percentage == 0

    def as_dict(self) -> dict:
        return {
            "cancellationCharge": float(self.fee),
            "cancellationChargePercentage": self.fee_percentage,
            "refundAmount": float(self.refund),
        }


def hours_until(scheduled_at: datetime, now: datetime) -> float:
    return (scheduled_at - now).total_seconds() / 3600


def fee_percentage_for(scheduled_at: datetime, now: datetime) -> int:
    remaining = scheduled_at - now
    if remaining >= FREE_CANCELLATION_WINDOW:
        return 0
    if remaining >= timedelta(0):
        return LATE_CANCELLATION_PERCENTAGE
    return PAST_CANCELLATION_PERCENTAGE


def calculate_cancellation_fee(scheduled_at: datetime, now: datetime, total_price: Amount) -> FeeQuote:
    """Fee and refund for cancelling a booking scheduled at `scheduled_at` at time `now`"""
    total = to_money(total_price)
    percentage = fee_percentage_for(scheduled_at, now)
    fee = (total * percentage / 100).quantize(PENNY, rounding=ROUND_HALF_UP)
    return FeeQuote(fee=fee, fee_percentage=percentage, refund=total - fee)


def fee_matches(expected: Amount, submitted: Amount, tolerance: Decimal = FEE_TOLERANCE) -> bool:
    return abs(to_money(expected) - to_money(submitted)) <= tolerance


def refund_note(quote: FeeQuote) -> str:
    if quote.fee_percentage == 0:
        return "Full refund will be processed within 5-7 business days"
    if quote.fee_percentage == LATE_CANCELLATION_PERCENTAGE:
        return "50% cancellation fee applies. Remaining amount will be refunded within 5-7 business days"
    return "Full cancellation fee applies. No refund available"
