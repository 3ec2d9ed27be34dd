"""Discount code service - validation and usage tracking"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from ...config import AIRTABLE_DISCOUNT_CODES_TABLE
from ...errors import ValidationFailed
from ...record_store import AirtableClient, all_of, field_equals, upper_equals
from ..bookings.fees import to_money
from ..bookings.models import parse_date
from ..bookings.pricing import FIXED_AMOUNT, PERCENTAGE, discount_amount_for

logger = logging.getLogger(__name__)

CODE = "Code"
STATUS = "Status"
VALID_FROM = "Valid From"
VALID_UNTIL = "Valid Until"
MAX_USES = "Max Uses"
TIMES_USED = "Times Used"
MIN_PURCHASE = "Min Purchase"
APPLICABLE_REGIONS = "Applicable Regions"
APPLICABLE_SERVICES = "Applicable Services"
DISCOUNT_TYPE = "Discount Type"
DISCOUNT_VALUE = "Discount Value"


class InvalidDiscount(ValidationFailed):
    """Code exists in the request but cannot be applied"""


@dataclass(frozen=True)
class DiscountResult:
    record_id: str
    code: str
    discount_type: str
    discount_value: Decimal
    discount_amount: Decimal
    original_price: Decimal
    final_price: Decimal

    def as_dict(self) -> dict:
        return {
            "success": True,
            "code": self.code,
            "discountType": self.discount_type,
            "discountValue": float(self.discount_value),
            "discountAmount": float(self.discount_amount),
            "originalPrice": float(self.original_price),
            "finalPrice": float(self.final_price),
            "recordId": self.record_id,
        }


def _as_list(value) -> list[str]:
    if not value:
        return []
    if isinstance(value, str):
        return [v.strip() for v in value.split(",") if v.strip()]
    return list(value)


class DiscountService:
    def __init__(self, store: AirtableClient, table: str = AIRTABLE_DISCOUNT_CODES_TABLE):
        self.store = store
        self.table = table

    async def validate(
        self,
        code: str,
        total_price,
        now: datetime,
        region: Optional[str] = None,
        service_id: Optional[str] = None,
    ) -> DiscountResult:
        if not code or not total_price:
            raise ValidationFailed("Code and total price required")

        total = to_money(total_price)
        record = await self.store.first(
            self.table, all_of(upper_equals(CODE, code), field_equals(STATUS, "Active"))
        )
        if not record:
            logger.info(f"❌ Discount code {code!r} not found or inactive")
            raise InvalidDiscount("Invalid or expired discount code")

        fields = record["fields"]
        today = now.date()

        if fields.get(VALID_FROM) and today < parse_date(fields[VALID_FROM]):
            raise InvalidDiscount("This code is not yet active")
        if fields.get(VALID_UNTIL) and today > parse_date(fields[VALID_UNTIL]):
            raise InvalidDiscount("This code has expired")

        max_uses = fields.get(MAX_USES)
        if max_uses and int(fields.get(TIMES_USED) or 0) >= int(max_uses):
            raise InvalidDiscount("This code has reached its usage limit")

        min_purchase = fields.get(MIN_PURCHASE)
        if min_purchase and total < to_money(min_purchase):
            raise InvalidDiscount(f"Minimum purchase of £{to_money(min_purchase)} required for this code")

        regions = _as_list(fields.get(APPLICABLE_REGIONS))
        if regions and region and region.lower() not in [r.lower() for r in regions]:
            raise InvalidDiscount("This code is not valid for your region")

        services = _as_list(fields.get(APPLICABLE_SERVICES))
        if services and service_id and service_id not in services:
            raise InvalidDiscount("This code is not valid for the selected service")

        discount_type = fields.get(DISCOUNT_TYPE)
        if discount_type not in (PERCENTAGE, FIXED_AMOUNT):
            logger.warning(f"⚠️ Discount code {code!r} has unknown type {discount_type!r}")
        value = to_money(fields.get(DISCOUNT_VALUE) or 0)
        amount = discount_amount_for(total, discount_type, value)

        logger.info(f"✅ Discount {fields.get(CODE)} valid: -£{amount} on £{total}")
        return DiscountResult(
            record_id=record["id"],
            code=fields.get(CODE, code),
            discount_type=discount_type,
            discount_value=value,
            discount_amount=amount,
            original_price=total,
            final_price=total - amount,
        )

    async def record_use(self, record_id: str) -> None:
        """Bump the usage counter once a booking has been created with the code"""
        record = await self.store.get_record(self.table, record_id)
        times_used = int(record["fields"].get(TIMES_USED) or 0)
        await self.store.update_record(self.table, record_id, {TIMES_USED: times_used + 1})
