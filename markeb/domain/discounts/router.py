"""Discount router - code validation for the booking form"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ...rate_limiter import create_rate_limiter
from ...record_store import AirtableClient, get_record_store
from .service import DiscountService, InvalidDiscount

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/discounts", tags=["Discounts"])

discount_limiter = create_rate_limiter(limit=20, window_seconds=60, key_prefix="discount_validate")


class DiscountValidateRequest(BaseModel):
    code: str
    totalPrice: Decimal
    region: Optional[str] = None
    serviceId: Optional[str] = None


def get_discount_service(store: AirtableClient = Depends(get_record_store)) -> DiscountService:
    return DiscountService(store)


@router.post("/validate")
async def validate_discount(
    data: DiscountValidateRequest,
    _: None = Depends(discount_limiter),
    service: DiscountService = Depends(get_discount_service),
):
    """An unusable code is a normal answer for the form, not an HTTP error"""
    try:
        result = await service.validate(
            data.code, data.totalPrice, datetime.now(timezone.utc), data.region, data.serviceId
        )
    except InvalidDiscount as e:
        return {"success": False, "error": e.message}
    return result.as_dict()
