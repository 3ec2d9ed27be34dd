from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from markeb.domain.discounts.service import DiscountService, InvalidDiscount
from markeb.errors import ValidationFailed

NOW = datetime(2025, 6, 1, 10, 0, tzinfo=timezone.utc)


def code_record(**overrides) -> dict:
    fields = {
        "Code": "SPRING10",
        "Status": "Active",
        "Discount Type": "Percentage",
        "Discount Value": 10,
        "Valid From": "2025-05-01",
        "Valid Until": "2025-06-30",
        "Max Uses": 50,
        "Times Used": 3,
    }
    fields.update(overrides)
    return {"id": "recCode1", "fields": fields}


@pytest.fixture
def store():
    store = AsyncMock()
    store.first.return_value = code_record()
    return store


async def test_valid_percentage_code(store):
    result = await DiscountService(store, table="Discount Codes").validate("spring10", Decimal("120"), NOW)

    assert result.discount_amount == Decimal("12.00")
    assert result.final_price == Decimal("108.00")
    assert result.as_dict()["finalPrice"] == 108.0
    formula = store.first.call_args.args[1]
    assert "UPPER({Code}) = 'SPRING10'" in formula


async def test_unknown_code(store):
    store.first.return_value = None
    with pytest.raises(InvalidDiscount, match="Invalid or expired"):
        await DiscountService(store).validate("NOPE", 120, NOW)


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"Valid From": "2025-07-01"}, "not yet active"),
        ({"Valid Until": "2025-05-31"}, "expired"),
        ({"Times Used": 50}, "usage limit"),
        ({"Min Purchase": 200}, "Minimum purchase"),
        ({"Applicable Regions": "Scotland, Wales"}, "region"),
        ({"Applicable Services": ["premium"]}, "selected service"),
    ],
)
async def test_code_restrictions(store, overrides, message):
    store.first.return_value = code_record(**overrides)
    with pytest.raises(InvalidDiscount, match=message):
        await DiscountService(store).validate("SPRING10", 120, NOW, region="Yorkshire", service_id="essentials")


async def test_fixed_amount_code(store):
    store.first.return_value = code_record(**{"Discount Type": "Fixed Amount", "Discount Value": 25})
    result = await DiscountService(store).validate("SPRING10", 120, NOW)
    assert result.final_price == Decimal("95.00")


async def test_code_and_price_are_required(store):
    with pytest.raises(ValidationFailed):
        await DiscountService(store).validate("", 120, NOW)


async def test_record_use_increments_counter(store):
    store.get_record.return_value = code_record()
    service = DiscountService(store, table="Discount Codes")
    result = await service.validate("SPRING10", 120, NOW)

    await service.record_use(result.record_id)

    store.update_record.assert_awaited_once_with("Discount Codes", "recCode1", {"Times Used": 4})
