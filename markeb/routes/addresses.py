"""UK address lookup proxy.

The booking form lists every address at a postcode. The Ideal Postcodes key
stays on the server, lookups are rate limited per IP, and results are cached
in Redis because a postcode's address list changes very rarely.
"""

import logging
from typing import Optional

import httpx
from fastapi import APIRouter, Depends
from pydantic import BaseModel, field_validator

from ..cache import Cache, address_key, get_cache
from ..config import ADDRESS_CACHE_SECONDS, ADDRESS_LOOKUP_RPM, IDEAL_POSTCODES_API_KEY, LOOKUP_TIMEOUT_SECONDS
from ..errors import UpstreamError
from ..rate_limiter import create_rate_limiter
from ..shared.validators import normalize_uk_postcode

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/addresses", tags=["Addresses"])

rate_limit_lookup = create_rate_limiter(
    limit=ADDRESS_LOOKUP_RPM,
    window_seconds=60,
    key_prefix="address_lookup",
    use_ip=True,
)

IDEAL_POSTCODES_URL = "https://api.ideal-postcodes.co.uk/v1/postcodes"


class AddressLookupRequest(BaseModel):
    postcode: str

    @field_validator("postcode")
    @classmethod
    def validate_postcode(cls, v):
        return normalize_uk_postcode(v)


def _to_address(item: dict) -> dict:
    return {
        "line_1": item.get("line_1") or "",
        "line_2": item.get("line_2") or "",
        "line_3": item.get("line_3") or "",
        "town_or_city": item.get("post_town") or "",
        "county": item.get("county") or "",
        "postcode": item.get("postcode") or "",
    }


class AddressLookupClient:
    def __init__(
        self,
        api_key: Optional[str] = IDEAL_POSTCODES_API_KEY,
        cache: Optional[Cache] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = LOOKUP_TIMEOUT_SECONDS,
    ):
        self.api_key = api_key
        self.cache = cache
        self._transport = transport
        self.timeout = timeout

    async def lookup(self, postcode: str) -> list[dict]:
        key = address_key(postcode)
        if self.cache:
            cached = self.cache.get(key)
            if cached is not None:
                return cached

        if not self.api_key:
            logger.error("❌ IDEAL_POSTCODES_API_KEY not configured")
            raise UpstreamError("Address lookup not configured")

        url = f"{IDEAL_POSTCODES_URL}/{postcode.replace(' ', '')}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(url, params={"api_key": self.api_key})
        except httpx.HTTPError as e:
            logger.error(f"❌ Ideal Postcodes transport error: {e}")
            raise UpstreamError("Failed to fetch addresses") from e

        if response.status_code == 404:
            logger.info(f"📭 No addresses found for {postcode}")
            return []
        if response.status_code >= 400:
            logger.warning(f"Ideal Postcodes error {response.status_code}: {response.text[:200]}")
            raise UpstreamError("Failed to fetch addresses", {"status": response.status_code})

        addresses = [_to_address(item) for item in response.json().get("result") or []]
        logger.info(f"🏠 {len(addresses)} addresses found for {postcode}")
        if self.cache:
            self.cache.set(key, addresses, ADDRESS_CACHE_SECONDS)
        return addresses


def get_address_client(cache: Cache = Depends(get_cache)) -> AddressLookupClient:
    return AddressLookupClient(cache=cache)


@router.post("/lookup")
async def lookup_addresses(
    data: AddressLookupRequest,
    _: None = Depends(rate_limit_lookup),
    client: AddressLookupClient = Depends(get_address_client),
):
    return {"addresses": await client.lookup(data.postcode)}
