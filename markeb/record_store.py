"""
Airtable record store client.

All business records (bookings, users, discount codes) live in Airtable and are
reached over its REST API. This module owns the HTTP details; repositories
build on top of it and never see raw responses.

Filter formulas are built with the helpers below so that customer input
(emails, booking references) is always quoted and cannot change the formula.
"""

import logging
from typing import Any, Optional
from urllib.parse import quote

import httpx

from .config import (
    AIRTABLE_API_KEY,
    AIRTABLE_API_URL,
    AIRTABLE_BASE_ID,
    AIRTABLE_TIMEOUT_SECONDS,
)
from .errors import RecordNotFound, UpstreamError

logger = logging.getLogger(__name__)

Record = dict[str, Any]


# ============================================================================
# FORMULA HELPERS
# ============================================================================


def quote_value(value: Any) -> str:
    """Render a value as an Airtable formula string literal"""
    text = str(value).replace("\\", "\\\\").replace("'", "\\'")
    return f"'{text}'"


def field_equals(field: str, value: Any) -> str:
    return f"{{{field}}} = {quote_value(value)}"


def field_not_equals(field: str, value: Any) -> str:
    return f"{{{field}}} != {quote_value(value)}"


def lower_equals(field: str, value: str) -> str:
    """Case-insensitive equality, used for email lookups"""
    return f"LOWER({{{field}}}) = {quote_value(value.strip().lower())}"


def upper_equals(field: str, value: str) -> str:
    """Case-insensitive equality, used for discount codes"""
    return f"UPPER({{{field}}}) = {quote_value(value.strip().upper())}"


def all_of(*conditions: str) -> str:
    conditions = tuple(c for c in conditions if c)
    if len(conditions) == 1:
        return conditions[0]
    return f"AND({', '.join(conditions)})"


def any_of(*conditions: str) -> str:
    conditions = tuple(c for c in conditions if c)
    if len(conditions) == 1:
        return conditions[0]
    return f"OR({', '.join(conditions)})"


def date_on_or_after(field: str, value: str) -> str:
    return f"NOT(IS_BEFORE({{{field}}}, {quote_value(value)}))"


def date_on_or_before(field: str, value: str) -> str:
    return f"NOT(IS_AFTER({{{field}}}, {quote_value(value)}))"


# ============================================================================
# CLIENT
# ============================================================================


class AirtableClient:
    """Thin async wrapper around the Airtable REST API"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_id: Optional[str] = None,
        base_url: str = AIRTABLE_API_URL,
        timeout: float = AIRTABLE_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key or AIRTABLE_API_KEY
        self.base_id = base_id or AIRTABLE_BASE_ID
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    def _table_url(self, table: str, record_id: Optional[str] = None) -> str:
        url = f"{self.base_url}/{self.base_id}/{quote(table, safe='')}"
        if record_id:
            url = f"{url}/{record_id}"
        return url

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            transport=self._transport,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
        )

    @staticmethod
    def _raise_for_status(response: httpx.Response, action: str) -> None:
        if response.status_code < 400:
            return
        logger.error(f"❌ Airtable {action} failed: HTTP {response.status_code} {response.text[:300]}")
        raise UpstreamError(f"Record store error during {action}", {"status": response.status_code})

    async def list_records(
        self,
        table: str,
        formula: Optional[str] = None,
        max_records: Optional[int] = None,
        sort: Optional[list[tuple[str, str]]] = None,
    ) -> list[Record]:
        """Fetch every record matching the formula, following pagination"""
        params: list[tuple[str, str]] = []
        if formula:
            params.append(("filterByFormula", formula))
        if max_records:
            params.append(("maxRecords", str(max_records)))
        for index, (field, direction) in enumerate(sort or []):
            params.append((f"sort[{index}][field]", field))
            params.append((f"sort[{index}][direction]", direction))

        records: list[Record] = []
        offset: Optional[str] = None

        try:
            async with self._client() as client:
                while True:
                    page_params = params + ([("offset", offset)] if offset else [])
                    response = await client.get(self._table_url(table), params=page_params)
                    self._raise_for_status(response, f"list {table}")
                    data = response.json()
                    records.extend(data.get("records", []))
                    offset = data.get("offset")
                    if not offset or (max_records and len(records) >= max_records):
                        break
        except httpx.HTTPError as e:
            logger.error(f"❌ Airtable list {table} transport error: {e}")
            raise UpstreamError("Record store unavailable") from e

        return records[:max_records] if max_records else records

    async def first(self, table: str, formula: str) -> Optional[Record]:
        records = await self.list_records(table, formula=formula, max_records=1)
        return records[0] if records else None

    async def get_record(self, table: str, record_id: str) -> Record:
        try:
            async with self._client() as client:
                response = await client.get(self._table_url(table, record_id))
        except httpx.HTTPError as e:
            logger.error(f"❌ Airtable get {table}/{record_id} transport error: {e}")
            raise UpstreamError("Record store unavailable") from e

        if response.status_code == 404:
            raise RecordNotFound("Record not found", {"recordId": record_id})
        self._raise_for_status(response, f"get {table}")
        return response.json()

    async def create_record(self, table: str, fields: dict[str, Any]) -> Record:
        try:
            async with self._client() as client:
                response = await client.post(
                    self._table_url(table), json={"fields": fields, "typecast": True}
                )
        except httpx.HTTPError as e:
            logger.error(f"❌ Airtable create in {table} transport error: {e}")
            raise UpstreamError("Record store unavailable") from e

        self._raise_for_status(response, f"create {table}")
        record = response.json()
        logger.info(f"✅ Created {table} record {record.get('id')}")
        return record

    async def update_record(self, table: str, record_id: str, fields: dict[str, Any]) -> Record:
        try:
            async with self._client() as client:
                response = await client.patch(
                    self._table_url(table, record_id), json={"fields": fields, "typecast": True}
                )
        except httpx.HTTPError as e:
            logger.error(f"❌ Airtable update {table}/{record_id} transport error: {e}")
            raise UpstreamError("Record store unavailable") from e

        if response.status_code == 404:
            raise RecordNotFound("Record not found", {"recordId": record_id})
        self._raise_for_status(response, f"update {table}")
        return response.json()


_default_client: Optional[AirtableClient] = None


def get_record_store() -> AirtableClient:
    """FastAPI dependency returning the process-wide Airtable client"""
    global _default_client
    if _default_client is None:
        _default_client = AirtableClient()
    return _default_client
