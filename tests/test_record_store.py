import httpx
import pytest

from markeb.domain.bookings.repository import BookingRepository
from markeb.errors import RecordNotFound, UpstreamError
from markeb.record_store import (
    AirtableClient,
    all_of,
    field_equals,
    lower_equals,
    quote_value,
    upper_equals,
)


def make_client(handler) -> AirtableClient:
    return AirtableClient(
        api_key="key_test",
        base_id="appTEST",
        base_url="https://api.airtable.test/v0",
        transport=httpx.MockTransport(handler),
    )


def test_quote_value_escapes_quotes_and_backslashes():
    assert quote_value("O'Brien") == "'O\\'Brien'"
    assert quote_value("a\\b") == "'a\\\\b'"


def test_injected_formula_stays_inside_the_literal():
    formula = field_equals("Booking Reference", "x' , TRUE()) & ('")
    assert formula == "{Booking Reference} = 'x\\' , TRUE()) & (\\''"


def test_case_insensitive_helpers():
    assert lower_equals("Client Email", " Sam@Agency.co.uk ") == "LOWER({Client Email}) = 'sam@agency.co.uk'"
    assert upper_equals("Code", "spring10") == "UPPER({Code}) = 'SPRING10'"


def test_all_of_drops_empty_conditions():
    assert all_of("A", "") == "A"
    assert all_of("A", "B") == "AND(A, B)"


async def test_list_records_follows_offset_pages():
    seen_offsets = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["Authorization"] == "Bearer key_test"
        offset = request.url.params.get("offset")
        seen_offsets.append(offset)
        if offset is None:
            return httpx.Response(200, json={"records": [{"id": "rec1"}], "offset": "page2"})
        return httpx.Response(200, json={"records": [{"id": "rec2"}]})

    records = await make_client(handler).list_records("Bookings", formula="{Date} = '2025-06-10'")

    assert [r["id"] for r in records] == ["rec1", "rec2"]
    assert seen_offsets == [None, "page2"]


async def test_list_records_sends_formula_and_sort():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["params"] = request.url.params
        captured["path"] = request.url.path
        return httpx.Response(200, json={"records": []})

    await make_client(handler).list_records("Bookings", formula="X", sort=[("Date", "desc")])

    assert captured["path"] == "/v0/appTEST/Bookings"
    assert captured["params"]["filterByFormula"] == "X"
    assert captured["params"]["sort[0][field]"] == "Date"
    assert captured["params"]["sort[0][direction]"] == "desc"


async def test_get_record_404_is_not_found():
    client = make_client(lambda request: httpx.Response(404, json={"error": "NOT_FOUND"}))
    with pytest.raises(RecordNotFound):
        await client.get_record("Bookings", "recMissing")


async def test_server_error_is_upstream_error():
    client = make_client(lambda request: httpx.Response(503, text="unavailable"))
    with pytest.raises(UpstreamError) as exc:
        await client.list_records("Bookings")
    assert exc.value.status_code == 500


async def test_transport_failure_is_upstream_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(UpstreamError, match="unavailable"):
        await make_client(handler).create_record("Bookings", {"Date": "2025-06-10"})


async def test_update_sends_typecast_patch():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["method"] = request.method
        captured["body"] = request.read()
        return httpx.Response(200, json={"id": "rec1", "fields": {"Booking Status": "Cancelled"}})

    record = await make_client(handler).update_record("Bookings", "rec1", {"Booking Status": "Cancelled"})

    assert captured["method"] == "PATCH"
    assert b'"typecast":true' in captured["body"].replace(b" ", b"")
    assert record["fields"]["Booking Status"] == "Cancelled"


async def test_repository_lookup_by_reference_and_email():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["formula"] = request.url.params["filterByFormula"]
        return httpx.Response(
            200,
            json={"records": [{"id": "rec1", "fields": {"Booking Reference": "BK-1001", "Date": "2025-06-10"}}]},
        )

    repo = BookingRepository(make_client(handler), table="Bookings")
    booking = await repo.find_by_reference("BK-1001", "Sam@Agency.co.uk")

    assert booking.record_id == "rec1"
    assert captured["formula"] == (
        "AND({Booking Reference} = 'BK-1001', LOWER({Client Email}) = 'sam@agency.co.uk')"
    )


async def test_repository_day_listing_drops_legacy_cancelled_rows():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "records": [
                    {"id": "rec1", "fields": {"Date": "2025-06-10", "Booking Status": "Confirmed"}},
                    {"id": "rec2", "fields": {"Date": "2025-06-10", "Booking Status": "Booked", "Status": "Cancelled"}},
                ]
            },
        )

    bookings = await BookingRepository(make_client(handler), table="Bookings").list_for_date("2025-06-10")

    assert [b.record_id for b in bookings] == ["rec1"]


async def test_repository_admin_search_formula():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["params"] = request.url.params
        return httpx.Response(200, json={"records": [{"id": "rec1", "fields": {"Date": "2025-06-10"}}]})

    repo = BookingRepository(make_client(handler), table="Bookings")
    bookings = await repo.search(
        start_date="2025-06-01", end_date="2025-06-30", region="Yorkshire", payment_status="Reserved"
    )

    assert [b.record_id for b in bookings] == ["rec1"]
    assert captured["params"]["filterByFormula"] == (
        "AND(NOT(IS_BEFORE({Date}, '2025-06-01')), NOT(IS_AFTER({Date}, '2025-06-30')), "
        "{Region} = 'Yorkshire', "
        "OR({Payment Status} = 'Reserved', {Payment Status} = 'Pending', {Payment Status} = BLANK()))"
    )
    assert captured["params"]["sort[1][field]"] == "Time"


async def test_repository_admin_search_without_filters():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["params"] = request.url.params
        return httpx.Response(200, json={"records": []})

    await BookingRepository(make_client(handler), table="Bookings").search(status="Cancelled")
    assert captured["params"]["filterByFormula"] == "{Booking Status} = 'Cancelled'"

    await BookingRepository(make_client(handler), table="Bookings").search()
    assert "filterByFormula" not in captured["params"]


async def test_repository_specialist_listing():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["formula"] = request.url.params["filterByFormula"]
        return httpx.Response(200, json={"records": []})

    await BookingRepository(make_client(handler), table="Bookings").list_for_specialist("Jodie")

    assert captured["formula"] == "{Media Specialist} = 'Jodie'"
