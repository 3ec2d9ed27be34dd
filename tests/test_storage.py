import json

import httpx
import pytest

from markeb.errors import UpstreamError
from markeb.services.storage import DropboxClient, DropboxTokenProvider, sanitize_folder_name


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def token_transport(calls: list, expires_in: int = 14400) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={"access_token": f"tok_{len(calls)}", "expires_in": expires_in})

    return httpx.MockTransport(handler)


def provider(transport, clock=None) -> DropboxTokenProvider:
    return DropboxTokenProvider(
        client_id="app_key",
        client_secret="app_secret",
        refresh_token="refresh_1",
        clock=clock or FakeClock(),
        transport=transport,
    )


def test_sanitize_folder_name():
    assert sanitize_folder_name('12 High St: "Flat" 2/B') == "12 High St Flat 2B"
    assert sanitize_folder_name("  a   b ") == "a b"


async def test_token_is_reused_until_near_expiry():
    calls = []
    clock = FakeClock()
    tokens = provider(token_transport(calls), clock)

    assert await tokens.get_token() == "tok_1"
    clock.now += 14400 - 301
    assert await tokens.get_token() == "tok_1"
    clock.now += 2
    assert await tokens.get_token() == "tok_2"
    assert len(calls) == 2
    assert b"grant_type=refresh_token" in calls[0].read()


async def test_token_refresh_failure():
    tokens = provider(httpx.MockTransport(lambda r: httpx.Response(400, json={"error": "invalid_grant"})))
    with pytest.raises(UpstreamError):
        await tokens.get_token()


async def test_unconfigured_provider():
    tokens = DropboxTokenProvider(client_id="", client_secret="", refresh_token="", transport=token_transport([]))
    tokens.client_id = tokens.client_secret = tokens.refresh_token = None
    assert tokens.configured is False
    with pytest.raises(UpstreamError, match="not configured"):
        await tokens.get_token()


async def test_booking_folders_and_shared_link():
    created = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.read() or b"{}")
        if request.url.path.endswith("create_folder_v2"):
            created.append(body["path"])
            if body["path"].endswith("/Photo"):
                return httpx.Response(409, json={"error": {".tag": "path", "path": {".tag": "conflict"}}})
            return httpx.Response(200, json={"metadata": {}})
        if request.url.path.endswith("list_shared_links"):
            return httpx.Response(200, json={"links": []})
        if request.url.path.endswith("create_shared_link_with_settings"):
            return httpx.Response(200, json={"url": "https://www.dropbox.com/sh/abc?dl=0"})
        return httpx.Response(404)

    storage = DropboxClient(provider(token_transport([])), transport=httpx.MockTransport(handler))

    result = await storage.create_booking_folders("12 High Street, Leeds", "Acme Estates", "LS1 4AP")

    assert result["sharedLink"] == "https://www.dropbox.com/sh/abc?dl=1"
    assert result["qcFolder"]["main"] == "/Markeb Media - QC Delivery Link/12 High Street, Leeds, LS1 4AP"
    assert "/Markeb Media Client Folder/Acme Estates/12 High Street, Leeds, LS1 4AP/Drone" in created
    assert len(created) == 9


async def test_folder_error_other_than_conflict():
    storage = DropboxClient(
        provider(token_transport([])),
        transport=httpx.MockTransport(lambda r: httpx.Response(409, json={"error": {".tag": "path", "path": {".tag": "no_write_permission"}}})),
    )
    with pytest.raises(UpstreamError):
        await storage.create_folder("/x")
