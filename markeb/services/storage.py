"""
Dropbox storage - delivery and raw-footage folders for each booking.

Two trees are created per property:

    /Markeb Media - QC Delivery Link/<address>/{Photo,Video}      shared with the client
    /Markeb Media Client Folder/<company>/<address>/...           internal working folders
"""

import asyncio
import logging
import re
import time
from typing import Callable, Optional

import httpx

from ..config import (
    DROPBOX_CLIENT_ID,
    DROPBOX_CLIENT_SECRET,
    DROPBOX_REFRESH_TOKEN,
    DROPBOX_TIMEOUT_SECONDS,
)
from ..errors import UpstreamError

logger = logging.getLogger(__name__)

TOKEN_URL = "https://api.dropbox.com/oauth2/token"
API_URL = "https://api.dropboxapi.com/2"
REFRESH_MARGIN_SECONDS = 300

QC_ROOT = "/Markeb Media - QC Delivery Link"
RAW_ROOT = "/Markeb Media Client Folder"

_UNSAFE_PATH_CHARS = re.compile(r'[<>:"/\\|?*]')


def sanitize_folder_name(name: str) -> str:
    """Strip characters Dropbox rejects in a path segment and collapse whitespace"""
    cleaned = _UNSAFE_PATH_CHARS.sub("", name or "")
    return re.sub(r"\s+", " ", cleaned).strip()


class DropboxTokenProvider:
    """
    Short-lived access tokens from a long-lived refresh token.

    The token is refreshed five minutes before Dropbox says it expires. The
    clock is injectable so expiry can be tested without waiting.
    """

    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        refresh_token: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = DROPBOX_TIMEOUT_SECONDS,
    ):
        self.client_id = client_id or DROPBOX_CLIENT_ID
        self.client_secret = client_secret or DROPBOX_CLIENT_SECRET
        self.refresh_token = refresh_token or DROPBOX_REFRESH_TOKEN
        self.clock = clock
        self.timeout = timeout
        self._transport = transport
        self._token: Optional[str] = None
        self._expires_at = 0.0
        self._lock = asyncio.Lock()

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret and self.refresh_token)

    def is_valid(self) -> bool:
        return self._token is not None and self.clock() < self._expires_at

    async def get_token(self) -> str:
        if self.is_valid():
            return self._token
        async with self._lock:
            if not self.is_valid():
                await self._refresh()
        return self._token

    async def _refresh(self) -> None:
        if not self.configured:
            raise UpstreamError("Dropbox credentials not configured")

        data = {
            "grant_type": "refresh_token",
            "refresh_token": self.refresh_token,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(TOKEN_URL, data=data)
        except httpx.HTTPError as e:
            logger.error(f"❌ Dropbox token refresh transport error: {e}")
            raise UpstreamError("Storage provider unavailable") from e

        if response.status_code != 200:
            logger.error(f"❌ Dropbox token refresh failed: {response.status_code} {response.text[:200]}")
            raise UpstreamError("Failed to refresh storage token")

        payload = response.json()
        self._token = payload["access_token"]
        self._expires_at = self.clock() + payload.get("expires_in", 14400) - REFRESH_MARGIN_SECONDS
        logger.info("✅ Dropbox access token refreshed")


class DropboxClient:
    def __init__(
        self,
        token_provider: DropboxTokenProvider,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = DROPBOX_TIMEOUT_SECONDS,
    ):
        self.tokens = token_provider
        self._transport = transport
        self.timeout = timeout

    async def _post(self, endpoint: str, body: dict) -> httpx.Response:
        token = await self.tokens.get_token()
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                return await client.post(
                    f"{API_URL}/{endpoint}",
                    json=body,
                    headers={"Authorization": f"Bearer {token}"},
                )
        except httpx.HTTPError as e:
            logger.error(f"❌ Dropbox {endpoint} transport error: {e}")
            raise UpstreamError("Storage provider unavailable") from e

    async def create_folder(self, path: str) -> bool:
        """Create a folder; returns False when it already existed"""
        response = await self._post("files/create_folder_v2", {"path": path, "autorename": False})
        if response.status_code == 200:
            logger.info(f"📁 Created Dropbox folder: {path}")
            return True

        if response.status_code == 409:
            error = response.json().get("error", {})
            if error.get(".tag") == "path" and error.get("path", {}).get(".tag") == "conflict":
                logger.info(f"📁 Folder already exists: {path}")
                return False

        logger.error(f"❌ Failed to create folder {path}: {response.text[:200]}")
        raise UpstreamError("Failed to create storage folder", {"path": path})

    async def create_shared_link(self, path: str) -> str:
        """Public download link for a folder, reusing an existing link"""
        response = await self._post("sharing/list_shared_links", {"path": path, "direct_only": True})
        if response.status_code == 200:
            links = response.json().get("links", [])
            if links:
                return links[0]["url"].replace("dl=0", "dl=1")

        response = await self._post(
            "sharing/create_shared_link_with_settings",
            {
                "path": path,
                "settings": {"requested_visibility": "public", "audience": "public", "access": "viewer"},
            },
        )
        if response.status_code != 200:
            logger.error(f"❌ Failed to create shared link for {path}: {response.text[:200]}")
            raise UpstreamError("Failed to create shared link", {"path": path})

        logger.info(f"🔗 Created shared link for: {path}")
        return response.json()["url"].replace("dl=0", "dl=1")

    async def create_booking_folders(self, property_address: str, company: str, postcode: str = "") -> dict:
        full_address = sanitize_folder_name(f"{property_address}, {postcode}" if postcode else property_address)
        company = sanitize_folder_name(company) or "Unknown Company"

        qc_main = f"{QC_ROOT}/{full_address}"
        qc = {"main": qc_main, "photo": f"{qc_main}/Photo", "video": f"{qc_main}/Video"}
        for path in qc.values():
            await self.create_folder(path)
        shared_link = await self.create_shared_link(qc_main)

        company_folder = f"{RAW_ROOT}/{company}"
        property_folder = f"{company_folder}/{full_address}"
        raw = {
            "company": company_folder,
            "property": property_folder,
            "drone": f"{property_folder}/Drone",
            "outsourcePhoto": f"{property_folder}/Outsource Photo - {full_address}",
            "outsourceVideo": f"{property_folder}/Outsource Video - {full_address}",
            "rawClips": f"{property_folder}/Raw Clips",
        }
        for path in raw.values():
            await self.create_folder(path)

        logger.info(f"✅ Booking folders ready for {full_address}")
        return {"qcFolder": qc, "rawFolder": raw, "sharedLink": shared_link}


_storage: Optional[DropboxClient] = None


def get_storage() -> DropboxClient:
    global _storage
    if _storage is None:
        _storage = DropboxClient(DropboxTokenProvider())
    return _storage
