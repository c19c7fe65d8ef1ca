"""
Google Photos Library API client.

Only the calls the sync runner needs: paginated listing of media items,
downloading an item's bytes and refreshing an OAuth2 access token.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import httpx

from vault.config import get_settings
from vault.utils.clock import utcnow
from vault.utils.metrics import record_external_request

logger = logging.getLogger("vault.provider")


class ProviderError(Exception):
    """Provider rejected a request."""


class TransientProviderError(ProviderError):
    """Timeout, transport error, 429 or 5xx; safe to retry."""


class TokenRefreshError(ProviderError):
    """Refresh token was rejected or could not be exchanged."""


@dataclass(frozen=True)
class MediaItem:
    """One photo as listed by the provider."""
    external_id: str
    file_name: str
    mime_type: str
    base_url: str
    product_url: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    created_at: Optional[datetime] = None
    # Camera metadata; absent for screenshots, downloads and edits
    camera: Optional[dict[str, Any]] = None
    location: Optional[dict[str, Any]] = None
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def is_camera_photo(self) -> bool:
        return self.camera is not None


@dataclass(frozen=True)
class MediaPage:
    items: list[MediaItem]
    next_page_token: Optional[str] = None
    # Google does not report library size; other providers may
    total: Optional[int] = None


@dataclass(frozen=True)
class TokenGrant:
    access_token: str
    expires_at: datetime
    refresh_token: Optional[str] = None


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def parse_media_item(data: dict[str, Any]) -> MediaItem:
    metadata = data.get("mediaMetadata") or {}

    def as_int(value: Any) -> Optional[int]:
        try:
            return int(value)
        except (TypeError, ValueError):
            return None

    return MediaItem(
        external_id=str(data["id"]),
        file_name=data.get("filename") or str(data["id"]),
        mime_type=data.get("mimeType") or "image/jpeg",
        base_url=data.get("baseUrl") or "",
        product_url=data.get("productUrl"),
        width=as_int(metadata.get("width")),
        height=as_int(metadata.get("height")),
        created_at=_parse_time(metadata.get("creationTime")),
        camera=metadata.get("photo"),
        location=metadata.get("location"),
        raw=data,
    )


class GooglePhotosClient:
    """
    HTTP client for the Google Photos Library API.

    Each call opens its own ``httpx.AsyncClient``; a transport can be
    injected for tests.
    """

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = get_settings()
        self._transport = transport

    def _client(self, timeout: float = 30.0) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self._transport)

    @staticmethod
    def _raise_for_status(response: httpx.Response, action: str) -> None:
        status_code = response.status_code
        if status_code == 429 or status_code >= 500:
            raise TransientProviderError(f"{action} failed: HTTP {status_code}")
        if status_code >= 300:
            raise ProviderError(f"{action} failed: HTTP {status_code}")

    async def list_media_items(
        self,
        access_token: str,
        page_token: Optional[str] = None,
        page_size: Optional[int] = None,
    ) -> MediaPage:
        """
        Fetch one page of media items.

        Args:
            access_token: OAuth2 bearer token
            page_token: Token of the page to fetch (None for the first page)
            page_size: Items per page (API maximum is 100)

        Returns:
            MediaPage with parsed items and the next page token
        """
        params: dict[str, Any] = {"pageSize": page_size or self.settings.sync_page_size}
        if page_token:
            params["pageToken"] = page_token
        url = f"{self.settings.google_photos_api_base.rstrip('/')}/mediaItems"

        try:
            async with record_external_request("google_photos"):
                async with self._client() as client:
                    response = await client.get(
                        url,
                        params=params,
                        headers={"Authorization": f"Bearer {access_token}"},
                    )
                self._raise_for_status(response, "Media listing")
        except httpx.HTTPError as e:
            raise TransientProviderError("Media listing failed") from e

        data = response.json()
        items = []
        for raw in data.get("mediaItems") or []:
            # Videos have no use here
            if not str(raw.get("mimeType", "image/")).startswith("image/"):
                continue
            items.append(parse_media_item(raw))
        return MediaPage(items=items, next_page_token=data.get("nextPageToken") or None)

    async def download(self, item: MediaItem) -> bytes:
        """Download an item's bytes, scaled to the configured width."""
        url = f"{item.base_url}=w{self.settings.google_download_width}"
        try:
            async with record_external_request("google_photos"):
                async with self._client(timeout=60.0) as client:
                    response = await client.get(url)
                self._raise_for_status(response, "Media download")
        except httpx.HTTPError as e:
            raise TransientProviderError("Media download failed") from e
        return response.content

    async def refresh_access_token(self, refresh_token: Optional[str]) -> TokenGrant:
        """
        Exchange a refresh token for a new access token.

        Raises:
            TokenRefreshError: on any failure (the job cannot continue)
        """
        if not refresh_token:
            raise TokenRefreshError("No refresh token stored")
        body = {
            "refresh_token": refresh_token,
            "client_id": self.settings.google_client_id,
            "client_secret": self.settings.google_client_secret,
            "grant_type": "refresh_token",
        }
        try:
            async with record_external_request("google_oauth"):
                async with self._client() as client:
                    response = await client.post(self.settings.google_token_url, data=body)
        except httpx.HTTPError as e:
            raise TokenRefreshError("Token refresh request failed") from e

        if response.status_code != 200:
            raise TokenRefreshError(f"Token refresh rejected: HTTP {response.status_code}")
        try:
            data = response.json()
            access_token = data["access_token"]
            expires_in = int(data.get("expires_in", 3600))
        except (ValueError, KeyError, TypeError) as e:
            raise TokenRefreshError("Token refresh response malformed") from e

        return TokenGrant(
            access_token=access_token,
            expires_at=utcnow() + timedelta(seconds=expires_in),
            refresh_token=data.get("refresh_token"),
        )


# Singleton instance
_google_photos_client: Optional[GooglePhotosClient] = None


def get_google_photos_client() -> GooglePhotosClient:
    """Get the singleton Google Photos client."""
    global _google_photos_client
    if _google_photos_client is None:
        _google_photos_client = GooglePhotosClient()
    return _google_photos_client
