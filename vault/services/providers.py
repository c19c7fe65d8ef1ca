"""
Photo source provider registry.

A closed set of provider kinds, each registered with a capability record
and the typed handlers it actually implements. Handlers are bound when the
registry is built; callers check ``registration.syncable`` instead of
probing for attributes.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional

from vault.services.google_photos import (
    GooglePhotosClient,
    MediaItem,
    MediaPage,
    TokenGrant,
    get_google_photos_client,
)

MB = 1024 * 1024

FetchPage = Callable[[str, Optional[str], Optional[int]], Awaitable[MediaPage]]
Download = Callable[[MediaItem], Awaitable[bytes]]
RefreshToken = Callable[[Optional[str]], Awaitable[TokenGrant]]


class ProviderKind(str, Enum):
    MANUAL_UPLOAD = "manual_upload"
    GOOGLE_PHOTOS = "google_photos"
    INSTAGRAM = "instagram"
    APPLE_PHOTOS = "apple_photos"
    DROPBOX = "dropbox"
    ADOBE_LIGHTROOM = "adobe_lightroom"
    ICLOUD = "icloud"


@dataclass(frozen=True)
class ProviderCapabilities:
    can_read: bool
    can_write: bool
    has_metadata: bool
    has_location: bool
    has_camera_data: bool
    supports_albums: bool
    requires_auth: bool
    max_file_size: int
    supported_formats: tuple[str, ...]
    # Requests per hour; None means unlimited
    rate_limit: Optional[int] = None


@dataclass(frozen=True)
class ProviderHandlers:
    fetch_page: Optional[FetchPage] = None
    download: Optional[Download] = None
    refresh_token: Optional[RefreshToken] = None


@dataclass(frozen=True)
class ProviderRegistration:
    kind: ProviderKind
    name: str
    description: str
    capabilities: ProviderCapabilities
    handlers: ProviderHandlers = ProviderHandlers()

    @property
    def syncable(self) -> bool:
        return self.handlers.fetch_page is not None and self.handlers.download is not None


_CAPABILITIES: dict[ProviderKind, tuple[str, str, ProviderCapabilities]] = {
    ProviderKind.MANUAL_UPLOAD: (
        "Manual Upload",
        "Upload photos directly from your device",
        ProviderCapabilities(
            can_read=True, can_write=False, has_metadata=True, has_location=True,
            has_camera_data=True, supports_albums=False, requires_auth=False,
            max_file_size=50 * MB,
            supported_formats=("image/jpeg", "image/jpg", "image/png", "image/heic", "image/webp"),
        ),
    ),
    ProviderKind.GOOGLE_PHOTOS: (
        "Google Photos",
        "Import from your Google Photos library",
        ProviderCapabilities(
            can_read=True, can_write=False, has_metadata=True, has_location=True,
            has_camera_data=True, supports_albums=True, requires_auth=True,
            max_file_size=200 * MB, rate_limit=10000,
            supported_formats=("image/jpeg", "image/png", "image/gif", "image/bmp", "image/webp"),
        ),
    ),
    ProviderKind.INSTAGRAM: (
        "Instagram",
        "Import from your Instagram account",
        ProviderCapabilities(
            can_read=True, can_write=True, has_metadata=False, has_location=False,
            has_camera_data=False, supports_albums=True, requires_auth=True,
            max_file_size=100 * MB, rate_limit=5000,
            supported_formats=("image/jpeg", "image/png"),
        ),
    ),
    ProviderKind.APPLE_PHOTOS: (
        "Apple Photos",
        "Import from Apple Photos (iCloud)",
        ProviderCapabilities(
            can_read=True, can_write=False, has_metadata=True, has_location=True,
            has_camera_data=True, supports_albums=True, requires_auth=True,
            max_file_size=200 * MB, rate_limit=10000,
            supported_formats=("image/jpeg", "image/png", "image/heic"),
        ),
    ),
    ProviderKind.DROPBOX: (
        "Dropbox",
        "Import from your Dropbox folders",
        ProviderCapabilities(
            can_read=True, can_write=False, has_metadata=False, has_location=False,
            has_camera_data=False, supports_albums=False, requires_auth=True,
            max_file_size=2048 * MB, rate_limit=10000,
            supported_formats=("image/jpeg", "image/png", "image/gif", "image/bmp", "image/tiff"),
        ),
    ),
    ProviderKind.ADOBE_LIGHTROOM: (
        "Adobe Lightroom",
        "Import from Adobe Lightroom Cloud",
        ProviderCapabilities(
            can_read=True, can_write=False, has_metadata=True, has_location=True,
            has_camera_data=True, supports_albums=True, requires_auth=True,
            max_file_size=500 * MB, rate_limit=5000,
            supported_formats=("image/jpeg", "image/png", "image/dng", "image/tiff"),
        ),
    ),
    ProviderKind.ICLOUD: (
        "iCloud Photos",
        "Import from iCloud Photo Library",
        ProviderCapabilities(
            can_read=True, can_write=False, has_metadata=True, has_location=True,
            has_camera_data=True, supports_albums=True, requires_auth=True,
            max_file_size=200 * MB, rate_limit=10000,
            supported_formats=("image/jpeg", "image/png", "image/heic"),
        ),
    ),
}


class ProviderRegistry:
    """Lookup over every provider kind. Built once with its handlers bound."""

    def __init__(self, handlers: Optional[dict[ProviderKind, ProviderHandlers]] = None):
        handlers = handlers or {}
        self._registrations: dict[ProviderKind, ProviderRegistration] = {}
        for kind in ProviderKind:
            name, description, capabilities = _CAPABILITIES[kind]
            self._registrations[kind] = ProviderRegistration(
                kind=kind,
                name=name,
                description=description,
                capabilities=capabilities,
                handlers=handlers.get(kind, ProviderHandlers()),
            )

    def get(self, kind: ProviderKind | str) -> ProviderRegistration:
        """Raises KeyError for names outside ProviderKind."""
        try:
            return self._registrations[ProviderKind(kind)]
        except ValueError:
            raise KeyError(f"Provider {kind} not found")

    def all(self) -> list[ProviderRegistration]:
        return list(self._registrations.values())

    def connectable(self) -> list[ProviderRegistration]:
        return [r for r in self.all() if r.capabilities.requires_auth]

    def direct(self) -> list[ProviderRegistration]:
        return [r for r in self.all() if not r.capabilities.requires_auth]

    def syncable(self) -> list[ProviderRegistration]:
        return [r for r in self.all() if r.syncable]


def google_photos_handlers(client: GooglePhotosClient) -> ProviderHandlers:
    return ProviderHandlers(
        fetch_page=client.list_media_items,
        download=client.download,
        refresh_token=client.refresh_access_token,
    )


# Singleton instance
_registry: Optional[ProviderRegistry] = None


def get_provider_registry() -> ProviderRegistry:
    """Get the singleton registry with the production handlers bound."""
    global _registry
    if _registry is None:
        _registry = ProviderRegistry(
            {ProviderKind.GOOGLE_PHOTOS: google_photos_handlers(get_google_photos_client())}
        )
    return _registry
