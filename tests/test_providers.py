"""
Provider registry tests.
"""
import pytest

from vault.services.providers import ProviderHandlers, ProviderKind, ProviderRegistry


async def fetch_page(access_token, page_token, page_size):
    raise NotImplementedError


async def download(item):
    raise NotImplementedError


def test_every_kind_is_registered():
    registry = ProviderRegistry()
    assert {r.kind for r in registry.all()} == set(ProviderKind)


def test_lookup_by_value():
    registry = ProviderRegistry()
    assert registry.get("google_photos").name == "Google Photos"
    assert registry.get(ProviderKind.DROPBOX).capabilities.max_file_size == 2048 * 1024 * 1024


def test_unknown_provider():
    with pytest.raises(KeyError):
        ProviderRegistry().get("flickr")


def test_direct_and_connectable():
    registry = ProviderRegistry()
    assert [r.kind for r in registry.direct()] == [ProviderKind.MANUAL_UPLOAD]
    assert ProviderKind.MANUAL_UPLOAD not in {r.kind for r in registry.connectable()}


def test_syncable_requires_listing_and_download():
    registry = ProviderRegistry(
        {
            ProviderKind.GOOGLE_PHOTOS: ProviderHandlers(fetch_page=fetch_page, download=download),
            ProviderKind.DROPBOX: ProviderHandlers(fetch_page=fetch_page),
        }
    )
    assert [r.kind for r in registry.syncable()] == [ProviderKind.GOOGLE_PHOTOS]
    assert registry.get(ProviderKind.DROPBOX).syncable is False
    assert ProviderRegistry().syncable() == []
