"""
Google Photos client tests against a mocked transport.
"""
import httpx
import pytest

from vault.services.google_photos import (
    GooglePhotosClient,
    ProviderError,
    TokenRefreshError,
    TransientProviderError,
    parse_media_item,
)

ITEM = {
    "id": "abc",
    "filename": "IMG_0001.jpg",
    "mimeType": "image/jpeg",
    "baseUrl": "https://lh3.example/abc",
    "productUrl": "https://photos.example/abc",
    "mediaMetadata": {
        "creationTime": "2024-05-01T10:00:00Z",
        "width": "4032",
        "height": "3024",
        "photo": {"cameraMake": "Apple", "cameraModel": "iPhone 15"},
    },
}


def client_for(handler) -> GooglePhotosClient:
    return GooglePhotosClient(transport=httpx.MockTransport(handler))


def test_parse_media_item():
    item = parse_media_item(ITEM)
    assert item.external_id == "abc"
    assert (item.width, item.height) == (4032, 3024)
    assert item.created_at.year == 2024 and item.created_at.tzinfo is None
    assert item.is_camera_photo


def test_location_is_kept():
    metadata = {**ITEM["mediaMetadata"], "location": {"latitude": 48.85, "longitude": 2.35}}
    item = parse_media_item({**ITEM, "mediaMetadata": metadata})
    assert item.location == {"latitude": 48.85, "longitude": 2.35}
    assert parse_media_item(ITEM).location is None


def test_item_without_camera_metadata():
    item = parse_media_item({"id": "x", "mediaMetadata": {}})
    assert item.file_name == "x"
    assert item.is_camera_photo is False
    assert item.created_at is None


async def test_listing_skips_videos_and_passes_token():
    seen = {}

    def handler(request):
        seen["params"] = dict(request.url.params)
        seen["auth"] = request.headers["Authorization"]
        video = {**ITEM, "id": "vid", "mimeType": "video/mp4"}
        return httpx.Response(200, json={"mediaItems": [ITEM, video], "nextPageToken": "next"})

    page = await client_for(handler).list_media_items("token", page_token="p2", page_size=25)

    assert [i.external_id for i in page.items] == ["abc"]
    assert page.next_page_token == "next"
    assert seen["params"] == {"pageSize": "25", "pageToken": "p2"}
    assert seen["auth"] == "Bearer token"


async def test_last_page_has_no_token():
    page = await client_for(lambda request: httpx.Response(200, json={})).list_media_items("token")
    assert page.items == []
    assert page.next_page_token is None


@pytest.mark.parametrize("status,error", [(429, TransientProviderError), (503, TransientProviderError), (403, ProviderError)])
async def test_listing_errors(status, error):
    with pytest.raises(error):
        await client_for(lambda request: httpx.Response(status)).list_media_items("token")


async def test_download_requests_sized_image():
    urls = []

    def handler(request):
        urls.append(str(request.url))
        return httpx.Response(200, content=b"bytes")

    client = client_for(handler)
    data = await client.download(parse_media_item(ITEM))

    assert data == b"bytes"
    assert urls == [f"https://lh3.example/abc=w{client.settings.google_download_width}"]


async def test_refresh_token():
    def handler(request):
        return httpx.Response(200, json={"access_token": "new", "expires_in": 1800})

    grant = await client_for(handler).refresh_access_token("refresh")

    assert grant.access_token == "new"
    assert grant.refresh_token is None


async def test_refresh_rejected():
    with pytest.raises(TokenRefreshError):
        await client_for(lambda request: httpx.Response(400, json={"error": "invalid_grant"})).refresh_access_token("r")


async def test_refresh_without_token():
    with pytest.raises(TokenRefreshError):
        await client_for(lambda request: httpx.Response(200)).refresh_access_token(None)
