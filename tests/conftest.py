"""
Shared fixtures: a throwaway sqlite database per test plus in-memory fakes
for the blob store, the scoring oracle and a photo provider.
"""
import io
from datetime import timedelta
from typing import Awaitable, Callable, Optional

import pytest
from PIL import Image

import vault.models  # noqa: F401
from vault.database import Base, create_engine, create_session_factory
from vault.models.connected_provider import ConnectedProvider
from vault.models.user import User
from vault.services.google_photos import MediaItem, MediaPage, TokenGrant
from vault.services.object_storage import StorageError
from vault.services.providers import ProviderHandlers, ProviderKind, ProviderRegistry
from vault.services.scoring import ScoreResult
from vault.utils.clock import utcnow


def make_image(
    color=(120, 80, 200),
    size=(64, 48),
    fmt: str = "JPEG",
    exif: Optional[Image.Exif] = None,
) -> bytes:
    img = Image.new("RGB", size, color)
    out = io.BytesIO()
    if exif is not None:
        img.save(out, format=fmt, exif=exif.tobytes())
    else:
        img.save(out, format=fmt)
    return out.getvalue()


class FakeStorage:
    """Blob store keeping objects in a dict. ``failures`` are raised by the next uploads."""

    def __init__(self):
        self.objects: dict[str, bytes] = {}
        self.failures: list[Exception] = []
        self.uploads = 0

    async def upload_file(self, file_content: bytes, object_name: str, content_type: str) -> str:
        self.uploads += 1
        if self.failures:
            raise self.failures.pop(0)
        self.objects[object_name] = file_content
        return object_name

    async def download_file(self, object_name: str) -> bytes:
        if object_name not in self.objects:
            raise StorageError(f"{object_name} missing")
        return self.objects[object_name]

    def create_signed_url(self, object_name: str, expires_in: Optional[int] = None) -> str:
        return f"https://blob.example/{object_name}?expires={expires_in}"


class FakeScoring:
    """
    Scoring oracle double.

    ``outcomes`` is consumed one per call: a float (all four sub-scores), a
    ScoreResult, or an exception to raise. When empty, ``default`` is used.
    """

    def __init__(self, default: float = 8.0):
        self.default = default
        self.outcomes: list = []
        self.calls: list[str] = []
        self.on_call: Optional[Callable[[int], Awaitable[None]]] = None

    async def score(self, payload: bytes, file_name: str, media_type: str = "image/jpeg") -> ScoreResult:
        self.calls.append(file_name)
        if self.on_call is not None:
            await self.on_call(len(self.calls))
        outcome = self.outcomes.pop(0) if self.outcomes else self.default
        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, ScoreResult):
            return outcome
        return ScoreResult(outcome, outcome, outcome, outcome, "fake analysis")


class FakeProvider:
    """Paged photo library; page tokens are the index of the page's first item."""

    def __init__(self, items: list[MediaItem]):
        self.items = items
        self.pages_fetched: list[Optional[str]] = []
        self.downloads: list[str] = []
        self.listing_failures: list[Exception] = []
        self.download_failures: dict[str, Exception] = {}
        self.refresh_error: Optional[Exception] = None
        self.refreshes = 0

    async def fetch_page(self, access_token: str, page_token: Optional[str], page_size: Optional[int]) -> MediaPage:
        if self.listing_failures:
            raise self.listing_failures.pop(0)
        self.pages_fetched.append(page_token)
        start = int(page_token or 0)
        end = start + (page_size or 50)
        next_token = str(end) if end < len(self.items) else None
        return MediaPage(items=self.items[start:end], next_page_token=next_token)

    async def download(self, item: MediaItem) -> bytes:
        self.downloads.append(item.external_id)
        if item.external_id in self.download_failures:
            raise self.download_failures[item.external_id]
        index = int(item.external_id.split("-")[1])
        return make_image(color=((index * 23) % 256, 90, 140))

    async def refresh_token(self, refresh_token: Optional[str]) -> TokenGrant:
        self.refreshes += 1
        if self.refresh_error is not None:
            raise self.refresh_error
        return TokenGrant(access_token="fresh-token", expires_at=utcnow() + timedelta(hours=1))

    def registry(self) -> ProviderRegistry:
        return ProviderRegistry(
            {
                ProviderKind.GOOGLE_PHOTOS: ProviderHandlers(
                    fetch_page=self.fetch_page,
                    download=self.download,
                    refresh_token=self.refresh_token,
                )
            }
        )


def media_item(index: int, **overrides) -> MediaItem:
    values = dict(
        external_id=f"item-{index}",
        file_name=f"IMG_{index:04d}.jpg",
        mime_type="image/jpeg",
        base_url=f"https://photos.example/base/{index}",
        product_url=f"https://photos.example/item/{index}",
        width=64,
        height=48,
        created_at=utcnow() - timedelta(days=index + 1),
        camera={"cameraMake": "Canon", "cameraModel": "EOS R5"},
    )
    values.update(overrides)
    return MediaItem(**values)


async def no_sleep(_: float) -> None:
    return None


@pytest.fixture
async def session_factory(tmp_path):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'vault-test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield create_session_factory(engine)
    await engine.dispose()


@pytest.fixture
def user_factory(session_factory):
    async def create(email: Optional[str] = None, is_active: bool = True) -> User:
        async with session_factory() as db:
            user = User(email=email, is_active=is_active)
            db.add(user)
            await db.commit()
            return user

    return create


@pytest.fixture
async def user(user_factory) -> User:
    return await user_factory("owner@example.com")


@pytest.fixture
def connection_factory(session_factory):
    async def create(user_id: int, **overrides) -> ConnectedProvider:
        values = dict(
            user_id=user_id,
            provider=ProviderKind.GOOGLE_PHOTOS.value,
            access_token="stored-token",
            refresh_token="refresh-token",
            token_expiry=utcnow() + timedelta(hours=1),
            sync_enabled=True,
            auto_sync_frequency="daily",
            settings={},
        )
        values.update(overrides)
        async with session_factory() as db:
            connection = ConnectedProvider(**values)
            db.add(connection)
            await db.commit()
            return connection

    return create


@pytest.fixture
def storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def scoring() -> FakeScoring:
    return FakeScoring()


@pytest.fixture
def dispatched():
    """Recording dispatch: job ids land in ``dispatched.ids``."""

    class Recorder:
        def __init__(self):
            self.ids: list[int] = []

        async def __call__(self, job_id: int) -> None:
            self.ids.append(job_id)

    return Recorder()
