"""
HTTP layer tests: routing, auth guards and error mapping.
"""
import asyncio

import httpx
import pytest

from conftest import FakeScoring, FakeStorage, make_image, no_sleep
from vault.database import get_db
from vault.dependencies.auth import get_current_active_user
from vault.main import app
from vault.models.photo import Photo
from vault.models.sync_job import SyncJob, SyncJobStatus
from vault.services.scoring import PhotoTier
from vault.services.sync_job import get_sync_dispatcher
from vault.services.upload_orchestrator import UploadManager, get_upload_manager
from vault.utils.metrics import ready


class RecordingDispatcher:
    active = 0

    def __init__(self):
        self.ids = []

    async def dispatch(self, job_id):
        self.ids.append(job_id)


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def upload_scoring():
    return FakeScoring()


@pytest.fixture
def upload_manager(session_factory, upload_scoring):
    return UploadManager(
        session_factory,
        storage=FakeStorage(),
        scoring=upload_scoring,
        batch_size=1,
        inter_batch_delay=0,
        sleep=no_sleep,
    )


@pytest.fixture
async def client(session_factory, user, dispatcher, upload_manager):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def override_user():
        return user

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_active_user] = override_user
    app.dependency_overrides[get_sync_dispatcher] = lambda: dispatcher
    app.dependency_overrides[get_upload_manager] = lambda: upload_manager
    ready.set(1)
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()
    ready.set(0)


async def test_root(client):
    response = await client.get("/")
    assert response.status_code == 200
    assert response.json()["docs"] == "/docs"


async def test_liveness(client):
    response = await client.get("/health/liveness")
    assert response.status_code == 200
    assert response.json() == {"status": "alive"}


async def test_health_fails_while_shutting_down(client):
    ready.set(0)
    response = await client.get("/health")
    assert response.status_code == 503
    assert (await client.get("/health/liveness")).status_code == 503


async def test_requests_get_request_id(client):
    response = await client.get("/providers", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"


async def test_providers(client):
    response = await client.get("/providers")

    assert response.status_code == 200
    providers = {p["id"]: p for p in response.json()}
    assert len(providers) == 7
    assert providers["google_photos"]["syncable"] is True
    assert providers["manual_upload"]["capabilities"]["requires_auth"] is False
    assert providers["instagram"]["syncable"] is False


async def test_auto_sync_requires_secret(client):
    response = await client.post("/sync-jobs/auto-sync")
    assert response.status_code == 401

    response = await client.post("/sync-jobs/auto-sync", headers={"X-Scheduler-Secret": "guess"})
    assert response.status_code == 401


async def test_sync_job_not_found(client):
    response = await client.get("/sync-jobs/999")
    assert response.status_code == 404


async def test_create_sync_job_for_unknown_connection(client):
    response = await client.post("/sync-jobs", json={"provider_id": 999})
    assert response.status_code == 404


async def test_create_sync_job_for_unsyncable_provider(client, user, connection_factory):
    connection = await connection_factory(user.id, provider="dropbox")

    response = await client.post("/sync-jobs", json={"provider_id": connection.id})

    assert response.status_code == 400


async def test_create_sync_job_rejects_bad_filters(client, user, connection_factory):
    connection = await connection_factory(user.id)

    response = await client.post(
        "/sync-jobs", json={"provider_id": connection.id, "filters": {"dateRange": "forever"}}
    )

    assert response.status_code == 422


async def test_pause_pending_job_conflicts(client, session_factory, user, connection_factory):
    connection = await connection_factory(user.id)
    async with session_factory() as db:
        job = SyncJob(user_id=user.id, provider_id=connection.id, status=SyncJobStatus.PENDING, filters={})
        db.add(job)
        await db.commit()

    response = await client.post(f"/sync-jobs/{job.id}/pause")
    assert response.status_code == 409

    listed = await client.get("/sync-jobs")
    assert [j["id"] for j in listed.json()] == [job.id]
    assert listed.json()[0]["status"] == "pending"


async def test_photo_stats_and_listing(client, session_factory, user):
    async with session_factory() as db:
        db.add_all(
            [
                Photo(user_id=user.id, filename="a.jpg", file_hash="a", overall_score=9.1, tier=PhotoTier.ELITE),
                Photo(user_id=user.id, filename="b.jpg", file_hash="b", overall_score=7.1, tier=PhotoTier.STARS),
                Photo(user_id=user.id, filename="c.jpg", file_hash="c"),
            ]
        )
        await db.commit()

    stats = (await client.get("/photos/stats")).json()
    assert stats["total_photos"] == 3
    assert stats["tiers"]["elite"] == {"count": 1, "value": 2800}
    assert stats["total_value"] == 2800 + 800 + 150

    listed = (await client.get("/photos", params={"tier": "stars"})).json()
    assert [p["filename"] for p in listed] == ["b.jpg"]
    assert listed[0]["tier_label"] == "high-value"

    ordered = (await client.get("/photos")).json()
    assert [p["filename"] for p in ordered] == ["a.jpg", "b.jpg", "c.jpg"]


async def test_imported_photo_has_no_signed_url(client, session_factory, user):
    async with session_factory() as db:
        photo = Photo(user_id=user.id, provider="google_photos", external_id="x", filename="x.jpg")
        db.add(photo)
        await db.commit()

    response = await client.get(f"/photos/{photo.id}/url")
    assert response.status_code == 404


async def test_score_weights(client):
    defaults = (await client.get("/settings/weights")).json()
    assert defaults == {
        "technical_weight": 70,
        "commercial_weight": 80,
        "artistic_weight": 60,
        "emotional_weight": 50,
    }

    updated = await client.put("/settings/weights", json={"technical_weight": 90})
    assert updated.status_code == 200
    assert updated.json()["technical_weight"] == 90
    assert updated.json()["commercial_weight"] == 80

    invalid = await client.put("/settings/weights", json={"artistic_weight": 101})
    assert invalid.status_code == 422


def image_part(name, color, content_type="image/jpeg"):
    return ("files", (name, make_image(color=color), content_type))


async def test_create_sync_job_dispatches(client, dispatcher, user, connection_factory):
    connection = await connection_factory(user.id)

    response = await client.post(
        "/sync-jobs", json={"provider_id": connection.id, "filters": {"onlyCamera": True}}
    )

    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "pending"
    assert body["filters"]["onlyCamera"] is True
    assert dispatcher.ids == [body["id"]]


async def test_pause_and_resume_running_job(client, dispatcher, session_factory, user, connection_factory):
    connection = await connection_factory(user.id)
    async with session_factory() as db:
        job = SyncJob(user_id=user.id, provider_id=connection.id, status=SyncJobStatus.RUNNING, filters={})
        db.add(job)
        await db.commit()

    paused = await client.post(f"/sync-jobs/{job.id}/pause")
    assert paused.status_code == 200
    assert paused.json()["status"] == "paused"
    assert (await client.post(f"/sync-jobs/{job.id}/pause")).status_code == 409

    resumed = await client.post(f"/sync-jobs/{job.id}/resume")
    assert resumed.status_code == 200
    assert resumed.json()["status"] == "running"
    # No runner holds the lease, so a new one is dispatched
    assert dispatcher.ids == [job.id]


async def test_retry_failed_job(client, dispatcher, session_factory, user, connection_factory):
    connection = await connection_factory(user.id)
    async with session_factory() as db:
        failed = SyncJob(
            user_id=user.id, provider_id=connection.id, status=SyncJobStatus.FAILED, filters={},
            error_message="Sync failed",
        )
        done = SyncJob(user_id=user.id, provider_id=connection.id, status=SyncJobStatus.COMPLETE, filters={})
        db.add_all([failed, done])
        await db.commit()

    response = await client.post(f"/sync-jobs/{failed.id}/retry")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "running"
    assert body["retry_count"] == 1
    assert body["error_message"] is None
    assert dispatcher.ids == [failed.id]
    assert (await client.post(f"/sync-jobs/{done.id}/retry")).status_code == 409
    assert (await client.post("/sync-jobs/999/resume")).status_code == 404


async def test_upload_run_and_status(client, upload_manager, user):
    response = await client.post(
        "/uploads",
        files=[image_part("a.jpg", (200, 40, 40)), image_part("b.jpg", (40, 200, 40))],
        data={"skip_small_files": "false"},
    )

    assert response.status_code == 202
    assert response.json()["started"] is True
    assert response.json()["stats"]["total"] == 2
    await upload_manager.get(user.id).wait()

    status = (await client.get("/uploads/status")).json()
    assert status["state"] == "idle"
    assert status["stats"]["successful"] == 2
    assert status["stats"]["processed"] == 2

    cancelled = (await client.post("/uploads/cancel")).json()
    assert cancelled == {"cancelled": False, "state": "idle"}


async def test_upload_cancel_while_running(client, upload_manager, upload_scoring, user):
    gate = asyncio.Event()

    async def hold(call):
        await gate.wait()

    upload_scoring.on_call = hold
    response = await client.post(
        "/uploads",
        files=[image_part(f"{i}.jpg", (i * 40, 60, 90)) for i in range(3)],
        data={"skip_small_files": "false"},
    )
    assert response.json()["started"] is True

    cancelled = (await client.post("/uploads/cancel")).json()
    assert cancelled == {"cancelled": True, "state": "cancelling"}

    gate.set()
    await upload_manager.get(user.id).wait()
    status = (await client.get("/uploads/status")).json()
    assert status["state"] == "idle"
    assert status["stats"]["processed"] <= 1


async def test_upload_scan(client, upload_manager, user):
    same = make_image(color=(10, 20, 30))
    response = await client.post(
        "/uploads/scan",
        files=[
            ("files", ("a.jpg", same, "image/jpeg")),
            ("files", ("a-copy.jpg", same, "image/jpeg")),
            image_part("Screenshot_20250301.png", (40, 40, 200)),
        ],
        data={"skip_small_files": "false"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["total_files"] == 3
    assert body["valid_files"] == 1
    assert body["duplicates"] == 1
    assert body["screenshots"] == 1
    assert body["estimated_minutes"] == 1
    # A scan never starts a run
    assert upload_manager.get(user.id).stats.total == 0
