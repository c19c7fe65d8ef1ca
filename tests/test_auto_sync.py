"""
Auto-sync sweep tests.
"""
from datetime import datetime, timedelta

import pytest
from sqlalchemy import select

from conftest import FakeProvider, media_item
from vault.models.sync_job import SyncJob, SyncJobStatus
from vault.services.auto_sync import run_auto_sync, sync_due
from vault.services.providers import ProviderRegistry
from vault.services.sync_job import SyncJobService
from vault.utils.clock import utcnow

NOW = datetime(2026, 3, 1, 12, 0, 0)


@pytest.mark.parametrize(
    "last_sync,frequency,due",
    [
        (None, "daily", True),
        (NOW - timedelta(minutes=59), "hourly", False),
        (NOW - timedelta(hours=1), "hourly", True),
        (NOW - timedelta(hours=23), "daily", False),
        (NOW - timedelta(days=3), "weekly", False),
        (NOW - timedelta(days=7), "weekly", True),
        (NOW - timedelta(hours=25), "fortnightly", True),
        (NOW - timedelta(hours=2), None, False),
    ],
)
def test_sync_due(last_sync, frequency, due):
    assert sync_due(last_sync, frequency, NOW) is due


@pytest.fixture
def provider():
    return FakeProvider([media_item(i) for i in range(3)])


async def test_sweep_triggers_due_connections(
    session_factory, provider, dispatched, user_factory, connection_factory
):
    never = await user_factory("never@example.com")
    recent = await user_factory("recent@example.com")
    busy = await user_factory("busy@example.com")
    disabled = await user_factory("disabled@example.com")

    never_conn = await connection_factory(never.id)
    recent_conn = await connection_factory(recent.id, last_sync=utcnow() - timedelta(minutes=10))
    busy_conn = await connection_factory(busy.id)
    await connection_factory(disabled.id, sync_enabled=False)

    async with session_factory() as db:
        existing = await SyncJobService(db, dispatch=dispatched, registry=provider.registry()).create_job(
            busy.id, busy_conn.id
        )

    summary = await run_auto_sync(session_factory, dispatch=dispatched, registry=provider.registry())

    by_provider = {r.provider_id: r for r in summary.results}
    assert summary.total == 3
    assert by_provider[never_conn.id].status == "triggered"
    assert by_provider[recent_conn.id].reason == "too_recent"
    assert by_provider[busy_conn.id].reason == "active_job"

    counts = summary.to_dict()
    assert (counts["triggered"], counts["skipped"], counts["errors"]) == (1, 2, 0)

    async with session_factory() as db:
        jobs = (await db.execute(select(SyncJob).order_by(SyncJob.id))).scalars().all()
    assert [j.id for j in jobs] == [existing.id, by_provider[never_conn.id].sync_job_id]
    assert jobs[1].status is SyncJobStatus.PENDING
    assert dispatched.ids == [existing.id, jobs[1].id]


async def test_unsyncable_providers_are_ignored(session_factory, dispatched, user, connection_factory):
    await connection_factory(user.id)

    summary = await run_auto_sync(session_factory, dispatch=dispatched, registry=ProviderRegistry())

    assert summary.total == 0


async def test_dispatch_error_is_reported_without_detail(
    session_factory, provider, user, connection_factory
):
    await connection_factory(user.id)

    async def broken_dispatch(job_id):
        raise RuntimeError("secret internal detail")

    summary = await run_auto_sync(session_factory, dispatch=broken_dispatch, registry=provider.registry())

    assert summary.results[0].status == "error"
    assert summary.results[0].reason == "job_not_started"
