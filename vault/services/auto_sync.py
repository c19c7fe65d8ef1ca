"""
Auto-sync sweep.

Stateless: every run looks at each sync-enabled connection, compares the
time since its last sync with its frequency and starts a job for the ones
that are due. There is no persisted "next run" clock. The sweep is run by
an external cron through the API, or in-process by ``auto_sync_loop``.
"""
import asyncio
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vault.models.connected_provider import ConnectedProvider
from vault.services.providers import ProviderRegistry, get_provider_registry
from vault.services.sync_job import (
    Dispatch,
    SyncJobActiveError,
    SyncJobService,
    get_sync_dispatcher,
    resume_orphaned_jobs,
)
from vault.utils.clock import utcnow
from vault.utils.logger import log_info
from vault.utils.metrics import auto_sync_triggered_total

logger = logging.getLogger("vault.auto_sync")

SYNC_FREQUENCIES = {
    "hourly": timedelta(hours=1),
    "daily": timedelta(hours=24),
    "weekly": timedelta(hours=168),
}
DEFAULT_FREQUENCY = SYNC_FREQUENCIES["daily"]


def sync_due(last_sync: Optional[datetime], frequency: Optional[str], now: datetime) -> bool:
    """Never synced is always due; unknown frequencies count as daily."""
    if last_sync is None:
        return True
    interval = SYNC_FREQUENCIES.get(frequency or "", DEFAULT_FREQUENCY)
    return now - last_sync >= interval


@dataclass
class AutoSyncResult:
    provider_id: int
    user_id: int
    status: str  # triggered | skipped | error
    sync_job_id: Optional[int] = None
    reason: Optional[str] = None


@dataclass
class AutoSyncSummary:
    results: list[AutoSyncResult] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.results)

    def _count(self, status: str) -> int:
        return sum(1 for r in self.results if r.status == status)

    def to_dict(self) -> dict:
        return {
            "results": [asdict(r) for r in self.results],
            "total": self.total,
            "triggered": self._count("triggered"),
            "skipped": self._count("skipped"),
            "errors": self._count("error"),
        }


async def run_auto_sync(
    session_factory: async_sessionmaker[AsyncSession],
    dispatch: Optional[Dispatch] = None,
    registry: Optional[ProviderRegistry] = None,
    now: Optional[datetime] = None,
) -> AutoSyncSummary:
    """
    Start a sync job for every due connection.

    Connections whose provider cannot be synced are ignored. A connection
    with a pending, running or paused job is skipped. One connection's
    error never stops the sweep.
    """
    registry = registry or get_provider_registry()
    now = now or utcnow()
    syncable = [r.kind.value for r in registry.syncable()]

    async with session_factory() as db:
        result = await db.execute(
            select(ConnectedProvider).where(
                ConnectedProvider.sync_enabled.is_(True),
                ConnectedProvider.provider.in_(syncable),
            )
        )
        connections = [
            (c.id, c.user_id, c.last_sync, c.auto_sync_frequency) for c in result.scalars().all()
        ]

    summary = AutoSyncSummary()
    for provider_id, user_id, last_sync, frequency in connections:
        if not sync_due(last_sync, frequency, now):
            summary.results.append(AutoSyncResult(provider_id, user_id, "skipped", reason="too_recent"))
            continue

        try:
            async with session_factory() as db:
                job = await SyncJobService(db, dispatch=dispatch, registry=registry).create_job(
                    user_id, provider_id
                )
        except SyncJobActiveError:
            summary.results.append(AutoSyncResult(provider_id, user_id, "skipped", reason="active_job"))
            continue
        except Exception as e:
            logger.error(
                "Auto-sync could not start job",
                exc_info=True,
                extra={"event": "auto_sync", "provider_id": provider_id, "error_type": type(e).__name__},
            )
            summary.results.append(
                AutoSyncResult(provider_id, user_id, "error", reason="job_not_started")
            )
            continue

        auto_sync_triggered_total.inc()
        summary.results.append(AutoSyncResult(provider_id, user_id, "triggered", sync_job_id=job.id))

    counts = summary.to_dict()
    log_info(
        "Auto-sync sweep completed",
        event="auto_sync",
        total=counts["total"],
        triggered=counts["triggered"],
        skipped=counts["skipped"],
        errors=counts["errors"],
    )
    return summary


async def auto_sync_loop(
    session_factory: async_sessionmaker[AsyncSession],
    interval_seconds: float,
    dispatch: Optional[Dispatch] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> None:
    """Run orphan recovery and the sweep forever, every ``interval_seconds``."""
    dispatch = dispatch or get_sync_dispatcher().dispatch
    while True:
        try:
            await resume_orphaned_jobs(session_factory, dispatch)
            await run_auto_sync(session_factory, dispatch=dispatch)
        except Exception:
            logger.error("Auto-sync sweep failed", exc_info=True, extra={"event": "auto_sync"})
        await sleep(interval_seconds)
