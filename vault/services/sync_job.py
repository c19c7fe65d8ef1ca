"""
Sync job state machine and runner.

Transitions:
    pending -> running          runner claims the job
    running -> paused           user request; the runner notices after its current item
    paused  -> running          user request; a new runner is dispatched unless the old one still holds the lease
    running -> complete         provider has no more pages
    running -> failed           token refresh failure or repeated provider failure
    failed  -> running          user retry (same job, retry_count + 1)

Only the runner holding the lease writes progress. Every item's photo insert
and its progress update (counters, resume cursor, lease renewal) commit in
one transaction, so a resumed runner continues exactly after the last item
that was recorded.
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vault.config import get_settings
from vault.models.connected_provider import ConnectedProvider
from vault.models.photo import Photo
from vault.models.sync_job import ACTIVE_STATUSES, GENERIC_FAILURE_MESSAGE, SyncJob, SyncJobStatus
from vault.schemas.sync_job import SyncFiltersIn
from vault.services.google_photos import (
    MediaItem,
    MediaPage,
    ProviderError,
    TokenRefreshError,
    TransientProviderError,
)
from vault.services.photo import PhotoService
from vault.services.preprocessor import (
    PreprocessError,
    classify_orientation,
    content_hash,
    dominant_color,
    image_dimensions,
    is_screenshot_name,
)
from vault.services.providers import ProviderRegistration, ProviderRegistry, get_provider_registry
from vault.services.scoring import (
    PhotoTier,
    ScoreWeights,
    ScoringClient,
    ScoringError,
    TransientScoringError,
    evaluate,
    get_scoring_client,
)
from vault.utils.clock import utcnow
from vault.utils.logger import log_error, log_info
from vault.utils.metrics import photos_scored_total, sync_items_total, sync_job_transitions_total
from vault.utils.retry import retry_with_backoff

logger = logging.getLogger("vault.sync")

ALLOWED_TRANSITIONS: dict[SyncJobStatus, frozenset[SyncJobStatus]] = {
    SyncJobStatus.PENDING: frozenset({SyncJobStatus.RUNNING}),
    SyncJobStatus.RUNNING: frozenset(
        {SyncJobStatus.PAUSED, SyncJobStatus.COMPLETE, SyncJobStatus.FAILED}
    ),
    SyncJobStatus.PAUSED: frozenset({SyncJobStatus.RUNNING}),
    SyncJobStatus.FAILED: frozenset({SyncJobStatus.RUNNING}),
    SyncJobStatus.COMPLETE: frozenset(),
}

# Statuses a runner may claim when the lease is free
CLAIMABLE_STATUSES = (SyncJobStatus.PENDING, SyncJobStatus.RUNNING)

TIER_COUNTERS = {
    PhotoTier.ELITE: "vault_worthy_count",
    PhotoTier.STARS: "high_value_count",
    PhotoTier.ARCHIVE: "archive_count",
}

Dispatch = Callable[[int], Awaitable[None]]


class InvalidTransitionError(Exception):
    """Requested status change is not allowed from the job's current status."""

    def __init__(self, current: SyncJobStatus, target: SyncJobStatus):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move sync job from {current.value} to {target.value}")


class SyncJobNotFoundError(Exception):
    """No job with that id for this user."""


class ProviderNotConnectedError(Exception):
    """No provider connection with that id for this user."""


class ProviderNotSyncableError(Exception):
    """The connection's provider has no listing/download handlers."""


class SyncJobActiveError(Exception):
    """The connection already has a pending, running or paused job."""


class _LeaseLost(Exception):
    """Another runner took over the job, or its status was changed outside the runner."""


def check_transition(current: SyncJobStatus, target: SyncJobStatus) -> None:
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransitionError(current, target)


@dataclass(frozen=True)
class SyncFilters:
    """
    Filter snapshot stored on each job.

    Persisted in the provider-facing camelCase shape:
    ``{excludeScreenshots, onlyCamera, minFileSize, dateRange, customStart, customEnd}``.
    """
    exclude_screenshots: bool = True
    only_camera: bool = False
    min_file_size: int = 0
    date_range: str = "all"
    custom_start: Optional[datetime] = None
    custom_end: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> "SyncFilters":
        """Raises ValueError (pydantic ValidationError) for an unknown date range or malformed values."""
        parsed = SyncFiltersIn.model_validate(data or {})
        defaults = cls()
        return cls(
            exclude_screenshots=(
                parsed.excludeScreenshots if parsed.excludeScreenshots is not None else defaults.exclude_screenshots
            ),
            only_camera=parsed.onlyCamera if parsed.onlyCamera is not None else defaults.only_camera,
            min_file_size=parsed.minFileSize or 0,
            date_range=parsed.dateRange or defaults.date_range,
            custom_start=parsed.customStart,
            custom_end=parsed.customEnd,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "excludeScreenshots": self.exclude_screenshots,
            "onlyCamera": self.only_camera,
            "minFileSize": self.min_file_size,
            "dateRange": self.date_range,
            "customStart": self.custom_start.isoformat() if self.custom_start else None,
            "customEnd": self.custom_end.isoformat() if self.custom_end else None,
        }

    def window(self, now: datetime) -> tuple[Optional[datetime], Optional[datetime]]:
        if self.date_range == "last_year":
            return now - timedelta(days=365), None
        if self.date_range == "last_5_years":
            return now - timedelta(days=5 * 365), None
        if self.date_range == "custom":
            return self.custom_start, self.custom_end
        return None, None

    def listing_reason(self, item: MediaItem, now: datetime) -> Optional[str]:
        """Skip reason decidable from the listing alone, or None."""
        if self.exclude_screenshots and is_screenshot_name(item.file_name):
            return "screenshot"
        if self.only_camera and not item.is_camera_photo:
            return "not_camera"
        start, end = self.window(now)
        if item.created_at is not None:
            if start is not None and item.created_at < start:
                return "out_of_range"
            if end is not None and item.created_at > end:
                return "out_of_range"
        return None

    def size_reason(self, size: int) -> Optional[str]:
        if self.min_file_size and size < self.min_file_size:
            return "too_small"
        return None


def _lease_free(now: datetime):
    return or_(
        SyncJob.lease_owner.is_(None),
        SyncJob.lease_expires_at.is_(None),
        SyncJob.lease_expires_at < now,
    )


class SyncJobService:
    """
    User-facing job operations: create, inspect, pause, resume, retry.

    Each state change is a conditional UPDATE on the expected source status
    and is committed immediately so the runner (in another session) sees it.
    """

    def __init__(
        self,
        db: AsyncSession,
        dispatch: Optional[Dispatch] = None,
        registry: Optional[ProviderRegistry] = None,
    ):
        self.db = db
        self._dispatch = dispatch
        self.registry = registry or get_provider_registry()

    async def dispatch(self, job_id: int) -> None:
        if self._dispatch is None:
            await get_sync_dispatcher().dispatch(job_id)
        else:
            await self._dispatch(job_id)

    async def get_job(self, job_id: int, user_id: int) -> SyncJob:
        result = await self.db.execute(
            select(SyncJob).where(SyncJob.id == job_id, SyncJob.user_id == user_id)
        )
        job = result.scalar_one_or_none()
        if job is None:
            raise SyncJobNotFoundError(f"Sync job {job_id} not found")
        return job

    async def list_jobs(self, user_id: int, limit: int = 20) -> list[SyncJob]:
        result = await self.db.execute(
            select(SyncJob)
            .where(SyncJob.user_id == user_id)
            .order_by(SyncJob.created_at.desc(), SyncJob.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def active_job_for(self, provider_id: int) -> Optional[SyncJob]:
        result = await self.db.execute(
            select(SyncJob)
            .where(SyncJob.provider_id == provider_id, SyncJob.status.in_(ACTIVE_STATUSES))
            .order_by(SyncJob.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def create_job(
        self,
        user_id: int,
        provider_id: int,
        filters: Optional[dict[str, Any]] = None,
    ) -> SyncJob:
        """
        Create a pending job for a connection and dispatch a runner.

        The connection's stored filter settings are merged with ``filters``
        and snapshotted on the job. If dispatch fails the row is deleted and
        the error propagates.
        """
        connection = await self.db.get(ConnectedProvider, provider_id)
        if connection is None or connection.user_id != user_id:
            raise ProviderNotConnectedError(f"Provider connection {provider_id} not found")
        try:
            registration = self.registry.get(connection.provider)
        except KeyError:
            raise ProviderNotSyncableError(f"Provider {connection.provider} is not supported")
        if not registration.syncable:
            raise ProviderNotSyncableError(f"Provider {connection.provider} cannot be synced")
        if await self.active_job_for(provider_id) is not None:
            raise SyncJobActiveError("A sync is already in progress for this provider")

        snapshot = SyncFilters.from_dict({**(connection.settings or {}), **(filters or {})})
        job = SyncJob(
            user_id=user_id,
            provider_id=provider_id,
            status=SyncJobStatus.PENDING,
            filters=snapshot.to_dict(),
        )
        self.db.add(job)
        await self.db.commit()
        sync_job_transitions_total.labels(to_status=SyncJobStatus.PENDING.value).inc()

        try:
            await self.dispatch(job.id)
        except Exception:
            logger.error(
                "Sync job dispatch failed, removing job",
                exc_info=True,
                extra={"event": "sync", "job_id": job.id, "user_id": user_id},
            )
            await self.db.delete(job)
            await self.db.commit()
            raise

        log_info("Sync job created", event="sync", job_id=job.id, user_id=user_id, provider=connection.provider)
        return job

    async def _transition(
        self,
        job: SyncJob,
        source: SyncJobStatus,
        target: SyncJobStatus,
        **values: Any,
    ) -> SyncJob:
        if job.status is not source:
            raise InvalidTransitionError(job.status, target)
        check_transition(source, target)

        result = await self.db.execute(
            update(SyncJob)
            .where(SyncJob.id == job.id, SyncJob.status == source)
            .values(status=target, updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            await self.db.refresh(job)
            raise InvalidTransitionError(job.status, target)
        await self.db.commit()
        await self.db.refresh(job)

        sync_job_transitions_total.labels(to_status=target.value).inc()
        logger.info(
            f"Sync job {source.value} -> {target.value}",
            extra={"event": "sync", "job_id": job.id, "user_id": job.user_id},
        )
        return job

    async def _dispatch_or_revert(self, job: SyncJob, revert_to: SyncJobStatus, **values: Any) -> None:
        try:
            await self.dispatch(job.id)
        except Exception:
            logger.error(
                "Sync job dispatch failed",
                exc_info=True,
                extra={"event": "sync", "job_id": job.id, "revert_to": revert_to.value},
            )
            await self.db.execute(
                update(SyncJob)
                .where(SyncJob.id == job.id, SyncJob.status == SyncJobStatus.RUNNING)
                .values(status=revert_to, updated_at=utcnow(), **values)
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
            await self.db.refresh(job)
            raise

    async def pause(self, job_id: int, user_id: int) -> SyncJob:
        """
        running -> paused.

        The runner keeps its lease until it observes the pause after its
        current item, then releases it.
        """
        job = await self.get_job(job_id, user_id)
        return await self._transition(job, SyncJobStatus.RUNNING, SyncJobStatus.PAUSED)

    async def resume(self, job_id: int, user_id: int) -> SyncJob:
        """paused -> running; dispatches a runner unless the previous one still holds the lease."""
        job = await self.get_job(job_id, user_id)
        job = await self._transition(job, SyncJobStatus.PAUSED, SyncJobStatus.RUNNING)

        now = utcnow()
        lease_held = (
            job.lease_owner is not None
            and job.lease_expires_at is not None
            and job.lease_expires_at >= now
        )
        if not lease_held:
            await self._dispatch_or_revert(job, SyncJobStatus.PAUSED)
        return job

    async def retry(self, job_id: int, user_id: int) -> SyncJob:
        """failed -> running on the same job; imported items are skipped by external id."""
        job = await self.get_job(job_id, user_id)
        job = await self._transition(
            job,
            SyncJobStatus.FAILED,
            SyncJobStatus.RUNNING,
            retry_count=SyncJob.retry_count + 1,
            error_message=None,
            last_error_at=None,
            completed_at=None,
            lease_owner=None,
            lease_expires_at=None,
        )
        await self._dispatch_or_revert(
            job,
            SyncJobStatus.FAILED,
            error_message=GENERIC_FAILURE_MESSAGE,
            last_error_at=utcnow(),
        )
        return job


class SyncJobRunner:
    """
    Drives one job from its persisted cursor to a stop state.

    ``run`` returns the status the job was left in, or None when the job
    could not be claimed or the lease was lost midway.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        registry: Optional[ProviderRegistry] = None,
        scoring: Optional[ScoringClient] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        inter_item_delay: Optional[float] = None,
        page_size: Optional[int] = None,
        lease_seconds: Optional[int] = None,
        max_attempts: Optional[int] = None,
        initial_backoff: Optional[float] = None,
        owner: Optional[str] = None,
    ):
        settings = get_settings()
        self._session_factory = session_factory
        self.registry = registry or get_provider_registry()
        self.scoring = scoring or get_scoring_client()
        self._sleep = sleep
        self.inter_item_delay = (
            inter_item_delay if inter_item_delay is not None else settings.sync_inter_item_delay_seconds
        )
        self.page_size = page_size or settings.sync_page_size
        self.lease = timedelta(seconds=lease_seconds or settings.sync_lease_seconds)
        self.max_attempts = max_attempts or settings.sync_max_attempts
        self.initial_backoff = (
            initial_backoff if initial_backoff is not None else settings.upload_initial_backoff_seconds
        )
        self.owner = owner or uuid.uuid4().hex

    async def run(self, job_id: int) -> Optional[SyncJobStatus]:
        if not await self._claim(job_id):
            logger.info("Sync job not claimable", extra={"event": "sync", "job_id": job_id})
            return None
        try:
            return await self._run_claimed(job_id)
        except _LeaseLost:
            logger.warning("Sync job lease lost", extra={"event": "sync", "job_id": job_id})
            return None
        except Exception as e:
            await self._fail(job_id, e)
            return SyncJobStatus.FAILED

    async def _claim(self, job_id: int) -> bool:
        now = utcnow()
        async with self._session_factory() as db:
            result = await db.execute(
                update(SyncJob)
                .where(
                    SyncJob.id == job_id,
                    SyncJob.status.in_(CLAIMABLE_STATUSES),
                    _lease_free(now),
                )
                .values(
                    status=SyncJobStatus.RUNNING,
                    lease_owner=self.owner,
                    lease_expires_at=now + self.lease,
                    started_at=func.coalesce(SyncJob.started_at, now),
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            await db.commit()
        if result.rowcount != 1:
            return False
        sync_job_transitions_total.labels(to_status=SyncJobStatus.RUNNING.value).inc()
        return True

    async def _run_claimed(self, job_id: int) -> SyncJobStatus:
        async with self._session_factory() as db:
            job = await db.get(SyncJob, job_id)
            connection = await db.get(ConnectedProvider, job.provider_id)
            if connection is None:
                raise ProviderError("Provider connection removed")
            registration = self.registry.get(connection.provider)
            if not registration.syncable:
                raise ProviderError(f"Provider {connection.provider} cannot be synced")

            weights = await PhotoService(db, scoring=self.scoring).get_weights(job.user_id)
            filters = SyncFilters.from_dict(job.filters)
            access_token = await self._ensure_token(db, connection, registration)

            user_id = job.user_id
            provider_id = connection.id
            provider_name = connection.provider
            page_token, offset = job.page_token, job.page_offset

        log_info(
            "Sync job running",
            event="sync",
            job_id=job_id,
            user_id=user_id,
            provider=provider_name,
            resume_offset=offset,
        )

        total: Optional[int] = None
        while True:
            if await self._observe_pause(job_id):
                return SyncJobStatus.PAUSED

            page = await self._fetch_page(registration, access_token, page_token)
            if page.total is not None:
                total = page.total

            for index in range(offset, len(page.items)):
                # Cursor after this item; stays on the last page once it is exhausted
                if index + 1 < len(page.items) or page.next_page_token is None:
                    cursor = (page_token, index + 1)
                else:
                    cursor = (page.next_page_token, 0)

                fetched = await self._process_item(
                    job_id, user_id, provider_name, registration, page.items[index],
                    filters, weights, cursor, total,
                )
                if await self._observe_pause(job_id):
                    return SyncJobStatus.PAUSED
                if fetched and self.inter_item_delay > 0:
                    await self._sleep(self.inter_item_delay)

            if page.next_page_token is None:
                break
            page_token, offset = page.next_page_token, 0

        return await self._complete(job_id, provider_id, total)

    async def _ensure_token(
        self,
        db: AsyncSession,
        connection: ConnectedProvider,
        registration: ProviderRegistration,
    ) -> str:
        """Refresh the stored access token once if it is missing or expired."""
        if connection.access_token and not connection.token_expired(utcnow()):
            return connection.access_token
        refresh = registration.handlers.refresh_token
        if refresh is None:
            raise TokenRefreshError("Provider cannot refresh tokens")

        grant = await refresh(connection.refresh_token)
        connection.access_token = grant.access_token
        connection.token_expiry = grant.expires_at
        if grant.refresh_token:
            connection.refresh_token = grant.refresh_token
        await db.commit()
        logger.info(
            "Provider token refreshed",
            extra={"event": "sync", "provider_id": connection.id},
        )
        return grant.access_token

    async def _fetch_page(
        self,
        registration: ProviderRegistration,
        access_token: str,
        page_token: Optional[str],
    ) -> MediaPage:
        fetch_page = registration.handlers.fetch_page
        return await retry_with_backoff(
            lambda: fetch_page(access_token, page_token, self.page_size),
            max_attempts=self.max_attempts,
            initial_delay=self.initial_backoff,
            retryable_exceptions=(TransientProviderError,),
            target="sync.listing",
            sleep=self._sleep,
        )

    async def _observe_pause(self, job_id: int) -> bool:
        """
        Re-read the job status.

        Returns True when the job is paused and the lease was released.
        Raises _LeaseLost when the job is no longer ours to run.
        """
        async with self._session_factory() as db:
            row = (
                await db.execute(
                    select(SyncJob.status, SyncJob.lease_owner).where(SyncJob.id == job_id)
                )
            ).one_or_none()
            if row is None or row.lease_owner != self.owner:
                raise _LeaseLost()
            if row.status is SyncJobStatus.RUNNING:
                return False
            if row.status is not SyncJobStatus.PAUSED:
                raise _LeaseLost()

            result = await db.execute(
                update(SyncJob)
                .where(
                    SyncJob.id == job_id,
                    SyncJob.status == SyncJobStatus.PAUSED,
                    SyncJob.lease_owner == self.owner,
                )
                .values(lease_owner=None, lease_expires_at=None)
                .execution_options(synchronize_session=False)
            )
            await db.commit()

        if result.rowcount != 1:
            # Resumed again before the lease was released; keep going
            return False
        log_info("Sync job paused", event="sync", job_id=job_id)
        return True

    async def _process_item(
        self,
        job_id: int,
        user_id: int,
        provider_name: str,
        registration: ProviderRegistration,
        item: MediaItem,
        filters: SyncFilters,
        weights: ScoreWeights,
        cursor: tuple[Optional[str], int],
        total: Optional[int],
    ) -> bool:
        """
        Examine one item and record exactly one outcome for it.

        Returns True when the provider or the scoring oracle was called.
        """
        if filters.listing_reason(item, utcnow()) is not None:
            await self._advance(job_id, "skipped_count", cursor, total)
            return False

        async with self._session_factory() as db:
            existing = await PhotoService(db, scoring=self.scoring).find_by_external_id(
                user_id, provider_name, item.external_id
            )
        if existing is not None:
            await self._advance(job_id, "skipped_count", cursor, total)
            return False

        try:
            data = await retry_with_backoff(
                lambda: registration.handlers.download(item),
                max_attempts=self.max_attempts,
                initial_delay=self.initial_backoff,
                retryable_exceptions=(TransientProviderError,),
                target="sync.download",
                sleep=self._sleep,
            )
        except ProviderError as e:
            self._log_item_failure(job_id, item, e)
            await self._advance(job_id, "failed_count", cursor, total)
            return True

        if filters.size_reason(len(data)) is not None:
            await self._advance(job_id, "skipped_count", cursor, total)
            return True

        try:
            result = await retry_with_backoff(
                lambda: self.scoring.score(data, item.file_name, item.mime_type),
                max_attempts=self.max_attempts,
                initial_delay=self.initial_backoff,
                retryable_exceptions=(TransientScoringError,),
                target="sync.scoring",
                sleep=self._sleep,
            )
            if item.width and item.height:
                width, height = item.width, item.height
            else:
                width, height = image_dimensions(data)
        except (ScoringError, PreprocessError) as e:
            self._log_item_failure(job_id, item, e)
            await self._advance(job_id, "failed_count", cursor, total)
            return True

        scored = evaluate(result, weights)
        photo = Photo(
            user_id=user_id,
            provider=provider_name,
            external_id=item.external_id,
            sync_job_id=job_id,
            source_url=item.product_url,
            file_hash=content_hash(data),
            filename=item.file_name,
            mime_type=item.mime_type,
            file_size=len(data),
            width=width,
            height=height,
            orientation=classify_orientation(width, height),
            date_taken=item.created_at,
            camera_data=item.camera,
            provider_metadata=item.raw.get("mediaMetadata"),
            location_data=item.location,
            dominant_color=dominant_color(data),
        )
        photo.apply_score(scored)
        imported = await self._advance(job_id, TIER_COUNTERS[scored.tier], cursor, total, photo=photo)
        if imported:
            photos_scored_total.labels(tier=scored.tier.value, source="sync").inc()
        return True

    async def _advance(
        self,
        job_id: int,
        counter: str,
        cursor: tuple[Optional[str], int],
        total: Optional[int],
        photo: Optional[Photo] = None,
    ) -> bool:
        """
        Record one item's outcome together with the new cursor and lease.

        When ``photo`` is given it is inserted in the same transaction; a
        unique-constraint conflict turns the outcome into a skip. Returns
        True when the photo was imported.
        """
        now = utcnow()
        imported = False
        async with self._session_factory() as db:
            if photo is not None:
                saved = await PhotoService(db, scoring=self.scoring).add_photo(photo)
                if saved is None:
                    counter = "skipped_count"
                else:
                    imported = True

            values: dict[str, Any] = {
                "processed_count": SyncJob.processed_count + 1,
                counter: getattr(SyncJob, counter) + 1,
                "page_token": cursor[0],
                "page_offset": cursor[1],
                "lease_expires_at": now + self.lease,
                "updated_at": now,
            }
            if total is not None:
                values["total_count"] = total
            result = await db.execute(
                update(SyncJob)
                .where(SyncJob.id == job_id, SyncJob.lease_owner == self.owner)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await db.rollback()
                raise _LeaseLost()
            await db.commit()

        if imported:
            outcome = "imported"
        else:
            outcome = "failed" if counter == "failed_count" else "skipped"
        sync_items_total.labels(outcome=outcome).inc()
        return imported

    def _log_item_failure(self, job_id: int, item: MediaItem, error: Exception) -> None:
        logger.warning(
            "Sync item failed",
            extra={
                "event": "sync",
                "job_id": job_id,
                "external_id": item.external_id,
                "error_type": type(error).__name__,
            },
        )

    async def _complete(self, job_id: int, provider_id: int, total: Optional[int]) -> SyncJobStatus:
        now = utcnow()
        async with self._session_factory() as db:
            processed = await db.scalar(select(SyncJob.processed_count).where(SyncJob.id == job_id))
            result = await db.execute(
                update(SyncJob)
                .where(
                    SyncJob.id == job_id,
                    SyncJob.status == SyncJobStatus.RUNNING,
                    SyncJob.lease_owner == self.owner,
                )
                .values(
                    status=SyncJobStatus.COMPLETE,
                    total_count=processed if total is None else max(total, processed),
                    completed_at=now,
                    error_message=None,
                    lease_owner=None,
                    lease_expires_at=None,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await db.rollback()
                # Paused after the last item; the next resume completes it
                if await self._observe_pause(job_id):
                    return SyncJobStatus.PAUSED
                return await self._complete(job_id, provider_id, total)

            await db.execute(
                update(ConnectedProvider)
                .where(ConnectedProvider.id == provider_id)
                .values(last_sync=now)
                .execution_options(synchronize_session=False)
            )
            await db.commit()

        sync_job_transitions_total.labels(to_status=SyncJobStatus.COMPLETE.value).inc()
        log_info("Sync job complete", event="sync", job_id=job_id, processed=processed)
        return SyncJobStatus.COMPLETE

    async def _fail(self, job_id: int, error: Exception) -> None:
        # Raw detail stays in the server log; the row only gets the generic message
        log_error(
            "Sync job failed",
            exc_info=error,
            event="sync",
            job_id=job_id,
            error_type=type(error).__name__,
            error=str(error)[:200],
        )
        now = utcnow()
        async with self._session_factory() as db:
            await db.execute(
                update(SyncJob)
                .where(SyncJob.id == job_id, SyncJob.lease_owner == self.owner)
                .values(
                    status=SyncJobStatus.FAILED,
                    error_message=GENERIC_FAILURE_MESSAGE,
                    last_error_at=now,
                    lease_owner=None,
                    lease_expires_at=None,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            await db.commit()
        sync_job_transitions_total.labels(to_status=SyncJobStatus.FAILED.value).inc()


class SyncJobDispatcher:
    """Runs each dispatched job in its own background task."""

    def __init__(self, runner_factory: Callable[[], SyncJobRunner]):
        self._runner_factory = runner_factory
        self._tasks: set[asyncio.Task] = set()

    @property
    def active(self) -> int:
        return len(self._tasks)

    async def dispatch(self, job_id: int) -> None:
        runner = self._runner_factory()
        task = asyncio.create_task(runner.run(job_id), name=f"sync-job-{job_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def shutdown(self) -> None:
        """Cancel running tasks. Their leases expire and the jobs are picked up again later."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


async def resume_orphaned_jobs(
    session_factory: async_sessionmaker[AsyncSession],
    dispatch: Dispatch,
) -> list[int]:
    """Dispatch pending/running jobs whose runner disappeared (lease free or expired)."""
    now = utcnow()
    async with session_factory() as db:
        result = await db.execute(
            select(SyncJob.id).where(SyncJob.status.in_(CLAIMABLE_STATUSES), _lease_free(now))
        )
        job_ids = list(result.scalars().all())

    for job_id in job_ids:
        await dispatch(job_id)
    if job_ids:
        log_info("Orphaned sync jobs dispatched", event="sync", job_ids=job_ids)
    return job_ids


# Singleton instance
_sync_dispatcher: Optional[SyncJobDispatcher] = None


def get_sync_dispatcher() -> SyncJobDispatcher:
    """Get the singleton dispatcher backed by the application session factory."""
    global _sync_dispatcher
    if _sync_dispatcher is None:
        from vault.database import async_session_maker

        _sync_dispatcher = SyncJobDispatcher(lambda: SyncJobRunner(async_session_maker))
    return _sync_dispatcher
