"""
Batch upload orchestrator.

Drives one user's list of files through the upload pipeline in fixed-size
batches. Files within a batch run concurrently; batches run strictly in
input order with a short pause between them so the scoring oracle is not
flooded. Statistics are replaced as a whole once per settled batch.

States: idle -> running -> (cancelling) -> idle. A second run while one is
active is refused. Cancellation is cooperative: the in-flight batch finishes,
no further batch is dispatched, and in-flight files stop retrying.
"""
import asyncio
import logging
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vault.config import get_settings
from vault.services.object_storage import ObjectStorageService
from vault.services.photo import (
    TRANSIENT_ERRORS,
    PhotoService,
    UploadFile,
    UploadOutcome,
    UploadResult,
)
from vault.services.preprocessor import FilterOptions
from vault.services.scoring import PhotoTier, ScoreWeights, ScoringClient
from vault.utils.clock import utcnow
from vault.utils.logger import log_info
from vault.utils.metrics import upload_files_total, upload_runs_active, upload_runs_total
from vault.utils.retry import retry_with_backoff

logger = logging.getLogger("vault.upload")


class OrchestratorState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    CANCELLING = "cancelling"


@dataclass(frozen=True)
class UploadRunStats:
    """
    Aggregate counters for one run.

    ``processed == successful + failed`` after every batch; skipped files
    are counted separately, so ``processed + skipped <= total``.
    """
    total: int = 0
    processed: int = 0
    successful: int = 0
    failed: int = 0
    skipped: int = 0
    vault_worthy: int = 0
    high_value: int = 0
    archive: int = 0
    current_file: Optional[str] = None
    start_time: Optional[datetime] = None
    errors: tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["errors"] = list(self.errors)
        return data


ProgressCallback = Callable[[UploadRunStats], None]


class BatchUploadOrchestrator:
    """
    One orchestrator per user.

    Args:
        user_id: Owner of every uploaded photo
        session_factory: Creates one session per file attempt
        storage, scoring: Collaborators handed to PhotoService
        batch_size, inter_batch_delay, max_attempts, initial_backoff:
            Overrides for the configured defaults
        sleep: Awaitable sleep used for the inter-batch delay and backoff
        on_progress: Called with fresh stats after each batch
        on_complete: Called with final stats when a run finishes uncancelled
    """

    def __init__(
        self,
        user_id: int,
        session_factory: async_sessionmaker[AsyncSession],
        storage: Optional[ObjectStorageService] = None,
        scoring: Optional[ScoringClient] = None,
        batch_size: Optional[int] = None,
        inter_batch_delay: Optional[float] = None,
        max_attempts: Optional[int] = None,
        initial_backoff: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        on_progress: Optional[ProgressCallback] = None,
        on_complete: Optional[ProgressCallback] = None,
    ):
        settings = get_settings()
        self.user_id = user_id
        self._session_factory = session_factory
        self._storage = storage
        self._scoring = scoring
        self.batch_size = batch_size or settings.upload_batch_size
        self.inter_batch_delay = (
            inter_batch_delay if inter_batch_delay is not None else settings.upload_inter_batch_delay_seconds
        )
        self.max_attempts = max_attempts or settings.upload_max_attempts
        self.initial_backoff = (
            initial_backoff if initial_backoff is not None else settings.upload_initial_backoff_seconds
        )
        self._sleep = sleep
        self._on_progress = on_progress
        self._on_complete = on_complete

        self._state = OrchestratorState.IDLE
        self._stats = UploadRunStats()
        self._cancel_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def state(self) -> OrchestratorState:
        return self._state

    @property
    def stats(self) -> UploadRunStats:
        return self._stats

    @property
    def is_busy(self) -> bool:
        return self._state is not OrchestratorState.IDLE

    def _begin(self, files: Sequence[UploadFile]) -> None:
        self._state = OrchestratorState.RUNNING
        self._cancel_event.clear()
        self._stats = UploadRunStats(total=len(files), start_time=utcnow())

    def start(self, files: Sequence[UploadFile], options: FilterOptions) -> bool:
        """Start a run in the background. Returns False when a run is already active."""
        if self.is_busy:
            logger.info("Upload run already active", extra={"event": "upload", "user_id": self.user_id})
            return False
        self._begin(files)
        self._task = asyncio.create_task(self._execute(list(files), options))
        return True

    async def run(self, files: Sequence[UploadFile], options: FilterOptions) -> Optional[UploadRunStats]:
        """Run to completion. Returns None without doing anything when already busy."""
        if self.is_busy:
            logger.info("Upload run already active", extra={"event": "upload", "user_id": self.user_id})
            return None
        self._begin(files)
        return await self._execute(list(files), options)

    def cancel(self) -> bool:
        """Request cancellation. Returns False when nothing is running."""
        if self._state is not OrchestratorState.RUNNING:
            return False
        self._cancel_event.set()
        self._state = OrchestratorState.CANCELLING
        logger.info("Upload run cancellation requested", extra={"event": "upload", "user_id": self.user_id})
        return True

    async def wait(self) -> None:
        """Wait for a background run started with ``start``."""
        if self._task is not None:
            await self._task

    async def _load_weights(self) -> ScoreWeights:
        async with self._session_factory() as db:
            return await PhotoService(db, self._storage, self._scoring).get_weights(self.user_id)

    async def _execute(self, files: list[UploadFile], options: FilterOptions) -> UploadRunStats:
        upload_runs_active.inc()
        try:
            weights = await self._load_weights()
            batches = [files[i:i + self.batch_size] for i in range(0, len(files), self.batch_size)]

            for index, batch in enumerate(batches):
                if self._cancel_event.is_set():
                    break
                self._stats = replace(self._stats, current_file=batch[0].file_name)
                results = await asyncio.gather(
                    *(self._process_file(upload, options, weights) for upload in batch)
                )
                self._apply_batch(results)
                if self._on_progress is not None:
                    self._on_progress(self._stats)

                if index < len(batches) - 1 and not self._cancel_event.is_set():
                    await self._sleep(self.inter_batch_delay)

            cancelled = self._cancel_event.is_set()
            self._stats = replace(self._stats, current_file=None)
            final = self._stats
        finally:
            self._state = OrchestratorState.IDLE
            upload_runs_active.dec()

        if cancelled:
            upload_runs_total.labels(result="cancelled").inc()
            log_info(
                "Upload run cancelled",
                event="upload",
                user_id=self.user_id,
                processed=final.processed,
                skipped=final.skipped,
                total=final.total,
            )
        else:
            upload_runs_total.labels(result="completed").inc()
            log_info(
                f"Upload run completed: {final.successful} photos analyzed",
                event="upload",
                user_id=self.user_id,
                successful=final.successful,
                failed=final.failed,
                skipped=final.skipped,
                vault_worthy=final.vault_worthy,
            )
            if self._on_complete is not None:
                self._on_complete(final)
        return final

    async def _process_file(
        self,
        upload: UploadFile,
        options: FilterOptions,
        weights: ScoreWeights,
    ) -> UploadResult:
        async def attempt() -> UploadResult:
            async with self._session_factory() as db:
                service = PhotoService(db, self._storage, self._scoring)
                result = await service.ingest_upload(self.user_id, upload, options, weights)
                await db.commit()
                return result

        try:
            return await retry_with_backoff(
                attempt,
                max_attempts=self.max_attempts,
                initial_delay=self.initial_backoff,
                retryable_exceptions=TRANSIENT_ERRORS,
                target="upload.file",
                should_continue=lambda: not self._cancel_event.is_set(),
                sleep=self._sleep,
            )
        except TRANSIENT_ERRORS:
            return UploadResult(upload.file_name, UploadOutcome.FAILED, reason="retries_exhausted")
        except Exception:
            # One file never takes the batch down
            logger.error(
                "Upload failed unexpectedly",
                exc_info=True,
                extra={"event": "upload", "user_id": self.user_id, "file_name": upload.file_name},
            )
            return UploadResult(upload.file_name, UploadOutcome.FAILED, reason="unexpected_error")

    def _apply_batch(self, results: Sequence[UploadResult]) -> None:
        successful = failed = skipped = 0
        tiers = {tier: 0 for tier in PhotoTier}
        errors = []
        for result in results:
            upload_files_total.labels(outcome=result.outcome.value).inc()
            if result.outcome is UploadOutcome.SUCCESS:
                successful += 1
                if result.tier is not None:
                    tiers[result.tier] += 1
            elif result.outcome is UploadOutcome.FAILED:
                failed += 1
                errors.append(f"{result.file_name}: {result.reason or 'failed'}")
            else:
                skipped += 1

        current = self._stats
        self._stats = replace(
            current,
            processed=current.processed + successful + failed,
            successful=current.successful + successful,
            failed=current.failed + failed,
            skipped=current.skipped + skipped,
            vault_worthy=current.vault_worthy + tiers[PhotoTier.ELITE],
            high_value=current.high_value + tiers[PhotoTier.STARS],
            archive=current.archive + tiers[PhotoTier.ARCHIVE],
            errors=current.errors + tuple(errors),
        )


class UploadManager:
    """Keeps one orchestrator per user for the HTTP layer."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], **orchestrator_options):
        self._session_factory = session_factory
        # Passed to every orchestrator (storage, scoring, batch_size, ...)
        self._options = orchestrator_options
        self._orchestrators: dict[int, BatchUploadOrchestrator] = {}

    @property
    def active(self) -> int:
        """Number of users with a run in progress."""
        return sum(1 for o in self._orchestrators.values() if o.state is not OrchestratorState.IDLE)

    def get(self, user_id: int) -> BatchUploadOrchestrator:
        orchestrator = self._orchestrators.get(user_id)
        if orchestrator is None:
            orchestrator = BatchUploadOrchestrator(user_id, self._session_factory, **self._options)
            self._orchestrators[user_id] = orchestrator
        return orchestrator

    async def cancel_all(self) -> None:
        """Cancel every active run and wait for in-flight batches to settle."""
        active = [o for o in self._orchestrators.values() if o.cancel()]
        for orchestrator in active:
            await orchestrator.wait()


# Singleton instance
_upload_manager: Optional[UploadManager] = None


def get_upload_manager() -> UploadManager:
    """Get the singleton upload manager."""
    global _upload_manager
    if _upload_manager is None:
        from vault.database import async_session_maker

        _upload_manager = UploadManager(async_session_maker)
    return _upload_manager
