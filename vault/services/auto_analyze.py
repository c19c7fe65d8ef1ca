"""
Auto-analyze sweep: score stored photos that have no overall score yet.

Photos end up unscored when the oracle refused them during upload (rate
limit or quota). The sweep downloads each from the blob store, scores it and
updates the row, one photo at a time.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vault.services.object_storage import ObjectStorageService, StorageError
from vault.services.photo import PhotoService
from vault.services.scoring import (
    QuotaExhaustedError,
    RateLimitedError,
    ScoringClient,
    ScoringError,
    evaluate,
)
from vault.utils.logger import log_info
from vault.utils.metrics import photos_scored_total

logger = logging.getLogger("vault.auto_analyze")


@dataclass(frozen=True)
class AnalyzeSummary:
    analyzed: int = 0
    failed: int = 0
    # Set when the oracle refused further work and the sweep stopped early
    stopped_reason: Optional[str] = None


async def analyze_pending(
    user_id: int,
    session_factory: async_sessionmaker[AsyncSession],
    storage: Optional[ObjectStorageService] = None,
    scoring: Optional[ScoringClient] = None,
    limit: int = 50,
) -> AnalyzeSummary:
    """
    Score up to ``limit`` unscored photos of a user, oldest first.

    A failing photo has its attempt recorded and moves behind photos that
    never failed; after ``auto_analyze_max_attempts`` failures it is no
    longer picked. A rate limit or exhausted quota stops the sweep without
    counting against the photo.
    """
    async with session_factory() as db:
        service = PhotoService(db, storage, scoring)
        weights = await service.get_weights(user_id)
        unscored = await service.list_unscored(user_id, limit)
        pending = [(p.id, p.storage_path, p.filename, p.mime_type) for p in unscored]

    analyzed = failed = 0
    stopped_reason = None
    for photo_id, storage_path, filename, mime_type in pending:
        async with session_factory() as db:
            service = PhotoService(db, storage, scoring)
            try:
                data = await service.storage.download_file(storage_path)
                result = await service.scoring.score(data, filename, mime_type or "image/jpeg")
            except (RateLimitedError, QuotaExhaustedError) as e:
                stopped_reason = "rate_limited" if isinstance(e, RateLimitedError) else "quota_exhausted"
                logger.warning(
                    "Auto-analyze stopped, scoring unavailable",
                    extra={"event": "auto_analyze", "user_id": user_id, "reason": stopped_reason},
                )
                break
            except (StorageError, ScoringError) as e:
                failed += 1
                logger.warning(
                    "Auto-analyze failed for photo",
                    extra={"event": "auto_analyze", "photo_id": photo_id, "error_type": type(e).__name__},
                )
                photo = await service.get_photo(photo_id, user_id)
                if photo is not None:
                    photo.record_analysis_failure()
                    await db.commit()
                continue

            photo = await service.get_photo(photo_id, user_id)
            if photo is None or photo.is_scored:
                continue
            scored = evaluate(result, weights)
            photo.apply_score(scored)
            await db.commit()

        analyzed += 1
        photos_scored_total.labels(tier=scored.tier.value, source="auto_analyze").inc()

    log_info(
        "Auto-analyze sweep completed",
        event="auto_analyze",
        user_id=user_id,
        analyzed=analyzed,
        failed=failed,
        pending=len(pending),
    )
    return AnalyzeSummary(analyzed=analyzed, failed=failed, stopped_reason=stopped_reason)
