"""
Photo service: persistence helpers and the single-file upload pipeline.
"""
import logging
import math
from collections import Counter
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from vault.config import get_settings
from vault.models.photo import MANUAL_UPLOAD, Photo
from vault.models.user import UserSettings
from vault.services.object_storage import (
    ObjectStorageService,
    StorageError,
    TransientStorageError,
    get_storage_service,
    object_name_for,
)
from vault.services.preprocessor import (
    FilterOptions,
    PreprocessError,
    content_hash,
    filter_reason,
    finalize,
    normalize_format,
)
from vault.services.scoring import (
    PhotoTier,
    QuotaExhaustedError,
    RateLimitedError,
    ScoreWeights,
    ScoringClient,
    ScoringError,
    TransientScoringError,
    evaluate,
    get_scoring_client,
)
from vault.utils.metrics import photos_scored_total, upload_file_size_bytes

logger = logging.getLogger("vault.photo")

# Errors worth another attempt of the whole per-file pipeline
TRANSIENT_ERRORS = (TransientStorageError, TransientScoringError)


class UploadOutcome(str, Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class UploadFile:
    """Raw file as received from the client."""
    file_name: str
    content_type: str
    data: bytes


@dataclass(frozen=True)
class UploadResult:
    file_name: str
    outcome: UploadOutcome
    tier: Optional[PhotoTier] = None
    photo_id: Optional[int] = None
    reason: Optional[str] = None


@dataclass(frozen=True)
class ScanReport:
    """What an upload run over the same files would do."""
    total_files: int
    total_size: int
    valid_files: int
    duplicates: int
    screenshots: int
    small_files: int
    unreadable: int
    estimated_cost: float
    estimated_minutes: int


class PhotoService:
    """
    Service for photo rows and the manual upload pipeline.
    Integrates with the blob store for bytes and the scoring oracle for grades.
    """

    def __init__(
        self,
        db: AsyncSession,
        storage: Optional[ObjectStorageService] = None,
        scoring: Optional[ScoringClient] = None,
    ):
        self.db = db
        self.storage = storage or get_storage_service()
        self.scoring = scoring or get_scoring_client()

    async def find_by_hash(self, user_id: int, file_hash: str) -> Optional[Photo]:
        """Manual upload with this content hash; imported rows are matched by external id instead."""
        result = await self.db.execute(
            select(Photo).where(
                Photo.user_id == user_id,
                Photo.provider == MANUAL_UPLOAD,
                Photo.file_hash == file_hash,
            )
        )
        return result.scalar_one_or_none()

    async def find_by_external_id(
        self, user_id: int, provider: str, external_id: str
    ) -> Optional[Photo]:
        result = await self.db.execute(
            select(Photo).where(
                Photo.user_id == user_id,
                Photo.provider == provider,
                Photo.external_id == external_id,
            )
        )
        return result.scalar_one_or_none()

    async def add_photo(self, photo: Photo) -> Optional[Photo]:
        """
        Insert a photo row.

        Returns None when a unique constraint (owner+hash or
        owner+provider+external id) rejects the row. The session is rolled
        back in that case, discarding any other pending changes.
        """
        self.db.add(photo)
        try:
            await self.db.flush()
        except IntegrityError:
            await self.db.rollback()
            logger.info(
                "Duplicate photo rejected by constraint",
                extra={"event": "photo", "user_id": photo.user_id, "provider": photo.provider},
            )
            return None
        return photo

    async def get_weights(self, user_id: int) -> ScoreWeights:
        """User's score weights, or the configured defaults."""
        row = await self.db.get(UserSettings, user_id)
        if row is None:
            return ScoreWeights.defaults()
        return row.to_weights()

    async def update_weights(self, user_id: int, **weights: Optional[int]) -> UserSettings:
        row = await self.db.get(UserSettings, user_id)
        if row is None:
            defaults = ScoreWeights.defaults()
            row = UserSettings(
                user_id=user_id,
                technical_weight=defaults.technical,
                commercial_weight=defaults.commercial,
                artistic_weight=defaults.artistic,
                emotional_weight=defaults.emotional,
            )
            self.db.add(row)
        for name, value in weights.items():
            if value is not None:
                setattr(row, name, value)
        await self.db.flush()
        return row

    async def get_photo(self, photo_id: int, user_id: int) -> Optional[Photo]:
        result = await self.db.execute(
            select(Photo).where(Photo.id == photo_id, Photo.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def list_photos(
        self,
        user_id: int,
        tier: Optional[PhotoTier] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> list[Photo]:
        """
        Photos for a user, best first (unscored last).

        Args:
            user_id: Owner
            tier: Optional tier filter
            skip: Number of records to skip
            limit: Maximum number of records to return
        """
        query = select(Photo).where(Photo.user_id == user_id)
        if tier is not None:
            query = query.where(Photo.tier == tier)
        query = (
            query.order_by(Photo.overall_score.is_(None), Photo.overall_score.desc(), Photo.id.desc())
            .offset(skip)
            .limit(limit)
        )
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def list_unscored(
        self,
        user_id: int,
        limit: int = 50,
        max_attempts: Optional[int] = None,
    ) -> list[Photo]:
        """
        Stored photos without a score, fewest failed attempts first, then oldest.

        Photos that already failed ``max_attempts`` times are left out.
        """
        if max_attempts is None:
            max_attempts = get_settings().auto_analyze_max_attempts
        result = await self.db.execute(
            select(Photo)
            .where(
                Photo.user_id == user_id,
                Photo.overall_score.is_(None),
                Photo.storage_path.is_not(None),
                Photo.analysis_attempts < max_attempts,
            )
            .order_by(Photo.analysis_attempts, Photo.created_at, Photo.id)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def tier_counts(self, user_id: int) -> dict[PhotoTier, int]:
        result = await self.db.execute(
            select(Photo.tier, func.count(Photo.id))
            .where(Photo.user_id == user_id)
            .group_by(Photo.tier)
        )
        counts = {tier: 0 for tier in PhotoTier}
        for tier, count in result.all():
            counts[PhotoTier(tier)] = count
        return counts

    async def scan_uploads(
        self,
        user_id: int,
        uploads: Sequence[UploadFile],
        options: FilterOptions,
    ) -> ScanReport:
        """
        Dry run of the upload filters. Nothing is stored or scored.

        Files are normalized and hashed exactly as a run would, so a HEIC
        re-upload of a stored photo, or a file repeated within the
        selection, counts as a duplicate.
        """
        settings = get_settings()
        reasons: Counter[str] = Counter()
        seen: set[str] = set()
        total_size = 0
        for upload in uploads:
            total_size += len(upload.data)
            try:
                normalized = normalize_format(upload.data, upload.file_name, upload.content_type)
            except PreprocessError:
                reasons["unreadable"] += 1
                continue

            reason = filter_reason(normalized, options)
            if reason is not None:
                reasons[reason] += 1
                continue

            if options.skip_existing:
                digest = content_hash(normalized.data)
                if digest in seen or await self.find_by_hash(user_id, digest) is not None:
                    reasons["duplicate"] += 1
                    continue
                seen.add(digest)

        valid = len(uploads) - sum(reasons.values())
        return ScanReport(
            total_files=len(uploads),
            total_size=total_size,
            valid_files=valid,
            duplicates=reasons["duplicate"],
            screenshots=reasons["screenshot"],
            small_files=reasons["too_small"],
            unreadable=reasons["unreadable"],
            estimated_cost=round(valid * settings.scan_cost_per_photo, 4),
            estimated_minutes=math.ceil(valid * settings.scan_seconds_per_photo / 60),
        )

    def signed_url(self, photo: Photo, expires_in: Optional[int] = None) -> str:
        if not photo.storage_path:
            raise StorageError("Photo has no stored object")
        return self.storage.create_signed_url(photo.storage_path, expires_in)

    async def ingest_upload(
        self,
        user_id: int,
        upload: UploadFile,
        options: FilterOptions,
        weights: ScoreWeights,
    ) -> UploadResult:
        """
        Run one file through the upload pipeline.

        normalize -> filter -> hash -> duplicate check -> compress ->
        blob upload -> score -> persist.

        Terminal problems become FAILED/SKIPPED results. Transient storage
        and scoring errors propagate so the caller can retry the file.

        Args:
            user_id: Owner
            upload: Raw file
            options: Filters for this run
            weights: Score weights for the overall score

        Returns:
            UploadResult with the outcome and tier on success
        """
        try:
            normalized = normalize_format(upload.data, upload.file_name, upload.content_type)
        except PreprocessError:
            return UploadResult(upload.file_name, UploadOutcome.FAILED, reason="conversion_failed")

        reason = filter_reason(normalized, options)
        if reason is not None:
            return UploadResult(upload.file_name, UploadOutcome.SKIPPED, reason=reason)

        digest = content_hash(normalized.data)
        existing = await self.find_by_hash(user_id, digest)
        if existing is not None and options.skip_existing:
            return UploadResult(
                upload.file_name, UploadOutcome.SKIPPED, photo_id=existing.id, reason="duplicate"
            )

        try:
            prepared = finalize(normalized, digest)
        except PreprocessError:
            return UploadResult(upload.file_name, UploadOutcome.FAILED, reason="unsupported_image")

        object_name = object_name_for(user_id, digest)
        try:
            storage_path = await self.storage.upload_file(
                file_content=prepared.payload,
                object_name=object_name,
                content_type=prepared.content_type,
            )
        except TransientStorageError:
            raise
        except StorageError:
            return UploadResult(upload.file_name, UploadOutcome.FAILED, reason="storage_rejected")
        upload_file_size_bytes.observe(len(prepared.payload))

        photo = existing or Photo(
            user_id=user_id,
            provider=MANUAL_UPLOAD,
            file_hash=digest,
            storage_path=storage_path,
            filename=prepared.file_name,
            mime_type=prepared.content_type,
            file_size=len(prepared.payload),
            width=prepared.width,
            height=prepared.height,
            orientation=prepared.orientation,
            date_taken=prepared.taken_at,
            camera_data=prepared.camera,
            dominant_color=prepared.accent,
        )

        try:
            result = await self.scoring.score(prepared.payload, prepared.file_name, prepared.content_type)
        except TransientScoringError:
            raise
        except (RateLimitedError, QuotaExhaustedError) as e:
            # Keep the stored upload; the auto-analyze sweep scores it later
            saved = photo if existing is not None else await self.add_photo(photo)
            logger.warning(
                "Scoring unavailable, photo stored unscored",
                extra={"event": "upload", "user_id": user_id, "error_type": type(e).__name__},
            )
            return UploadResult(
                upload.file_name,
                UploadOutcome.FAILED,
                photo_id=saved.id if saved is not None else None,
                reason="scoring_unavailable",
            )
        except ScoringError:
            return UploadResult(upload.file_name, UploadOutcome.FAILED, reason="scoring_failed")

        scored = evaluate(result, weights)
        photo.apply_score(scored)
        if existing is None:
            saved = await self.add_photo(photo)
            if saved is None:
                return UploadResult(upload.file_name, UploadOutcome.SKIPPED, reason="duplicate")
        else:
            await self.db.flush()

        photos_scored_total.labels(tier=scored.tier.value, source="upload").inc()
        logger.info(
            "Photo uploaded",
            extra={
                "event": "upload",
                "photo_id": photo.id,
                "user_id": user_id,
                "tier": scored.tier.value,
                "overall": scored.overall,
            },
        )
        return UploadResult(
            upload.file_name, UploadOutcome.SUCCESS, tier=scored.tier, photo_id=photo.id
        )

