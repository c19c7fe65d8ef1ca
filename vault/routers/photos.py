"""
Photos router: listing, signed URLs, tier stats and the auto-analyze sweep.

점수가 매겨진 사진 목록, tier별 통계, 임시 조회 URL을 제공합니다.
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from vault.config import get_settings
from vault.database import async_session_maker, get_db
from vault.dependencies.auth import get_current_active_user
from vault.models.user import User
from vault.schemas.photo import (
    AnalyzePendingResponse,
    PhotoResponse,
    PhotoStatsResponse,
    PhotoUrlResponse,
    ShowcaseResponse,
    TierStats,
)
from vault.services.auto_analyze import analyze_pending
from vault.services.curation import LayoutPhoto, curate_layout, portfolio_value, tier_value
from vault.services.object_storage import StorageError
from vault.services.photo import PhotoService
from vault.services.scoring import PhotoTier

logger = logging.getLogger("vault.photos")
router = APIRouter(prefix="/photos", tags=["Photos"])

# showcase 레이아웃 후보 사진 수 (점수 상위)
SHOWCASE_CANDIDATES = 20


@router.get("", response_model=List[PhotoResponse], summary="List photos, best first")
async def list_photos(
    tier: Optional[PhotoTier] = Query(None, description="Only photos of this tier"),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> List[PhotoResponse]:
    photos = await PhotoService(db).list_photos(current_user.id, tier=tier, skip=skip, limit=limit)
    return [PhotoResponse.model_validate(p) for p in photos]


@router.get("/stats", response_model=PhotoStatsResponse, summary="Tier counts and portfolio value")
async def photo_stats(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> PhotoStatsResponse:
    counts = await PhotoService(db).tier_counts(current_user.id)
    return PhotoStatsResponse(
        tiers={tier: TierStats(count=count, value=tier_value(count, tier)) for tier, count in counts.items()},
        total_photos=sum(counts.values()),
        total_value=portfolio_value(counts),
    )


@router.get("/showcase", response_model=ShowcaseResponse, summary="Curated showcase layout")
async def photo_showcase(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> ShowcaseResponse:
    photos = await PhotoService(db).list_photos(current_user.id, limit=SHOWCASE_CANDIDATES)
    layout = curate_layout(LayoutPhoto.from_photo(p) for p in photos if p.is_scored)
    return ShowcaseResponse(
        hero=layout.hero.id if layout.hero else None,
        secondary=[p.id for p in layout.secondary],
        tertiary=[p.id for p in layout.tertiary],
        strip=[p.id for p in layout.strip],
    )


@router.get("/{photo_id}/url", response_model=PhotoUrlResponse, summary="Temporary read URL")
async def photo_url(
    photo_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> PhotoUrlResponse:
    service = PhotoService(db)
    photo = await service.get_photo(photo_id, current_user.id)
    if photo is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Photo not found")
    if not photo.storage_path:
        # provider에서 가져온 사진은 blob 저장소에 파일이 없음
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Photo has no stored file")

    expires_in = get_settings().signed_url_expire_seconds
    try:
        url = service.signed_url(photo, expires_in)
    except StorageError:
        logger.warning(
            "Signed URL creation failed",
            extra={"event": "storage", "photo_id": photo.id, "user_id": current_user.id},
        )
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="사진 URL 생성에 실패했습니다. 잠시 후 다시 시도해주세요.",
        )
    return PhotoUrlResponse(id=photo.id, url=url, expires_in=expires_in)


@router.post(
    "/analyze-pending",
    response_model=AnalyzePendingResponse,
    summary="Score stored photos that have no score yet",
)
async def analyze_pending_photos(
    limit: int = Query(10, ge=1, le=50),
    current_user: User = Depends(get_current_active_user),
) -> AnalyzePendingResponse:
    """
    Score stored photos that have no score yet.

    업로드 중 점수 서비스가 거부(rate limit, quota)해서 점수 없이 저장된 사진을 다시 분석합니다.
    점수 서비스가 다시 거부하면 중단하고 `stopped_reason`을 반환합니다.
    """
    summary = await analyze_pending(current_user.id, async_session_maker, limit=limit)
    return AnalyzePendingResponse(
        analyzed=summary.analyzed,
        failed=summary.failed,
        stopped_reason=summary.stopped_reason,
    )
