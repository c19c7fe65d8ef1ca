"""
Sync jobs router.

연결된 provider에서 사진을 가져오는 동기화 작업의 생성, 조회, 일시정지, 재개, 재시도를 제공합니다.
실패한 작업은 row에 저장된 일반 메시지만 반환하고, 내부 오류 내용은 로그에만 남깁니다.
"""
import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from vault.database import async_session_maker, get_db
from vault.dependencies.auth import get_current_active_user, require_scheduler_secret
from vault.models.user import User
from vault.schemas.sync_job import AutoSyncResponse, SyncJobCreate, SyncJobResponse
from vault.services.auto_sync import run_auto_sync
from vault.services.sync_job import (
    InvalidTransitionError,
    ProviderNotConnectedError,
    ProviderNotSyncableError,
    SyncJobActiveError,
    SyncJobNotFoundError,
    SyncJobDispatcher,
    SyncJobService,
    get_sync_dispatcher,
)

logger = logging.getLogger("vault.sync_jobs")
router = APIRouter(prefix="/sync-jobs", tags=["Sync Jobs"])


def _not_found() -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Sync job not found")


def _conflict(e: InvalidTransitionError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail=f"Sync job is {e.current.value}",
    )


@router.post(
    "",
    response_model=SyncJobResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Start a sync from a connected provider",
)
async def create_sync_job(
    body: SyncJobCreate,
    db: AsyncSession = Depends(get_db),
    dispatcher: SyncJobDispatcher = Depends(get_sync_dispatcher),
    current_user: User = Depends(get_current_active_user),
) -> SyncJobResponse:
    filters = body.filters.overrides() if body.filters else None
    try:
        service = SyncJobService(db, dispatch=dispatcher.dispatch)
        job = await service.create_job(current_user.id, body.provider_id, filters)
    except ProviderNotConnectedError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Provider not connected")
    except ProviderNotSyncableError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Provider does not support sync")
    except SyncJobActiveError:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="A sync is already in progress")
    except ValueError:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="Invalid sync filters")
    return SyncJobResponse.model_validate(job)


@router.get("", response_model=List[SyncJobResponse], summary="Recent sync jobs")
async def list_sync_jobs(
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> List[SyncJobResponse]:
    jobs = await SyncJobService(db).list_jobs(current_user.id, limit)
    return [SyncJobResponse.model_validate(j) for j in jobs]


@router.post("/auto-sync", response_model=AutoSyncResponse, summary="Run the auto-sync sweep")
async def trigger_auto_sync(
    _: None = Depends(require_scheduler_secret),
) -> AutoSyncResponse:
    """Entry point for an external cron; guarded by the X-Scheduler-Secret header."""
    summary = await run_auto_sync(async_session_maker)
    return AutoSyncResponse(**summary.to_dict())


@router.get("/{job_id}", response_model=SyncJobResponse, summary="Sync job progress")
async def get_sync_job(
    job_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> SyncJobResponse:
    try:
        job = await SyncJobService(db).get_job(job_id, current_user.id)
    except SyncJobNotFoundError:
        raise _not_found()
    return SyncJobResponse.model_validate(job)


@router.post("/{job_id}/pause", response_model=SyncJobResponse, summary="Pause a running sync")
async def pause_sync_job(
    job_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> SyncJobResponse:
    try:
        job = await SyncJobService(db).pause(job_id, current_user.id)
    except SyncJobNotFoundError:
        raise _not_found()
    except InvalidTransitionError as e:
        raise _conflict(e)
    return SyncJobResponse.model_validate(job)


@router.post("/{job_id}/resume", response_model=SyncJobResponse, summary="Resume a paused sync")
async def resume_sync_job(
    job_id: int,
    db: AsyncSession = Depends(get_db),
    dispatcher: SyncJobDispatcher = Depends(get_sync_dispatcher),
    current_user: User = Depends(get_current_active_user),
) -> SyncJobResponse:
    try:
        job = await SyncJobService(db, dispatch=dispatcher.dispatch).resume(job_id, current_user.id)
    except SyncJobNotFoundError:
        raise _not_found()
    except InvalidTransitionError as e:
        raise _conflict(e)
    return SyncJobResponse.model_validate(job)


@router.post("/{job_id}/retry", response_model=SyncJobResponse, summary="Retry a failed sync")
async def retry_sync_job(
    job_id: int,
    db: AsyncSession = Depends(get_db),
    dispatcher: SyncJobDispatcher = Depends(get_sync_dispatcher),
    current_user: User = Depends(get_current_active_user),
) -> SyncJobResponse:
    try:
        job = await SyncJobService(db, dispatch=dispatcher.dispatch).retry(job_id, current_user.id)
    except SyncJobNotFoundError:
        raise _not_found()
    except InvalidTransitionError as e:
        raise _conflict(e)
    return SyncJobResponse.model_validate(job)
