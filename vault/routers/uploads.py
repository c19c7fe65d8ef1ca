"""
Batch upload router.

사용자당 하나의 오케스트레이터가 백그라운드에서 파일을 처리합니다.
이 라우터는 실행 시작, 진행 상황 조회, 취소 요청과 사전 스캔(dry run)을 제공합니다.
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from vault.database import get_db
from vault.dependencies.auth import get_current_active_user
from vault.models.user import User
from vault.schemas.upload import (
    UploadCancelResponse,
    UploadScanResponse,
    UploadStartResponse,
    UploadStats,
    UploadStatusResponse,
)
from vault.services.photo import PhotoService
from vault.services.photo import UploadFile as IncomingFile
from vault.services.preprocessor import FilterOptions
from vault.services.providers import ProviderKind, get_provider_registry
from vault.services.upload_orchestrator import UploadManager, get_upload_manager

logger = logging.getLogger("vault.uploads")
router = APIRouter(prefix="/uploads", tags=["Uploads"])


async def _read_files(files: List[UploadFile]) -> list[IncomingFile]:
    # 파일 크기 제한은 manual_upload provider 설정을 따름
    max_size = get_provider_registry().get(ProviderKind.MANUAL_UPLOAD).capabilities.max_file_size
    incoming = []
    for file in files:
        data = await file.read()
        if len(data) > max_size:
            raise HTTPException(
                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                detail=f"File too large: {file.filename}",
            )
        incoming.append(
            IncomingFile(
                file_name=file.filename or "upload",
                content_type=file.content_type or "application/octet-stream",
                data=data,
            )
        )
    return incoming


def _filter_options(
    skip_small_files: bool,
    min_file_size_kb: Optional[int],
    skip_screenshots: bool,
    skip_existing: bool,
) -> FilterOptions:
    return FilterOptions.from_settings(
        skip_small_files=skip_small_files,
        min_file_size=min_file_size_kb * 1024 if min_file_size_kb is not None else None,
        skip_screenshots=skip_screenshots,
        skip_existing=skip_existing,
    )


@router.post(
    "",
    response_model=UploadStartResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Start a batch upload run",
)
async def start_upload(
    files: List[UploadFile] = File(..., description="Photos to ingest, processed in order"),
    skip_small_files: bool = Form(True),
    min_file_size_kb: Optional[int] = Form(None, ge=0),
    skip_screenshots: bool = Form(True),
    skip_existing: bool = Form(True),
    manager: UploadManager = Depends(get_upload_manager),
    current_user: User = Depends(get_current_active_user),
) -> UploadStartResponse:
    """
    Start processing the files in the background.

    이미 실행 중인 업로드가 있으면 아무것도 하지 않고 ``started=false``를 반환합니다.
    진행 상황은 `/uploads/status`로 조회합니다.
    """
    orchestrator = manager.get(current_user.id)
    if orchestrator.is_busy:
        return UploadStartResponse(started=False, stats=UploadStats(**orchestrator.stats.to_dict()))

    incoming = await _read_files(files)
    options = _filter_options(skip_small_files, min_file_size_kb, skip_screenshots, skip_existing)
    started = orchestrator.start(incoming, options)
    logger.info(
        "Upload run requested",
        extra={"event": "upload", "user_id": current_user.id, "files": len(incoming), "started": started},
    )
    return UploadStartResponse(started=started, stats=UploadStats(**orchestrator.stats.to_dict()))


@router.post("/scan", response_model=UploadScanResponse, summary="Dry run of the upload filters")
async def scan_upload(
    files: List[UploadFile] = File(..., description="Photos that would be uploaded"),
    skip_small_files: bool = Form(True),
    min_file_size_kb: Optional[int] = Form(None, ge=0),
    skip_screenshots: bool = Form(True),
    skip_existing: bool = Form(True),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> UploadScanResponse:
    """
    Report what an upload of these files would do.

    업로드와 동일한 필터와 해시 중복 검사를 적용하지만 저장이나 점수 산정은 하지 않습니다.
    예상 비용과 소요 시간(분)은 업로드 대상 파일 수 기준입니다.
    """
    incoming = await _read_files(files)
    options = _filter_options(skip_small_files, min_file_size_kb, skip_screenshots, skip_existing)
    report = await PhotoService(db).scan_uploads(current_user.id, incoming, options)
    logger.info(
        "Upload scan completed",
        extra={"event": "upload", "user_id": current_user.id, "files": report.total_files, "valid": report.valid_files},
    )
    return UploadScanResponse.model_validate(report)


@router.get("/status", response_model=UploadStatusResponse, summary="Current upload run stats")
async def upload_status(
    manager: UploadManager = Depends(get_upload_manager),
    current_user: User = Depends(get_current_active_user),
) -> UploadStatusResponse:
    orchestrator = manager.get(current_user.id)
    return UploadStatusResponse(
        state=orchestrator.state.value,
        stats=UploadStats(**orchestrator.stats.to_dict()),
    )


@router.post("/cancel", response_model=UploadCancelResponse, summary="Cancel the active upload run")
async def cancel_upload(
    manager: UploadManager = Depends(get_upload_manager),
    current_user: User = Depends(get_current_active_user),
) -> UploadCancelResponse:
    """
    Request cancellation of the active run.

    처리 중인 배치는 끝까지 완료되고, 이후 배치는 시작되지 않습니다.
    """
    orchestrator = manager.get(current_user.id)
    cancelled = orchestrator.cancel()
    return UploadCancelResponse(cancelled=cancelled, state=orchestrator.state.value)
