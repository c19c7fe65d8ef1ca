"""
FastAPI Vault API application.

Main application entry point that configures:
- CORS middleware
- API routers
- Database lifecycle
- Logging system
- Exception handlers
- Prometheus metrics (/metrics 스크래핑)
- 백그라운드 작업: 중단된 동기화 작업 복구, auto-sync 루프
- Graceful shutdown (업로드 취소, 동기화 runner 종료)
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from vault.config import get_settings
from vault.database import async_session_maker, close_db, init_db
from vault.middlewares.logging_middleware import LoggingMiddleware
from vault.routers import (
    health_router,
    photos_router,
    providers_router,
    settings_router,
    sync_jobs_router,
    uploads_router,
)
from vault.services.auto_sync import auto_sync_loop
from vault.services.sync_job import get_sync_dispatcher, resume_orphaned_jobs
from vault.services.upload_orchestrator import get_upload_manager
from vault.utils.logger import get_request_id, log_error, log_info, setup_logging
from vault.utils.metrics import exceptions_total, ready, setup_prometheus

settings = get_settings()
logger = logging.getLogger("vault")

setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan.

    시작 시 이전 프로세스와 함께 종료된 runner의 동기화 작업을 다시 dispatch합니다.

    Graceful shutdown 흐름:
    1. Health check 즉시 실패 (ready=0)
    2. auto-sync 루프 종료
    3. 업로드 실행 취소 (처리 중인 배치는 완료)
    4. 동기화 runner 종료. 작업은 커서를 유지하고 lease 만료 후 다른 인스턴스가 이어서 실행
    5. DB 연결 종료
    """
    await init_db()
    dispatcher = get_sync_dispatcher()
    await resume_orphaned_jobs(async_session_maker, dispatcher.dispatch)

    auto_sync_task: Optional[asyncio.Task] = None
    if settings.auto_sync_enabled:
        auto_sync_task = asyncio.create_task(
            auto_sync_loop(
                async_session_maker,
                settings.auto_sync_interval_seconds,
                dispatch=dispatcher.dispatch,
            )
        )

    ready.set(1)
    log_info(
        "Application startup completed",
        event="lifecycle",
        version=settings.app_version,
        environment=settings.environment.value,
        auto_sync=settings.auto_sync_enabled,
    )

    yield

    ready.set(0)  # Health check 즉시 실패 (로드밸런서가 새 요청 차단)
    log_info("Application shutdown initiated", event="lifecycle")

    if auto_sync_task is not None:
        auto_sync_task.cancel()
        try:
            await auto_sync_task
        except asyncio.CancelledError:
            pass

    await get_upload_manager().cancel_all()
    await dispatcher.shutdown()
    # DB 연결 종료
    await close_db()

    log_info("Graceful shutdown completed", event="lifecycle")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="""
## Vault API

Photo ingestion and scoring service.

### Features
- **Batch uploads**: screenshot/size/duplicate filtering, HEIC conversion, compression
- **Scoring**: every photo graded by the scoring service and tiered (elite, stars, archive)
- **Provider sync**: resumable, pausable imports from connected photo libraries
- **Auto-sync**: periodic sync of connections that are due

### Authentication
Endpoints require a Bearer token. The auto-sync trigger uses the
`X-Scheduler-Secret` header instead.
    """,
    openapi_tags=[
        {"name": "Uploads", "description": "Batch photo uploads"},
        {"name": "Photos", "description": "Scored photos, tiers and signed URLs"},
        {"name": "Sync Jobs", "description": "Provider sync jobs"},
        {"name": "Providers", "description": "Photo sources and capabilities"},
        {"name": "Settings", "description": "Score weights"},
    ],
    lifespan=lifespan,
)

# Prometheus: FastAPI metrics + node info at /metrics
setup_prometheus(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(LoggingMiddleware)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """
    Global exception handler.

    처리되지 않은 예외를 캐치하여:
    - ERROR 로그 남김 (구조화된 포맷)
    - 500 응답 반환 (Request ID 포함, 장애 추적용)
    """
    exceptions_total.inc()
    rid = get_request_id()

    log_error(
        "Unhandled exception occurred",
        error_type=type(exc).__name__,
        error_message=str(exc),
        error_code="INTERNAL_SERVER_ERROR",
        http_method=request.method,
        http_path=request.url.path,
        request_id=rid,
        event="exception",
        exc_info=True,
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "detail": "Internal server error",
            "request_id": rid,
        },
    )


app.include_router(health_router)
app.include_router(uploads_router)
app.include_router(photos_router)
app.include_router(sync_jobs_router)
app.include_router(providers_router)
app.include_router(settings_router)


@app.get(
    "/",
    tags=["Root"],
    summary="API information",
)
async def root():
    """
    Root endpoint with API information.
    """
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs",
    }
