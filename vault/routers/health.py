"""
Health Check 라우터.

애플리케이션의 상태를 확인하는 엔드포인트를 제공합니다.
"""
import asyncio
import logging
import time
from typing import Any, Dict

from fastapi import APIRouter, HTTPException, status
from sqlalchemy import text

from vault.config import get_settings
from vault.database import engine
from vault.services.sync_job import get_sync_dispatcher
from vault.services.upload_orchestrator import get_upload_manager
from vault.utils.metrics import REGISTRY, Gauge, ready

logger = logging.getLogger("vault.health")
router = APIRouter(prefix="/health", tags=["Health"])

settings = get_settings()

# Health check 상태 메트릭
health_check_status = Gauge(
    "vault_health_check_status",
    "Health check status (1=healthy, 0=unhealthy)",
    ["check_type"],
    registry=REGISTRY,
)


async def _check_db() -> None:
    async with engine.begin() as conn:
        await conn.execute(text("SELECT 1"))


@router.get("", summary="Health check (fast)")
async def health_check() -> Dict[str, Any]:
    """
    빠른 Health Check (로드밸런서용).

    - 종료 중(ready=0)이면 즉시 503
    - DB 연결은 간단히 확인 (타임아웃 1초)
    - 이 인스턴스에서 실행 중인 동기화 runner와 업로드 실행 수를 함께 반환
    """
    start_time = time.perf_counter()

    # Ready 상태 확인
    if ready._value.get() == 0:
        health_check_status.labels(check_type="fast").set(0)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Application is shutting down",
        )

    # DB 연결 간단 확인 (타임아웃 1초)
    try:
        await asyncio.wait_for(_check_db(), timeout=1.0)
    except asyncio.TimeoutError:
        logger.warning("DB health check timeout", extra={"event": "health"})
        health_check_status.labels(check_type="fast").set(0)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database connection timeout",
        )
    except Exception as e:
        logger.warning(
            "DB health check failed",
            extra={"event": "health", "error_type": type(e).__name__},
        )
        health_check_status.labels(check_type="fast").set(0)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database connection failed",
        )

    health_check_status.labels(check_type="fast").set(1)
    return {
        "status": "healthy",
        "duration_ms": round((time.perf_counter() - start_time) * 1000, 2),
        "instance": settings.instance_id or "unknown",
        "sync_runners": get_sync_dispatcher().active,
        "upload_runs": get_upload_manager().active,
    }


@router.get("/liveness", summary="Liveness check")
async def liveness_check() -> Dict[str, str]:
    """
    Liveness check.

    애플리케이션이 살아있는지만 확인합니다. 종료 중에는 503을 반환합니다.
    """
    if ready._value.get() == 0:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Application is shutting down",
        )
    return {"status": "alive"}
