"""
Prometheus metrics.

- FastAPI: request count, latency (Instrumentator)
- Stability: exceptions_total, db_errors_total, external request errors
- HA: ready gauge (1=up, 0=shutting down)
- Pipeline: upload outcomes, sync item outcomes, sync job transitions, scoring results
"""
import socket
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from prometheus_client import REGISTRY, Counter, Gauge, Histogram
from prometheus_fastapi_instrumentator import Instrumentator

# --- Stability ---
exceptions_total = Counter(
    "vault_exceptions_total",
    "Total unhandled exceptions",
    registry=REGISTRY,
)
db_errors_total = Counter(
    "vault_db_errors_total",
    "Total database session/transaction errors",
    registry=REGISTRY,
)
external_request_errors_total = Counter(
    "vault_external_request_errors_total",
    "Total external API request failures",
    ["service"],
    registry=REGISTRY,
)
# 외부 서비스 요청 수 (성공/실패 구분). 에러율·성공률 계산용
external_request_total = Counter(
    "vault_external_request_total",
    "Total external API requests by service and outcome",
    ["service", "status"],  # status: success | failure
    registry=REGISTRY,
)

# --- HA ---
ready = Gauge(
    "vault_ready",
    "Application ready (1=up, 0=shutting down)",
    registry=REGISTRY,
)

# --- Performance ---
external_request_duration_seconds = Histogram(
    "vault_external_request_duration_seconds",
    "External API request duration in seconds",
    ["service", "result"],  # result: success | failure
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
    registry=REGISTRY,
)

# --- Upload pipeline ---
# 업로드 실행: 파일별 결과, 실행 종료 상태, 진행 중인 실행 수
upload_files_total = Counter(
    "vault_upload_files_total",
    "Files processed by batch upload runs",
    ["outcome"],  # success | failed | skipped
    registry=REGISTRY,
)
upload_runs_total = Counter(
    "vault_upload_runs_total",
    "Batch upload runs by terminal state",
    ["result"],  # completed | cancelled
    registry=REGISTRY,
)
upload_runs_active = Gauge(
    "vault_upload_runs_active",
    "Batch upload runs currently in progress",
    registry=REGISTRY,
)
upload_file_size_bytes = Histogram(
    "vault_upload_file_size_bytes",
    "Stored (compressed) photo size in bytes",
    buckets=(10240, 102400, 256000, 512000, 1048576, 2097152, 5242880),
    registry=REGISTRY,
)

# --- Scoring ---
scoring_requests_total = Counter(
    "vault_scoring_requests_total",
    "Scoring oracle calls by result",
    ["result"],  # success | rate_limited | quota_exhausted | transient | error
    registry=REGISTRY,
)
photos_scored_total = Counter(
    "vault_photos_scored_total",
    "Photos scored by tier",
    ["tier", "source"],  # source: upload | sync | auto_analyze
    registry=REGISTRY,
)

# --- Sync jobs ---
# 동기화: provider 항목별 결과와 작업 상태 전이
sync_items_total = Counter(
    "vault_sync_items_total",
    "Provider items examined by sync runners",
    ["outcome"],  # imported | skipped | failed
    registry=REGISTRY,
)
sync_job_transitions_total = Counter(
    "vault_sync_job_transitions_total",
    "Sync job status transitions",
    ["to_status"],
    registry=REGISTRY,
)
auto_sync_triggered_total = Counter(
    "vault_auto_sync_triggered_total",
    "Sync jobs created by the auto-sync sweep",
    registry=REGISTRY,
)


def _node_identity() -> str:
    """노드/인스턴스 식별자: INSTANCE_ID 환경변수, 없으면 hostname."""
    from vault.config import get_settings

    settings = get_settings()
    if settings.instance_id:
        return settings.instance_id
    try:
        return socket.gethostname()
    except OSError:
        return "unknown"


@asynccontextmanager
async def record_external_request(service: str) -> AsyncGenerator[None, None]:
    """
    Context manager to record external request duration, total count, and errors.
    blob 저장소, 점수 서비스, 사진 provider HTTP 호출을 감싸서 사용합니다.
    """
    start = time.perf_counter()
    exc_raised = None
    try:
        yield
    except Exception as e:
        exc_raised = e
        external_request_errors_total.labels(service=service).inc()
        external_request_total.labels(service=service, status="failure").inc()
        raise
    finally:
        duration = time.perf_counter() - start
        result = "failure" if exc_raised is not None else "success"
        if exc_raised is None:
            external_request_total.labels(service=service, status="success").inc()
        external_request_duration_seconds.labels(service=service, result=result).observe(duration)


def setup_prometheus(app) -> None:
    """
    Register Prometheus instrumentation.

    1. app_info gauge (노드 식별).
    2. Instrumentator (FastAPI 요청 메트릭).
    3. /metrics 엔드포인트 노출 (스크래핑용).
    """
    from vault.config import get_settings

    settings = get_settings()
    app_info = Gauge(
        "vault_app_info",
        "Application and node identity (labels only, value is 1)",
        ["node", "app", "version", "environment"],
        registry=REGISTRY,
    )
    app_info.labels(
        node=_node_identity(),
        app=settings.app_name,
        version=settings.app_version,
        environment=settings.environment.value,
    ).set(1)

    # status 라벨을 2xx/3xx 대신 구체 코드(200, 404, 500 등)로 노출
    Instrumentator(should_group_status_codes=False).instrument(app).expose(
        app, endpoint="/metrics"
    )
