"""
Application configuration using Pydantic Settings.
Manages all environment variables and settings.
"""
import os
from enum import Enum
from functools import lru_cache
from pydantic_settings import BaseSettings
from pydantic import Field, field_validator, model_validator

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./vault.db"


class Environment(str, Enum):
    """Application environment modes."""
    DEV = "DEV"
    PRODUCTION = "PRODUCTION"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Environment
    environment: Environment = Field(
        default=Environment.DEV,
        description="Application environment: DEV or PRODUCTION"
    )

    # Application
    app_name: str = Field(default="Vault API")
    app_version: str = Field(default="1.0.0")
    debug: bool = Field(default=False)

    @model_validator(mode='after')
    def set_debug_from_environment(self):
        """Set debug mode based on environment if not explicitly set via environment variable."""
        # DEBUG 환경 변수가 명시적으로 설정되지 않은 경우에만 환경 모드에 따라 설정
        if 'DEBUG' not in os.environ:
            self.debug = self.environment == Environment.DEV
        return self

    @property
    def is_dev(self) -> bool:
        """Check if running in development mode."""
        return self.environment == Environment.DEV

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == Environment.PRODUCTION

    # Database (빈 문자열이면 기본값 사용, 로컬 SQLite)
    database_url: str = Field(default=DEFAULT_DATABASE_URL)
    db_pool_size: int = Field(default=10)
    db_max_overflow: int = Field(default=20)
    db_pool_timeout: int = Field(default=30)
    db_pool_recycle: int = Field(default=1800)

    @field_validator("database_url", mode="before")
    @classmethod
    def coerce_empty_database_url(cls, v: str) -> str:
        if not v or not str(v).strip():
            return DEFAULT_DATABASE_URL
        return v

    # JWT (토큰은 외부 인증 서비스에서 발급)
    jwt_secret_key: str = Field(default="jwt-secret-change-in-production")
    jwt_algorithm: str = Field(default="HS256")
    access_token_expire_minutes: int = Field(default=30)

    # Blob storage (쓰기/읽기는 Swift 형식 object API, 임시 URL은 S3 API 서명)
    storage_url: str = Field(
        default="http://localhost:9000/v1",
        description="Object storage base URL; objects live at {storage_url}/{container}/{object}",
    )
    storage_container: str = Field(default="photos")
    storage_token: str = Field(default="", description="Auth token sent as X-Auth-Token")
    storage_timeout_seconds: float = Field(default=60.0)
    s3_access_key: str = Field(default="", description="S3 API access key for signed URLs")
    s3_secret_key: str = Field(default="", description="S3 API secret key for signed URLs")
    s3_endpoint_url: str = Field(default="http://localhost:9000")
    s3_region_name: str = Field(default="us-east-1")
    signed_url_expire_seconds: int = Field(default=3600, description="Default signed URL lifetime")

    # Scoring oracle
    scoring_url: str = Field(
        default="http://localhost:8081/analyze-photo",
        description="Endpoint that grades one image and returns sub-scores plus analysis",
    )
    scoring_api_key: str = Field(default="")
    scoring_timeout_seconds: float = Field(default=120.0)
    scoring_rate_limit_cooldown_seconds: float = Field(
        default=60.0,
        description="Wait applied once after an HTTP 429 before the single retry",
    )

    # Batch upload pipeline
    upload_batch_size: int = Field(default=10, ge=1)
    upload_inter_batch_delay_seconds: float = Field(default=0.5, ge=0)
    upload_max_attempts: int = Field(default=3, ge=1)
    upload_initial_backoff_seconds: float = Field(default=2.0, ge=0)
    upload_min_file_size_kb: int = Field(default=100, ge=0)
    compress_max_dimension: int = Field(default=1920)
    compress_max_bytes: int = Field(default=1024 * 1024)
    compress_quality: int = Field(default=85, ge=1, le=95)
    heic_jpeg_quality: int = Field(default=90, ge=1, le=95)
    # 사전 스캔(dry run) 예상 비용/시간
    scan_cost_per_photo: float = Field(default=0.002, ge=0, description="Scoring cost estimate per photo (USD)")
    scan_seconds_per_photo: float = Field(default=3.0, ge=0, description="Processing time estimate per photo")

    # Auto-analyze sweep (점수 없이 저장된 사진 재분석)
    auto_analyze_max_attempts: int = Field(
        default=3, ge=1, description="Terminal failures after which a photo is left out of the sweep"
    )

    # Sync jobs
    sync_inter_item_delay_seconds: float = Field(default=2.0, ge=0)
    sync_page_size: int = Field(default=50, ge=1, le=100)
    sync_lease_seconds: int = Field(default=900, description="Runner lease lifetime, renewed on progress")
    sync_max_attempts: int = Field(default=3, ge=1, description="Attempts per page listing and per item")

    # Google Photos provider (토큰 갱신용 OAuth2 client 정보)
    google_client_id: str = Field(default="")
    google_client_secret: str = Field(default="")
    google_token_url: str = Field(default="https://oauth2.googleapis.com/token")
    google_photos_api_base: str = Field(default="https://photoslibrary.googleapis.com/v1")
    google_download_width: int = Field(default=2048)

    # Auto sync
    auto_sync_enabled: bool = Field(default=False, description="Run the auto-sync sweep in-process")
    auto_sync_interval_seconds: int = Field(default=3600)
    auto_sync_secret: str = Field(default="", description="Shared secret for the external cron trigger")

    # Default score weights (relative, need not sum to 100)
    default_technical_weight: int = Field(default=70)
    default_commercial_weight: int = Field(default=80)
    default_artistic_weight: int = Field(default=60)
    default_emotional_weight: int = Field(default=50)

    # 로깅: 디렉터리 설정 시에만 NDJSON 파일 기록
    log_dir: str = Field(default="", description="Directory for app.log / error.log (empty disables)")
    instance_id: str = Field(default="", description="Instance identifier for logs and metrics")

    @field_validator("auto_sync_interval_seconds", mode="before")
    @classmethod
    def coerce_auto_sync_interval(cls, v: object) -> int:
        if v is None or v == "":
            return 3600
        return int(v)

    class Config:
        # 환경변수만 사용 (.env 파일 미사용)
        env_file = None
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Using lru_cache to avoid re-reading the environment on every request.
    """
    return Settings()
