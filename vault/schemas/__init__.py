"""
Pydantic schemas package.
All schemas are exported here for easy import.
"""
from vault.schemas.user import (
    ScoreWeightsResponse,
    ScoreWeightsUpdate,
    TokenPayload,
    UserResponse,
)
from vault.schemas.photo import (
    AnalyzePendingResponse,
    PhotoResponse,
    PhotoStatsResponse,
    PhotoUrlResponse,
    ShowcaseResponse,
    TierStats,
)
from vault.schemas.upload import (
    UploadCancelResponse,
    UploadScanResponse,
    UploadStartResponse,
    UploadStats,
    UploadStatusResponse,
)
from vault.schemas.sync_job import (
    AutoSyncResponse,
    SyncFiltersIn,
    SyncJobCreate,
    SyncJobResponse,
)
from vault.schemas.provider import ProviderCapabilitiesResponse, ProviderResponse

__all__ = [
    # User schemas
    "UserResponse",
    "TokenPayload",
    "ScoreWeightsResponse",
    "ScoreWeightsUpdate",
    # Photo schemas
    "PhotoResponse",
    "PhotoUrlResponse",
    "PhotoStatsResponse",
    "TierStats",
    "AnalyzePendingResponse",
    "ShowcaseResponse",
    # Upload schemas
    "UploadStats",
    "UploadStatusResponse",
    "UploadStartResponse",
    "UploadCancelResponse",
    "UploadScanResponse",
    # Sync job schemas
    "SyncFiltersIn",
    "SyncJobCreate",
    "SyncJobResponse",
    "AutoSyncResponse",
    # Provider schemas
    "ProviderResponse",
    "ProviderCapabilitiesResponse",
]
