"""
Sync job schemas.
"""
from datetime import datetime, timezone
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from vault.models.sync_job import SyncJobStatus


class SyncFiltersIn(BaseModel):
    """Filter overrides for a new job; unset fields fall back to the connection's settings."""

    excludeScreenshots: Optional[bool] = None
    onlyCamera: Optional[bool] = None
    minFileSize: Optional[int] = Field(None, ge=0, description="Bytes")
    dateRange: Optional[Literal["all", "last_year", "last_5_years", "custom"]] = None
    customStart: Optional[datetime] = None
    customEnd: Optional[datetime] = None

    @field_validator("customStart", "customEnd", mode="before")
    @classmethod
    def blank_as_none(cls, value: Any) -> Any:
        return None if value == "" else value

    @field_validator("customStart", "customEnd")
    @classmethod
    def naive_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        """Stored timestamps are naive UTC."""
        if value is not None and value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    def overrides(self) -> dict[str, Any]:
        data = self.model_dump(exclude_none=True)
        for key in ("customStart", "customEnd"):
            if key in data:
                data[key] = data[key].isoformat()
        return data


class SyncJobCreate(BaseModel):
    provider_id: int = Field(..., description="Connected provider id")
    filters: Optional[SyncFiltersIn] = None


class SyncJobResponse(BaseModel):
    """Schema for sync job response. Failure detail is always the generic message."""

    id: int
    provider_id: int
    status: SyncJobStatus
    total_count: Optional[int] = None
    processed_count: int
    vault_worthy_count: int
    high_value_count: int
    archive_count: int
    skipped_count: int
    failed_count: int
    filters: dict[str, Any]
    retry_count: int
    error_message: Optional[str] = None
    last_error_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AutoSyncResultResponse(BaseModel):
    provider_id: int
    user_id: int
    status: str
    sync_job_id: Optional[int] = None
    reason: Optional[str] = None


class AutoSyncResponse(BaseModel):
    results: list[AutoSyncResultResponse]
    total: int
    triggered: int
    skipped: int
    errors: int
