"""
Batch upload schemas.
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class UploadStats(BaseModel):
    """Aggregate counters of the user's current or last upload run."""

    total: int
    processed: int
    successful: int
    failed: int
    skipped: int
    vault_worthy: int
    high_value: int
    archive: int
    current_file: Optional[str] = None
    start_time: Optional[datetime] = None
    errors: list[str] = []

    model_config = ConfigDict(from_attributes=True)


class UploadStatusResponse(BaseModel):
    state: str
    stats: UploadStats


class UploadStartResponse(BaseModel):
    started: bool
    stats: UploadStats


class UploadCancelResponse(BaseModel):
    cancelled: bool
    state: str


class UploadScanResponse(BaseModel):
    """Dry-run result: counts per filter plus estimates for the remaining files."""

    total_files: int
    total_size: int
    valid_files: int
    duplicates: int
    screenshots: int
    small_files: int
    unreadable: int
    estimated_cost: float
    estimated_minutes: int

    model_config = ConfigDict(from_attributes=True)
