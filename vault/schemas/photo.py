"""
Photo-related Pydantic schemas for request/response validation.
"""
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, computed_field

from vault.services.scoring import PhotoTier


class PhotoResponse(BaseModel):
    """Schema for photo response."""

    id: int
    provider: str
    external_id: Optional[str] = None
    filename: str
    mime_type: Optional[str] = None
    file_size: Optional[int] = None
    width: Optional[int] = None
    height: Optional[int] = None
    orientation: Optional[str] = None
    date_taken: Optional[datetime] = None
    camera_data: Optional[dict[str, Any]] = None
    location_data: Optional[dict[str, Any]] = None
    dominant_color: Optional[str] = None
    source_url: Optional[str] = None

    technical_score: Optional[float] = None
    commercial_score: Optional[float] = None
    artistic_score: Optional[float] = None
    emotional_score: Optional[float] = None
    overall_score: Optional[float] = None
    tier: PhotoTier
    ai_analysis: Optional[str] = None
    analyzed_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @computed_field
    @property
    def tier_label(self) -> str:
        return self.tier.label


class PhotoUrlResponse(BaseModel):
    """Temporary signed URL for reading the stored image."""

    id: int
    url: str
    expires_in: int


class TierStats(BaseModel):
    count: int
    value: int


class PhotoStatsResponse(BaseModel):
    """Per-tier counts and estimated portfolio value."""

    tiers: dict[PhotoTier, TierStats]
    total_photos: int
    total_value: int


class AnalyzePendingResponse(BaseModel):
    analyzed: int
    failed: int
    stopped_reason: Optional[str] = None


class ShowcaseResponse(BaseModel):
    """Photo ids arranged for the showcase layout."""

    hero: Optional[int] = None
    secondary: list[int] = []
    tertiary: list[int] = []
    strip: list[int] = []
