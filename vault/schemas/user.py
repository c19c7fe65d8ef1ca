"""
User-related Pydantic schemas.
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class UserResponse(BaseModel):
    """Schema for user response (excludes sensitive data)."""

    id: int
    is_active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TokenPayload(BaseModel):
    """Schema for JWT token payload."""

    sub: int  # User ID
    exp: datetime


class ScoreWeightsResponse(BaseModel):
    """Per-user relative weights for the four sub-scores."""

    technical_weight: int
    commercial_weight: int
    artistic_weight: int
    emotional_weight: int

    model_config = ConfigDict(from_attributes=True)


class ScoreWeightsUpdate(BaseModel):
    """Partial update of the score weights."""

    technical_weight: Optional[int] = Field(None, ge=0, le=100)
    commercial_weight: Optional[int] = Field(None, ge=0, le=100)
    artistic_weight: Optional[int] = Field(None, ge=0, le=100)
    emotional_weight: Optional[int] = Field(None, ge=0, le=100)
