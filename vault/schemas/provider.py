"""
Provider registry schemas.
"""
from typing import Optional

from pydantic import BaseModel


class ProviderCapabilitiesResponse(BaseModel):
    can_read: bool
    can_write: bool
    has_metadata: bool
    has_location: bool
    has_camera_data: bool
    supports_albums: bool
    requires_auth: bool
    max_file_size: int
    supported_formats: list[str]
    rate_limit: Optional[int] = None


class ProviderResponse(BaseModel):
    id: str
    name: str
    description: str
    syncable: bool
    capabilities: ProviderCapabilitiesResponse
