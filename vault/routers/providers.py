"""
Providers router: registered photo sources and their capabilities.
"""
from dataclasses import asdict
from typing import List

from fastapi import APIRouter

from vault.schemas.provider import ProviderCapabilitiesResponse, ProviderResponse
from vault.services.providers import get_provider_registry

router = APIRouter(prefix="/providers", tags=["Providers"])


@router.get("", response_model=List[ProviderResponse], summary="List photo providers")
async def list_providers() -> List[ProviderResponse]:
    return [
        ProviderResponse(
            id=registration.kind.value,
            name=registration.name,
            description=registration.description,
            syncable=registration.syncable,
            capabilities=ProviderCapabilitiesResponse(**asdict(registration.capabilities)),
        )
        for registration in get_provider_registry().all()
    ]
