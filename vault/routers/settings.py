"""
User settings router: score weights.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from vault.database import get_db
from vault.dependencies.auth import get_current_active_user
from vault.models.user import User
from vault.schemas.user import ScoreWeightsResponse, ScoreWeightsUpdate
from vault.services.photo import PhotoService

router = APIRouter(prefix="/settings", tags=["Settings"])


@router.get("/weights", response_model=ScoreWeightsResponse, summary="Score weights")
async def get_weights(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> ScoreWeightsResponse:
    weights = await PhotoService(db).get_weights(current_user.id)
    return ScoreWeightsResponse(
        technical_weight=weights.technical,
        commercial_weight=weights.commercial,
        artistic_weight=weights.artistic,
        emotional_weight=weights.emotional,
    )


@router.put("/weights", response_model=ScoreWeightsResponse, summary="Update score weights")
async def update_weights(
    body: ScoreWeightsUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> ScoreWeightsResponse:
    """Weights apply to photos scored from now on; existing scores are kept."""
    row = await PhotoService(db).update_weights(current_user.id, **body.model_dump())
    return ScoreWeightsResponse.model_validate(row)
