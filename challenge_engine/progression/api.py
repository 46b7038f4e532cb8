"""REST API endpoints for user progression."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from challenge_engine.dependencies import get_progression_service
from challenge_engine.progression.schemas import UserProgressionProfile
from challenge_engine.progression.service import ProgressionService

router = APIRouter(prefix="/users", tags=["progression"])


@router.get("/{user_id}/progression", response_model=UserProgressionProfile)
async def get_progression_profile(
    user_id: str,
    skill_level: int | None = Query(default=None, ge=1, description="Overrides the ledger's skill level"),
    service: ProgressionService = Depends(get_progression_service),
):
    """Tier standings, bonus eligibility and next milestones."""
    return await service.get_user_progression_profile(user_id, skill_level=skill_level)
