"""REST API endpoints for challenge recommendations."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from challenge_engine.challenges.schemas import Challenge
from challenge_engine.dependencies import get_recommendation_service
from challenge_engine.recommendations.service import RecommendationService

router = APIRouter(prefix="/users", tags=["recommendations"])


@router.get("/{user_id}/recommendations", response_model=list[Challenge])
async def get_recommendations(
    user_id: str,
    limit: int | None = Query(default=None, ge=1, le=50),
    skill_level: int | None = Query(default=None, ge=1),
    service: RecommendationService = Depends(get_recommendation_service),
):
    """Active challenges ranked for the user, best first."""
    return await service.get_recommended_challenges(user_id, limit=limit, skill_level=skill_level)
