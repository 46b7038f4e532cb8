"""REST API endpoints for challenges and participation.

``user_id`` is always an explicit path parameter; authentication happens
upstream of the engine.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status

from challenge_engine.challenges.schemas import (
    Challenge,
    ChallengeFilters,
    ChallengeSubmission,
    CreateChallengeRequest,
    JobReport,
    ReviewRequest,
    SubmissionRequest,
    UserChallenge,
    UserChallengeProgress,
    UserChallengeStats,
)
from challenge_engine.challenges.service import ChallengeService
from challenge_engine.dependencies import EngineContainer, get_challenge_service, get_container
from challenge_engine.infrastructure.scheduler import JobAlreadyRunning
from challenge_engine.shared.schemas.base import (
    ChallengeCategory,
    ChallengeDifficulty,
    ChallengeStatus,
    ChallengeTier,
    ChallengeType,
    UserChallengeStatus,
)

router = APIRouter(prefix="/challenges", tags=["challenges"])
users_router = APIRouter(prefix="/users", tags=["participation"])
scheduler_router = APIRouter(prefix="/scheduler", tags=["scheduler"])


# ===========================================
# CATALOG
# ===========================================


@router.get("", response_model=list[Challenge])
async def list_challenges(
    status_filter: list[ChallengeStatus] | None = Query(default=None, alias="status"),
    category: list[ChallengeCategory] | None = Query(default=None),
    difficulty: list[ChallengeDifficulty] | None = Query(default=None),
    type_filter: list[ChallengeType] | None = Query(default=None, alias="type"),
    tier: list[ChallengeTier] | None = Query(default=None),
    series_id: str | None = Query(default=None),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    service: ChallengeService = Depends(get_challenge_service),
):
    """List challenges with optional filters."""
    filters = ChallengeFilters(
        status=status_filter,
        category=category,
        difficulty=difficulty,
        type=type_filter,
        tier=tier,
        series_id=series_id,
        limit=limit,
        offset=offset,
    )
    return await service.list_challenges(filters)


@router.post("", response_model=Challenge, status_code=status.HTTP_201_CREATED)
async def create_challenge(
    data: CreateChallengeRequest,
    service: ChallengeService = Depends(get_challenge_service),
):
    """Create a new challenge in 'draft' status."""
    return await service.create_challenge(data)


@router.get("/{challenge_id}", response_model=Challenge)
async def get_challenge(
    challenge_id: str,
    service: ChallengeService = Depends(get_challenge_service),
):
    return await service.get_challenge(challenge_id)


@router.post("/{challenge_id}/schedule", response_model=Challenge)
async def schedule_challenge(
    challenge_id: str,
    service: ChallengeService = Depends(get_challenge_service),
):
    """draft -> scheduled. ``start_date`` must be in the future."""
    return await service.schedule_challenge(challenge_id)


@router.post("/{challenge_id}/complete", response_model=Challenge)
async def complete_challenge(
    challenge_id: str,
    service: ChallengeService = Depends(get_challenge_service),
):
    """Manually complete an active challenge."""
    return await service.complete_challenge(challenge_id)


@router.post("/{challenge_id}/archive", response_model=Challenge)
async def archive_challenge(
    challenge_id: str,
    service: ChallengeService = Depends(get_challenge_service),
):
    """Archive a challenge. Archiving before completion is logged as forced."""
    return await service.archive_challenge(challenge_id)


# ===========================================
# PARTICIPATION
# ===========================================


@router.post(
    "/{challenge_id}/participants/{user_id}",
    response_model=UserChallenge,
    status_code=status.HTTP_201_CREATED,
)
async def join_challenge(
    challenge_id: str,
    user_id: str,
    service: ChallengeService = Depends(get_challenge_service),
):
    return await service.join_challenge(user_id, challenge_id)


@router.get("/{challenge_id}/participants/{user_id}", response_model=UserChallengeProgress)
async def get_progress(
    challenge_id: str,
    user_id: str,
    service: ChallengeService = Depends(get_challenge_service),
):
    """Participation record with progress percentage and next milestone."""
    return await service.get_user_challenge_progress(user_id, challenge_id)


@router.post(
    "/{challenge_id}/participants/{user_id}/submissions",
    response_model=UserChallenge,
    status_code=status.HTTP_201_CREATED,
)
async def submit(
    challenge_id: str,
    user_id: str,
    data: SubmissionRequest,
    service: ChallengeService = Depends(get_challenge_service),
):
    """Record a progress update or a final submission."""
    return await service.record_submission(user_id, challenge_id, data)


@router.get(
    "/{challenge_id}/participants/{user_id}/submissions",
    response_model=list[ChallengeSubmission],
)
async def list_submissions(
    challenge_id: str,
    user_id: str,
    service: ChallengeService = Depends(get_challenge_service),
):
    return await service.list_submissions(user_id, challenge_id)


@router.post("/{challenge_id}/participants/{user_id}/review", response_model=UserChallenge)
async def review_submission(
    challenge_id: str,
    user_id: str,
    data: ReviewRequest,
    service: ChallengeService = Depends(get_challenge_service),
):
    return await service.review_submission(user_id, challenge_id, data)


@router.post("/{challenge_id}/participants/{user_id}/abandon", response_model=UserChallenge)
async def abandon_challenge(
    challenge_id: str,
    user_id: str,
    service: ChallengeService = Depends(get_challenge_service),
):
    return await service.abandon_challenge(user_id, challenge_id)


@users_router.get("/{user_id}/challenges", response_model=list[UserChallenge])
async def list_user_challenges(
    user_id: str,
    status_filter: list[UserChallengeStatus] | None = Query(default=None, alias="status"),
    service: ChallengeService = Depends(get_challenge_service),
):
    return await service.list_user_challenges(user_id, status_filter)


@users_router.get("/{user_id}/challenge-stats", response_model=UserChallengeStats)
async def get_user_challenge_stats(
    user_id: str,
    service: ChallengeService = Depends(get_challenge_service),
):
    return await service.get_user_challenge_stats(user_id)


# ===========================================
# SCHEDULER
# ===========================================


@scheduler_router.post("/jobs/{job_name}/run", response_model=JobReport)
async def run_job(
    job_name: str,
    container: EngineContainer = Depends(get_container),
):
    """Run one tick of a lifecycle job now."""
    if job_name not in container.periodic.job_names:
        raise HTTPException(status_code=404, detail=f"Job '{job_name}' not found")
    try:
        return await container.periodic.trigger(job_name)
    except JobAlreadyRunning as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
