"""Pydantic v2 schemas for challenges, participation records and submissions."""

from datetime import datetime
from typing import Any

from pydantic import ConfigDict, Field, computed_field, field_validator, model_validator

from challenge_engine.shared.schemas.base import (
    BaseSchema,
    ChallengeCategory,
    ChallengeDifficulty,
    ChallengeStatus,
    ChallengeTier,
    ChallengeType,
    RecurrenceRule,
    SubmissionType,
    UserChallengeStatus,
)
from challenge_engine.shared.utils.datetime_utils import ensure_utc, utcnow


def _escape_key_part(value: str) -> str:
    return value.replace("%", "%25").replace("_", "%5F")


def make_user_challenge_id(user_id: str, challenge_id: str) -> str:
    """Document id of the participation record for ``(user_id, challenge_id)``.

    ``%`` and ``_`` inside either part are percent-escaped, so the single
    ``_`` separator keeps the id unique per pair.
    """
    return f"{_escape_key_part(user_id)}_{_escape_key_part(challenge_id)}"



class ChallengeRewards(BaseSchema):
    """Reward definition attached to a challenge or template."""

    xp: int = Field(default=0, ge=0)
    badges: set[str] = Field(default_factory=set)
    bonus_criteria: list[dict[str, Any]] = Field(default_factory=list)


class Challenge(BaseSchema):
    """A challenge definition."""

    id: str = Field(min_length=1, max_length=200)
    title: str = Field(max_length=500)
    description: str = ""
    category: ChallengeCategory
    difficulty: ChallengeDifficulty
    type: ChallengeType
    tier: ChallengeTier = ChallengeTier.SOLO
    status: ChallengeStatus = ChallengeStatus.DRAFT
    start_date: datetime | None = None
    end_date: datetime | None = None
    rewards: ChallengeRewards = Field(default_factory=ChallengeRewards)
    series_id: str | None = None
    series_order: int | None = Field(default=None, ge=0)
    participant_count: int = Field(default=0, ge=0)
    completion_count: int = Field(default=0, ge=0)
    max_participants: int | None = Field(default=None, ge=1)
    max_progress: int = Field(default=1, ge=1)
    time_estimate_minutes: int | None = Field(default=None, ge=1)
    template_id: str | None = None
    tags: list[str] = Field(default_factory=list)
    created_by: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("start_date", "end_date", "created_at", "updated_at")
    @classmethod
    def _as_utc(cls, value: datetime | None) -> datetime | None:
        return ensure_utc(value) if value is not None else None

    @model_validator(mode="after")
    def _check_window(self) -> "Challenge":
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")
        return self

    @property
    def is_full(self) -> bool:
        return (
            self.max_participants is not None
            and self.participant_count >= self.max_participants
        )


class EvidenceLink(BaseSchema):
    """An evidence URL plus the resolver's preview metadata, stored verbatim."""

    url: str
    preview: dict[str, Any] | None = None


class ChallengeSubmission(BaseSchema):
    """Immutable record of one progress update or final submission."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True, frozen=True)

    id: str
    user_id: str
    challenge_id: str
    content: str
    evidence_links: list[EvidenceLink] = Field(default_factory=list)
    submission_type: SubmissionType
    progress_increment: int = Field(default=1, ge=0)
    difficulty_rating: int | None = Field(default=None, ge=1, le=5)
    created_at: datetime = Field(default_factory=utcnow)


class SpecialReward(BaseSchema):
    """A named bonus shown alongside the XP it added."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True, frozen=True)

    type: str
    description: str
    value: int


class RewardBreakdown(BaseSchema):
    """How ``UserChallenge.xp_earned`` was made up."""

    base: int
    tier_mult: float
    bonus_mult: float
    early_bonus: int = 0
    quality_bonus: int = 0
    first_attempt_bonus: int = 0
    mastery_bonus: int = 0
    special_rewards: list[SpecialReward] = Field(default_factory=list)


class UserChallenge(BaseSchema):
    """One user's participation record for one challenge.

    ``version`` is bumped by every conditional write; a write based on a
    stale read loses even when the status is unchanged.
    """

    user_id: str
    challenge_id: str
    status: UserChallengeStatus = UserChallengeStatus.JOINED
    progress: int = Field(default=0, ge=0)
    max_progress: int = Field(default=1, ge=1)
    joined_at: datetime = Field(default_factory=utcnow)
    last_activity_at: datetime = Field(default_factory=utcnow)
    submitted_at: datetime | None = None
    completed_at: datetime | None = None
    abandoned_at: datetime | None = None
    failed_at: datetime | None = None
    completion_time_minutes: int | None = None
    xp_earned: int | None = None
    badges_earned: set[str] | None = None
    submissions: list[str] = Field(default_factory=list)
    reward_breakdown: RewardBreakdown | None = None
    reward_credited_at: datetime | None = None
    version: int = Field(default=0, ge=0)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator(
        "joined_at",
        "last_activity_at",
        "submitted_at",
        "completed_at",
        "abandoned_at",
        "failed_at",
        "reward_credited_at",
        "updated_at",
    )
    @classmethod
    def _as_utc(cls, value: datetime | None) -> datetime | None:
        return ensure_utc(value) if value is not None else None

    @model_validator(mode="after")
    def _check_progress(self) -> "UserChallenge":
        if self.progress > self.max_progress:
            raise ValueError("progress must not exceed max_progress")
        return self

    @computed_field  # type: ignore[prop-decorator]
    @property
    def id(self) -> str:
        return make_user_challenge_id(self.user_id, self.challenge_id)

    @property
    def progress_percentage(self) -> float:
        return self.progress / self.max_progress * 100

    @property
    def credit_pending(self) -> bool:
        """Completed, but the ledger has not confirmed the credit yet."""
        return self.status == UserChallengeStatus.COMPLETED and self.reward_credited_at is None


class ChallengeTemplate(BaseSchema):
    """Template that materializes recurring challenge instances."""

    id: str = Field(min_length=1, max_length=150)
    title: str = Field(max_length=500)
    description: str = ""
    category: ChallengeCategory
    difficulty: ChallengeDifficulty
    type: ChallengeType
    tier: ChallengeTier = ChallengeTier.SOLO
    rewards: ChallengeRewards = Field(default_factory=ChallengeRewards)
    recurrence: RecurrenceRule | None = None
    max_progress: int = Field(default=1, ge=1)
    max_participants: int | None = Field(default=None, ge=1)
    time_estimate_minutes: int | None = Field(default=None, ge=1)
    tags: list[str] = Field(default_factory=list)
    is_active: bool = True


# ===========================================
# REQUESTS
# ===========================================


class CreateChallengeRequest(BaseSchema):
    """Request to create a new challenge in ``draft`` status."""

    id: str | None = Field(default=None, max_length=200)
    title: str = Field(max_length=500)
    description: str = ""
    category: ChallengeCategory
    difficulty: ChallengeDifficulty
    type: ChallengeType
    tier: ChallengeTier = ChallengeTier.SOLO
    start_date: datetime | None = None
    end_date: datetime | None = None
    rewards: ChallengeRewards = Field(default_factory=ChallengeRewards)
    series_id: str | None = None
    series_order: int | None = Field(default=None, ge=0)
    max_participants: int | None = Field(default=None, ge=1)
    max_progress: int = Field(default=1, ge=1, le=100)
    time_estimate_minutes: int | None = Field(default=None, ge=1)
    tags: list[str] = Field(default_factory=list)
    created_by: str | None = None


class SubmissionRequest(BaseSchema):
    """A participant's progress update or final submission."""

    content: str = Field(max_length=20_000)
    submission_type: SubmissionType = SubmissionType.PROGRESS_UPDATE
    evidence_urls: list[str] = Field(default_factory=list, max_length=20)
    progress_increment: int = Field(default=1, ge=1)
    # Participant's own rating of how hard the challenge felt, final submissions only
    difficulty_rating: int | None = Field(default=None, ge=1, le=5)


class ReviewRequest(BaseSchema):
    """Reviewer decision on a submission awaiting review."""

    approved: bool
    reviewer_id: str
    quality_score: int | None = Field(default=None, ge=0, le=100)
    notes: str | None = None


class ChallengeFilters(BaseSchema):
    """Catalog filters for listing challenges."""

    status: list[ChallengeStatus] | None = None
    category: list[ChallengeCategory] | None = None
    difficulty: list[ChallengeDifficulty] | None = None
    type: list[ChallengeType] | None = None
    tier: list[ChallengeTier] | None = None
    series_id: str | None = None
    limit: int = Field(default=20, ge=1, le=100)
    offset: int = Field(default=0, ge=0)


# ===========================================
# RESPONSES
# ===========================================


class UserChallengeProgress(BaseSchema):
    """A participation record with its derived progress view."""

    user_challenge: UserChallenge
    progress_percentage: float
    next_milestone: str | None = None


class UserChallengeStats(BaseSchema):
    """Aggregate participation statistics for one user."""

    user_id: str
    total_joined: int
    total_active: int
    total_completed: int
    total_abandoned: int
    total_failed: int
    total_xp_earned: int
    average_completion_minutes: float
    completion_rate: float


class JobReport(BaseSchema):
    """Outcome of one scheduler job run."""

    job: str
    transitioned: list[str] = Field(default_factory=list)
    created: list[str] = Field(default_factory=list)
    credited: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)
