"""Base schemas and common types used across the engine."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


# ===========================================
# ENUMS
# ===========================================


class ChallengeCategory(str, Enum):
    """Creative discipline a challenge belongs to."""

    DESIGN = "design"
    DEVELOPMENT = "development"
    AUDIO = "audio"
    VIDEO = "video"
    WRITING = "writing"
    PHOTOGRAPHY = "photography"
    THREE_D = "3d"
    MIXED_MEDIA = "mixed_media"


class ChallengeDifficulty(str, Enum):
    """Difficulty bands, declared easiest first."""

    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"
    EXPERT = "expert"

    @property
    def rank(self) -> int:
        """Zero-based position on the difficulty ladder."""
        return list(ChallengeDifficulty).index(self)


class ChallengeType(str, Enum):
    """Kind of challenge; drives the review policy and recurrence."""

    SKILL = "skill"
    INDUSTRY = "industry"
    QUICK = "quick"
    COMPREHENSIVE = "comprehensive"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    SERIES = "series"


class ChallengeStatus(str, Enum):
    """Lifecycle status of a challenge definition."""

    DRAFT = "draft"
    SCHEDULED = "scheduled"
    ACTIVE = "active"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class ChallengeTier(str, Enum):
    """Rungs of the progression ladder, lowest first."""

    SOLO = "SOLO"
    TRADE = "TRADE"
    COLLABORATION = "COLLABORATION"

    @property
    def rank(self) -> int:
        return list(ChallengeTier).index(self)

    @property
    def previous(self) -> "ChallengeTier | None":
        """The rung directly below this one (None for SOLO)."""
        if self.rank == 0:
            return None
        return list(ChallengeTier)[self.rank - 1]


class UserChallengeStatus(str, Enum):
    """Status of one user's participation in one challenge."""

    JOINED = "joined"
    IN_PROGRESS = "in_progress"
    SUBMITTED = "submitted"
    PENDING_REVIEW = "pending_review"
    COMPLETED = "completed"
    ABANDONED = "abandoned"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (
            UserChallengeStatus.COMPLETED,
            UserChallengeStatus.ABANDONED,
            UserChallengeStatus.FAILED,
        )


class SubmissionType(str, Enum):
    """Kinds of submission a participant can record."""

    PROGRESS_UPDATE = "progress_update"
    FINAL_SUBMISSION = "final_submission"


class RecurrenceRule(str, Enum):
    """How often a template produces a new challenge instance."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


# ===========================================
# BASE MODELS
# ===========================================


class BaseSchema(BaseModel):
    """Base schema with common configuration.

    Enum fields keep their enum members (no ``use_enum_values``) so that the
    engine can rely on ``rank``/``is_terminal`` and on enum-keyed mappings.
    """

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
    )


# ===========================================
# ERROR RESPONSES
# ===========================================


class ErrorDetail(BaseSchema):
    """RFC 7807 Problem Details format."""

    type: str = Field(description="URI reference identifying the problem type")
    title: str = Field(description="Short, human-readable summary")
    status: int = Field(description="HTTP status code")
    detail: str = Field(description="Human-readable explanation")
    errors: list[dict[str, Any]] | None = Field(
        default=None, description="Additional error details"
    )
