"""Shared schemas module.

Contains the base schema and the closed enums used across the engine.
"""

from challenge_engine.shared.schemas.base import (
    BaseSchema,
    ChallengeCategory,
    ChallengeDifficulty,
    ChallengeStatus,
    ChallengeTier,
    ChallengeType,
    ErrorDetail,
    RecurrenceRule,
    SubmissionType,
    UserChallengeStatus,
)

__all__ = [
    "BaseSchema",
    "ChallengeCategory",
    "ChallengeDifficulty",
    "ChallengeStatus",
    "ChallengeTier",
    "ChallengeType",
    "ErrorDetail",
    "RecurrenceRule",
    "SubmissionType",
    "UserChallengeStatus",
]
