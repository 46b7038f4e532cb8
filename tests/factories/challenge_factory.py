"""Challenge, participation and template factories."""

from datetime import datetime, timedelta, timezone
from typing import Any

from challenge_engine.challenges.schemas import (
    Challenge,
    ChallengeRewards,
    ChallengeTemplate,
    UserChallenge,
)
from challenge_engine.shared.schemas.base import (
    ChallengeCategory,
    ChallengeDifficulty,
    ChallengeStatus,
    ChallengeTier,
    ChallengeType,
    RecurrenceRule,
    UserChallengeStatus,
)

# A Monday morning; every test clock is relative to it
T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class ChallengeFactory:
    """Factory for Challenge test instances."""

    _counter: int = 0

    @classmethod
    def create(
        cls,
        id: str | None = None,
        status: ChallengeStatus = ChallengeStatus.ACTIVE,
        category: ChallengeCategory = ChallengeCategory.DESIGN,
        difficulty: ChallengeDifficulty = ChallengeDifficulty.BEGINNER,
        type: ChallengeType = ChallengeType.SKILL,
        tier: ChallengeTier = ChallengeTier.SOLO,
        start_date: datetime | None = T0 - timedelta(days=1),
        end_date: datetime | None = T0 + timedelta(days=7),
        xp: int = 0,
        **kwargs: Any,
    ) -> Challenge:
        """Create a Challenge, active over a window around ``T0`` by default."""
        cls._counter += 1
        return Challenge(
            id=id or f"challenge-{cls._counter:04d}",
            title=kwargs.pop("title", f"Test challenge {cls._counter}"),
            category=category,
            difficulty=difficulty,
            type=type,
            tier=tier,
            status=status,
            start_date=start_date,
            end_date=end_date,
            rewards=kwargs.pop("rewards", ChallengeRewards(xp=xp)),
            created_at=T0 - timedelta(days=30),
            updated_at=T0 - timedelta(days=30),
            **kwargs,
        )


class UserChallengeFactory:
    """Factory for UserChallenge test instances."""

    @classmethod
    def create(
        cls,
        user_id: str = "user-1",
        challenge_id: str = "challenge-0001",
        status: UserChallengeStatus = UserChallengeStatus.JOINED,
        joined_at: datetime = T0 - timedelta(hours=2),
        **kwargs: Any,
    ) -> UserChallenge:
        return UserChallenge(
            user_id=user_id,
            challenge_id=challenge_id,
            status=status,
            joined_at=joined_at,
            last_activity_at=joined_at,
            updated_at=joined_at,
            **kwargs,
        )


class TemplateFactory:
    """Factory for recurring ChallengeTemplate test instances."""

    @classmethod
    def create(
        cls,
        id: str = "daily-sketch",
        recurrence: RecurrenceRule | None = RecurrenceRule.DAILY,
        **kwargs: Any,
    ) -> ChallengeTemplate:
        return ChallengeTemplate(
            id=id,
            title=kwargs.pop("title", "Daily sketch"),
            category=kwargs.pop("category", ChallengeCategory.DESIGN),
            difficulty=kwargs.pop("difficulty", ChallengeDifficulty.BEGINNER),
            type=kwargs.pop("type", ChallengeType.DAILY),
            recurrence=recurrence,
            **kwargs,
        )
