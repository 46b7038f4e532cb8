"""Pydantic schemas for the progression tracker."""

from pydantic import Field

from challenge_engine.shared.schemas.base import BaseSchema, ChallengeTier


class TierStanding(BaseSchema):
    """A user's standing on one rung of the ladder."""

    tier: ChallengeTier
    completions: int = Field(ge=0)
    eligible_for_bonus: bool
    bonus_multiplier: float
    next_milestone: str | None = None


class UserProgressionProfile(BaseSchema):
    """Derived progression view. Never stored as the source of truth."""

    user_id: str
    skill_level: int
    total_completions: int
    tiers: list[TierStanding]
    current_tier: ChallengeTier
    reward_multiplier: float
    unlocked_badges: list[str] = Field(default_factory=list)

    def standing(self, tier: ChallengeTier) -> TierStanding:
        """Standing for ``tier``."""
        return next(s for s in self.tiers if s.tier == tier)
