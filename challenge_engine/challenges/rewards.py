"""Completion reward calculation: stateless and deterministic.

Rewards are computed once, inside the conditional write that moves a
participation record to ``completed``. Every bonus is a share of the base
XP; only the base is scaled by the tier and bonus multipliers.
"""

from dataclasses import dataclass
from typing import Final

from challenge_engine.challenges.schemas import (
    Challenge,
    RewardBreakdown,
    SpecialReward,
    UserChallenge,
)
from challenge_engine.shared.schemas.base import ChallengeDifficulty, ChallengeTier

# Base XP when the challenge does not define its own
DIFFICULTY_BASE_XP: Final[dict[ChallengeDifficulty, int]] = {
    ChallengeDifficulty.BEGINNER: 100,
    ChallengeDifficulty.INTERMEDIATE: 200,
    ChallengeDifficulty.ADVANCED: 350,
    ChallengeDifficulty.EXPERT: 500,
}

# Higher rungs carry higher base XP
TIER_MULTIPLIER: Final[dict[ChallengeTier, float]] = {
    ChallengeTier.SOLO: 1.0,
    ChallengeTier.TRADE: 1.5,
    ChallengeTier.COLLABORATION: 2.0,
}

# Difficulty on the same 1-5 scale participants rate it on
DIFFICULTY_RATING: Final[dict[ChallengeDifficulty, int]] = {
    ChallengeDifficulty.BEGINNER: 1,
    ChallengeDifficulty.INTERMEDIATE: 2,
    ChallengeDifficulty.ADVANCED: 3,
    ChallengeDifficulty.EXPERT: 4,
}

EARLY_COMPLETION_RATIO: Final[float] = 0.75
EARLY_COMPLETION_BONUS: Final[float] = 0.25
QUALITY_BONUS: Final[float] = 0.5
PERFECT_SCORE_THRESHOLD: Final[int] = 90
FIRST_ATTEMPT_BONUS: Final[float] = 0.15
MASTERY_XP_PER_LEVEL: Final[int] = 10


@dataclass(frozen=True)
class RewardAward:
    """Immutable result of a completion reward calculation."""

    user_challenge_id: str
    user_id: str
    challenge_id: str
    base: int
    tier_mult: float
    bonus_mult: float
    early_bonus: int
    total: int
    badges: frozenset[str]
    quality_bonus: int = 0
    first_attempt_bonus: int = 0
    mastery_bonus: int = 0
    special_rewards: tuple[SpecialReward, ...] = ()

    @property
    def bonus_xp(self) -> int:
        return self.early_bonus + self.quality_bonus + self.first_attempt_bonus + self.mastery_bonus

    def breakdown(self) -> RewardBreakdown:
        return RewardBreakdown(
            base=self.base,
            tier_mult=self.tier_mult,
            bonus_mult=self.bonus_mult,
            early_bonus=self.early_bonus,
            quality_bonus=self.quality_bonus,
            first_attempt_bonus=self.first_attempt_bonus,
            mastery_bonus=self.mastery_bonus,
            special_rewards=list(self.special_rewards),
        )

    @classmethod
    def from_record(cls, record: UserChallenge) -> "RewardAward":
        """Rebuild the award stored on a completed record, for redelivery."""
        if record.xp_earned is None or record.reward_breakdown is None:
            raise ValueError(f"User challenge '{record.id}' carries no reward")
        breakdown = record.reward_breakdown
        return cls(
            user_challenge_id=record.id,
            user_id=record.user_id,
            challenge_id=record.challenge_id,
            base=breakdown.base,
            tier_mult=breakdown.tier_mult,
            bonus_mult=breakdown.bonus_mult,
            early_bonus=breakdown.early_bonus,
            total=record.xp_earned,
            badges=frozenset(record.badges_earned or ()),
            quality_bonus=breakdown.quality_bonus,
            first_attempt_bonus=breakdown.first_attempt_bonus,
            mastery_bonus=breakdown.mastery_bonus,
            special_rewards=tuple(breakdown.special_rewards),
        )


def tier_bonus_badge(tier: ChallengeTier) -> str:
    """Badge id granted for completing a tier challenge while bonus-eligible."""
    return f"tier_bonus_{tier.value.lower()}"


def base_xp(challenge: Challenge) -> int:
    """Challenge-defined XP, or the difficulty default when unset."""
    return challenge.rewards.xp or DIFFICULTY_BASE_XP[challenge.difficulty]


def is_early_completion(
    completion_time_minutes: int | None,
    time_estimate_minutes: int | None,
) -> bool:
    """Completed within 75% of the estimated time."""
    if completion_time_minutes is None or not time_estimate_minutes:
        return False
    return completion_time_minutes <= EARLY_COMPLETION_RATIO * time_estimate_minutes


def mastery_bonus(difficulty: ChallengeDifficulty, difficulty_rating: int | None) -> int:
    """10 XP for every level the participant found the challenge easier than rated."""
    if difficulty_rating is None:
        return 0
    return max(0, DIFFICULTY_RATING[difficulty] - difficulty_rating) * MASTERY_XP_PER_LEVEL


def calculate_reward(
    challenge: Challenge,
    user_id: str,
    user_challenge_id: str,
    eligible_for_bonus: bool,
    bonus_multiplier: float,
    completion_time_minutes: int | None,
    quality_score: int | None = None,
    difficulty_rating: int | None = None,
    first_attempt: bool = False,
) -> RewardAward:
    """Calculate the reward for one completion.

    Pure function, no side effects, no store access. ``bonus_multiplier``
    only applies when the user is eligible for the challenge tier's bonus.

    Args:
        quality_score: Reviewer's 0-100 quality score, if any
        difficulty_rating: Participant's 1-5 rating of the challenge
        first_attempt: First participation in the challenge's recurring series
    """
    base = base_xp(challenge)
    t_mult = TIER_MULTIPLIER[challenge.tier]
    b_mult = bonus_multiplier if eligible_for_bonus else 1.0
    special: list[SpecialReward] = []

    quality = round(quality_score / 100 * base * QUALITY_BONUS) if quality_score else 0
    if quality_score is not None and quality_score >= PERFECT_SCORE_THRESHOLD:
        special.append(
            SpecialReward(type="perfect_score", description="Exceptional quality work!", value=quality)
        )

    early = 0
    if is_early_completion(completion_time_minutes, challenge.time_estimate_minutes):
        early = round(base * EARLY_COMPLETION_BONUS)
        special.append(
            SpecialReward(
                type="early_completion", description="Completed ahead of schedule!", value=early
            )
        )

    first = 0
    if first_attempt:
        first = round(base * FIRST_ATTEMPT_BONUS)
        special.append(
            SpecialReward(type="first_attempt", description="Nailed it on the first try!", value=first)
        )

    mastery = mastery_bonus(challenge.difficulty, difficulty_rating)
    total = int(base * t_mult * b_mult) + early + quality + first + mastery

    badges = set(challenge.rewards.badges)
    if eligible_for_bonus and challenge.tier != ChallengeTier.SOLO:
        badges.add(tier_bonus_badge(challenge.tier))

    return RewardAward(
        user_challenge_id=user_challenge_id,
        user_id=user_id,
        challenge_id=challenge.id,
        base=base,
        tier_mult=t_mult,
        bonus_mult=b_mult,
        early_bonus=early,
        total=total,
        badges=frozenset(badges),
        quality_bonus=quality,
        first_attempt_bonus=first,
        mastery_bonus=mastery,
        special_rewards=tuple(special),
    )
