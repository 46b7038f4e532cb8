"""Three-tier progression rules. Pure and deterministic.

A tier's bonus rewards unlock once the user has completed enough challenges
on the rung below and reached the required skill level. Tiers never gate
joining a challenge.
"""

from collections import Counter
from collections.abc import Iterable
from typing import Final

from challenge_engine.challenges.rewards import tier_bonus_badge
from challenge_engine.progression.schemas import TierStanding, UserProgressionProfile
from challenge_engine.shared.schemas.base import ChallengeTier

# Completions needed on the previous rung
REQUIRED_COMPLETIONS: Final[dict[ChallengeTier, int]] = {
    ChallengeTier.TRADE: 3,
    ChallengeTier.COLLABORATION: 5,
}

REQUIRED_SKILL_LEVEL: Final[dict[ChallengeTier, int]] = {
    ChallengeTier.TRADE: 2,
    ChallengeTier.COLLABORATION: 3,
}

# Applied to rewards of a tier's challenges while the user is eligible
TIER_BONUS_MULTIPLIER: Final[dict[ChallengeTier, float]] = {
    ChallengeTier.SOLO: 1.0,
    ChallengeTier.TRADE: 1.1,
    ChallengeTier.COLLABORATION: 1.25,
}

COMPLETION_MILESTONES: Final[tuple[int, ...]] = (1, 3, 5, 10, 25, 50)


def _plural(count: int, noun: str) -> str:
    return f"{count} {noun}" if count == 1 else f"{count} {noun}s"


def count_completions(tiers: Iterable[ChallengeTier]) -> dict[ChallengeTier, int]:
    """Completed challenges per tier, every tier present."""
    counts = Counter(tiers)
    return {tier: counts.get(tier, 0) for tier in ChallengeTier}


def is_eligible(
    tier: ChallengeTier,
    completions: dict[ChallengeTier, int],
    skill_level: int,
) -> bool:
    """Whether ``tier``'s bonus rewards are unlocked."""
    previous = tier.previous
    if previous is None:
        return True
    return (
        completions.get(previous, 0) >= REQUIRED_COMPLETIONS[tier]
        and skill_level >= REQUIRED_SKILL_LEVEL[tier]
    )


def next_milestone(
    tier: ChallengeTier,
    completions: dict[ChallengeTier, int],
    skill_level: int,
) -> str | None:
    """Human-readable next goal on ``tier``, or None past the last milestone."""
    previous = tier.previous
    if previous is not None and not is_eligible(tier, completions, skill_level):
        missing: list[str] = []
        remaining = REQUIRED_COMPLETIONS[tier] - completions.get(previous, 0)
        if remaining > 0:
            missing.append(f"complete {_plural(remaining, f'more {previous.value} challenge')}")
        if skill_level < REQUIRED_SKILL_LEVEL[tier]:
            missing.append(f"reach skill level {REQUIRED_SKILL_LEVEL[tier]}")
        return f"To unlock {tier.value} bonuses: {' and '.join(missing)}"

    done = completions.get(tier, 0)
    for target in COMPLETION_MILESTONES:
        if target > done:
            return f"Complete {_plural(target, f'{tier.value} challenge')}"
    return None


def build_profile(
    user_id: str,
    completed_tiers: Iterable[ChallengeTier],
    skill_level: int,
) -> UserProgressionProfile:
    """Build the progression profile from the tiers of completed challenges.

    Same input, identical output.
    """
    completions = count_completions(completed_tiers)

    standings = []
    for tier in ChallengeTier:
        eligible = is_eligible(tier, completions, skill_level)
        standings.append(
            TierStanding(
                tier=tier,
                completions=completions[tier],
                eligible_for_bonus=eligible,
                bonus_multiplier=TIER_BONUS_MULTIPLIER[tier] if eligible else 1.0,
                next_milestone=next_milestone(tier, completions, skill_level),
            )
        )

    eligible_tiers = [s.tier for s in standings if s.eligible_for_bonus]
    current_tier = max(eligible_tiers, key=lambda t: t.rank)

    return UserProgressionProfile(
        user_id=user_id,
        skill_level=skill_level,
        total_completions=sum(completions.values()),
        tiers=standings,
        current_tier=current_tier,
        reward_multiplier=TIER_BONUS_MULTIPLIER[current_tier],
        unlocked_badges=sorted(
            tier_bonus_badge(t) for t in eligible_tiers if t != ChallengeTier.SOLO
        ),
    )
