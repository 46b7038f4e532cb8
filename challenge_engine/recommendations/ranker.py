"""ChallengeRanker: deterministic ordering of candidate challenges for one user.

Ordering, highest weight first:

1. category affinity: completions in the challenge's category relative to
   the user's top category
2. difficulty proximity to the user's inferred skill band
3. newer ``start_date`` first, then fewer participants
4. ``id`` ascending (total order, so equal inputs rank identically)
"""

from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass
from math import inf

from challenge_engine.challenges.schemas import Challenge, UserChallenge
from challenge_engine.shared.schemas.base import (
    ChallengeDifficulty,
    ChallengeStatus,
    UserChallengeStatus,
)

_DIFFICULTIES = list(ChallengeDifficulty)


@dataclass(frozen=True)
class HistoryEntry:
    """One participation record with the challenge it refers to."""

    record: UserChallenge
    challenge: Challenge | None


def band_for_skill_level(skill_level: int) -> ChallengeDifficulty:
    """1 beginner, 2 intermediate, 3 advanced, 4 and above expert."""
    index = min(max(skill_level, 1), len(_DIFFICULTIES)) - 1
    return _DIFFICULTIES[index]


def infer_band(
    completed: list[Challenge],
    skill_level: int | None = None,
) -> ChallengeDifficulty:
    """Skill band from the explicit level, else the most frequent completed difficulty.

    An explicit level applies even to a user with no completions; only
    without one does an empty history fall back to beginner.
    """
    if skill_level is not None:
        return band_for_skill_level(skill_level)
    if not completed:
        return ChallengeDifficulty.BEGINNER
    counts = Counter(c.difficulty for c in completed)
    top = max(counts.values())
    # Ties resolve to the easier band
    return min((d for d, n in counts.items() if n == top), key=lambda d: d.rank)


def _excluded(record: UserChallenge) -> bool:
    return not record.status.is_terminal or record.status == UserChallengeStatus.COMPLETED


class ChallengeRanker:
    """Stateless ranking utility for challenge recommendations."""

    @staticmethod
    def rank(
        candidates: Iterable[Challenge],
        history: list[HistoryEntry],
        skill_level: int | None = None,
        limit: int = 10,
    ) -> list[Challenge]:
        """Rank ``candidates`` for a user with the given participation ``history``.

        Args:
            candidates: Challenges to consider; non-active ones are dropped.
            history: The user's participation records.
            skill_level: Explicit skill level, overrides the inferred band.
            limit: Maximum number of results.

        Returns:
            At most ``limit`` challenges, best first.
        """
        excluded_ids = {e.record.challenge_id for e in history if _excluded(e.record)}
        completed = [
            e.challenge
            for e in history
            if e.record.status == UserChallengeStatus.COMPLETED and e.challenge is not None
        ]

        category_counts = Counter(c.category for c in completed)
        top_category = max(category_counts.values(), default=0)
        band = infer_band(completed, skill_level)

        unique: dict[str, Challenge] = {}
        for challenge in candidates:
            if challenge.status != ChallengeStatus.ACTIVE or challenge.id in excluded_ids:
                continue
            unique.setdefault(challenge.id, challenge)

        def sort_key(challenge: Challenge) -> tuple[float, int, float, int, str]:
            affinity = (
                category_counts.get(challenge.category, 0) / top_category if top_category else 0.0
            )
            distance = abs(challenge.difficulty.rank - band.rank)
            recency = -challenge.start_date.timestamp() if challenge.start_date else inf
            return (-affinity, distance, recency, challenge.participant_count, challenge.id)

        return sorted(unique.values(), key=sort_key)[: max(limit, 0)]
