"""ProgressionService: derives tier standings from completed challenges."""

from collections import OrderedDict

import httpx

from challenge_engine.progression.calculator import build_profile
from challenge_engine.progression.schemas import UserProgressionProfile
from challenge_engine.repositories.base import ChallengeStore
from challenge_engine.shared.clients.ledger_client import DEFAULT_SKILL_LEVEL, RewardLedger
from challenge_engine.shared.schemas.base import ChallengeTier, UserChallengeStatus
from challenge_engine.shared.utils.logging import get_logger

logger = get_logger(__name__)

ProfileKey = tuple[str, int, int]


class ProgressionService:
    """Computes progression profiles on demand.

    Profiles are cached per ``(user_id, completed_count, skill_level)``, so a
    new completion or a skill change always yields a fresh computation.
    """

    def __init__(
        self,
        store: ChallengeStore,
        ledger: RewardLedger,
        cache_size: int = 1024,
    ) -> None:
        self.store = store
        self.ledger = ledger
        self._cache_size = cache_size
        self._cache: OrderedDict[ProfileKey, UserProgressionProfile] = OrderedDict()

    async def _skill_level(self, user_id: str) -> int:
        try:
            return await self.ledger.get_skill_level(user_id)
        except httpx.HTTPError as e:
            logger.warning(
                "skill_level_lookup_failed",
                user_id=user_id,
                error_type=type(e).__name__,
            )
            return DEFAULT_SKILL_LEVEL

    async def get_user_progression_profile(
        self,
        user_id: str,
        skill_level: int | None = None,
    ) -> UserProgressionProfile:
        """Progression profile for ``user_id``.

        Args:
            user_id: Opaque user id
            skill_level: Caller-supplied skill level; read from the ledger when omitted
        """
        completed = await self.store.query_user_challenges(
            user_id=user_id,
            statuses=[UserChallengeStatus.COMPLETED],
        )
        if skill_level is None:
            skill_level = await self._skill_level(user_id)

        key = (user_id, len(completed), skill_level)
        cached = self._cache.get(key)
        if cached is not None:
            self._cache.move_to_end(key)
            return cached

        tiers: list[ChallengeTier] = []
        for record in completed:
            challenge = await self.store.get_challenge(record.challenge_id)
            if challenge is None:
                logger.warning(
                    "completed_challenge_missing",
                    user_id=user_id,
                    challenge_id=record.challenge_id,
                )
                continue
            tiers.append(challenge.tier)

        profile = build_profile(user_id, tiers, skill_level)
        self._cache[key] = profile
        while len(self._cache) > self._cache_size:
            self._cache.popitem(last=False)

        logger.info(
            "progression_profile_computed",
            user_id=user_id,
            total_completions=profile.total_completions,
            current_tier=profile.current_tier.value,
        )
        return profile
