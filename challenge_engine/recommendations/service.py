"""RecommendationService: personalized challenge recommendations."""

from challenge_engine.challenges.schemas import Challenge
from challenge_engine.recommendations.ranker import ChallengeRanker, HistoryEntry
from challenge_engine.repositories.base import ChallengeStore
from challenge_engine.shared.schemas.base import ChallengeStatus
from challenge_engine.shared.utils.logging import get_logger

logger = get_logger(__name__)


class RecommendationService:
    """Loads the active catalog and a user's history, then ranks."""

    def __init__(self, store: ChallengeStore, default_limit: int = 10) -> None:
        self.store = store
        self.default_limit = default_limit

    async def get_recommended_challenges(
        self,
        user_id: str,
        limit: int | None = None,
        skill_level: int | None = None,
    ) -> list[Challenge]:
        limit = self.default_limit if limit is None else limit
        candidates = await self.store.query_challenges(status=ChallengeStatus.ACTIVE)
        records = await self.store.query_user_challenges(user_id=user_id)

        catalog = {c.id: c for c in candidates}
        history = []
        for record in records:
            challenge = catalog.get(record.challenge_id)
            if challenge is None:
                challenge = await self.store.get_challenge(record.challenge_id)
            history.append(HistoryEntry(record=record, challenge=challenge))

        ranked = ChallengeRanker.rank(candidates, history, skill_level=skill_level, limit=limit)
        logger.info(
            "recommendations_ranked",
            user_id=user_id,
            candidates=len(candidates),
            returned=len(ranked),
        )
        return ranked
