"""XP/reward ledger clients.

The ledger owns XP balances and badges. The engine credits each completion
exactly once, keyed by the participation record id, and reads the user's
skill level back for progression.
"""

from abc import ABC, abstractmethod

import httpx

from challenge_engine.challenges.rewards import RewardAward
from challenge_engine.shared.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_SKILL_LEVEL = 1


class RewardLedger(ABC):
    """External XP/reward ledger."""

    @abstractmethod
    async def credit(self, award: RewardAward) -> None:
        """Credit ``award``. Repeated credits with the same id are no-ops."""

    @abstractmethod
    async def get_skill_level(self, user_id: str) -> int:
        """The user's current skill level (1 for unknown users)."""

    async def close(self) -> None:
        """Release client resources."""


class LoggingRewardLedger(RewardLedger):
    """In-process ledger used when no ledger service is configured."""

    def __init__(self, skill_levels: dict[str, int] | None = None) -> None:
        self.credits: dict[str, RewardAward] = {}
        self.skill_levels = dict(skill_levels or {})

    async def credit(self, award: RewardAward) -> None:
        if award.user_challenge_id in self.credits:
            logger.info("ledger_credit_duplicate", user_challenge_id=award.user_challenge_id)
            return
        self.credits[award.user_challenge_id] = award
        logger.info(
            "ledger_credited",
            user_id=award.user_id,
            challenge_id=award.challenge_id,
            xp=award.total,
            badges=sorted(award.badges),
        )

    async def get_skill_level(self, user_id: str) -> int:
        return self.skill_levels.get(user_id, DEFAULT_SKILL_LEVEL)


class HttpRewardLedger(RewardLedger):
    """
    Client for the reward ledger HTTP API.

    Credits carry an ``Idempotency-Key`` header so retried calls never
    double-issue XP.
    """

    def __init__(self, base_url: str, timeout: float = 10.0) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(base_url=self._base_url, timeout=self._timeout)
        return self._client

    async def credit(self, award: RewardAward) -> None:
        client = await self._get_client()
        response = await client.post(
            "/credits",
            json={
                "user_id": award.user_id,
                "source": "challenge_completion",
                "source_id": award.challenge_id,
                "xp": award.total,
                "badges": sorted(award.badges),
                "special_rewards": [
                    {"type": r.type, "value": r.value} for r in award.special_rewards
                ],
            },
            headers={"Idempotency-Key": award.user_challenge_id},
        )
        response.raise_for_status()
        logger.info(
            "ledger_credited",
            user_id=award.user_id,
            challenge_id=award.challenge_id,
            xp=award.total,
        )

    async def get_skill_level(self, user_id: str) -> int:
        client = await self._get_client()
        response = await client.get(f"/users/{user_id}/skill-level")
        if response.status_code == 404:
            return DEFAULT_SKILL_LEVEL
        response.raise_for_status()
        return int(response.json().get("skill_level", DEFAULT_SKILL_LEVEL))

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
