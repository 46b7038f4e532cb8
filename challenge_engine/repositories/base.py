"""Abstract challenge store.

Every component reads and writes challenge documents through this
interface. Implementations must provide:

- insert-if-absent creation (``DuplicateEntityError`` when the key exists)
- compare-and-set on ``status`` (``ConcurrencyError`` when the stored
  status no longer matches the expected one), and for participation
  records on ``version`` as well
- replay-safe conditional writes: a write whose result is already stored
  returns the stored document instead of raising
- atomic counter increments
- ``StoreUnavailable`` for transient backend failures
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Literal

from challenge_engine.challenges.schemas import (
    Challenge,
    ChallengeSubmission,
    ChallengeTemplate,
    UserChallenge,
)
from challenge_engine.shared.schemas.base import ChallengeStatus, UserChallengeStatus

ChallengeCounter = Literal["participant_count", "completion_count"]

# Maximum number of documents a single query returns
MAX_QUERY_LIMIT = 1000


class ChallengeStore(ABC):
    """Persistent document store for challenges and participation records."""

    # ===========================================
    # CHALLENGES
    # ===========================================

    @abstractmethod
    async def get_challenge(self, challenge_id: str) -> Challenge | None:
        """Fetch a challenge by id, or None."""

    @abstractmethod
    async def create_challenge(self, challenge: Challenge) -> Challenge:
        """Insert a challenge if no document with its id exists.

        Raises:
            DuplicateEntityError: If the id is already taken
        """

    @abstractmethod
    async def put_challenge(self, challenge: Challenge) -> Challenge:
        """Unconditionally overwrite a challenge document.

        Seeding and fixtures only. Lifecycle changes go through
        ``compare_and_set_challenge``.
        """

    @abstractmethod
    async def compare_and_set_challenge(
        self,
        challenge: Challenge,
        expected_status: ChallengeStatus,
    ) -> Challenge:
        """Write ``challenge`` only if the stored status is ``expected_status``.

        Raises:
            EntityNotFoundError: If the challenge does not exist
            ConcurrencyError: If the stored status differs
        """

    @abstractmethod
    async def increment_challenge_counter(
        self,
        challenge_id: str,
        field: ChallengeCounter,
        amount: int = 1,
    ) -> int:
        """Atomically add ``amount`` to a counter and return the new value."""

    @abstractmethod
    async def query_challenges(
        self,
        status: ChallengeStatus | None = None,
        template_id: str | None = None,
        due_before: datetime | None = None,
        ends_before: datetime | None = None,
        limit: int = MAX_QUERY_LIMIT,
    ) -> list[Challenge]:
        """Query challenges, ordered by id.

        Args:
            status: Only challenges in this status
            template_id: Only instances of this template
            due_before: Only challenges with ``start_date <= due_before``
            ends_before: Only challenges with ``end_date <= ends_before``
            limit: Maximum number of results
        """

    # ===========================================
    # USER CHALLENGES
    # ===========================================

    @abstractmethod
    async def get_user_challenge(
        self,
        user_id: str,
        challenge_id: str,
    ) -> UserChallenge | None:
        """Fetch the participation record for ``(user_id, challenge_id)``."""

    @abstractmethod
    async def create_user_challenge(self, record: UserChallenge) -> UserChallenge:
        """Insert a participation record if none exists for its key.

        Raises:
            DuplicateEntityError: If a record already exists
        """

    @abstractmethod
    async def put_user_challenge(self, record: UserChallenge) -> UserChallenge:
        """Unconditionally overwrite a participation record.

        Seeding and fixtures only; ``version`` is written as given. Lifecycle
        changes go through ``compare_and_set_user_challenge``.
        """

    @abstractmethod
    async def compare_and_set_user_challenge(
        self,
        record: UserChallenge,
        expected_status: UserChallengeStatus,
    ) -> UserChallenge:
        """Write ``record`` only if the stored record is still the one read.

        The stored status must be ``expected_status`` and the stored
        version must equal ``record.version``. The record is written with
        ``version + 1`` and returned as written.

        Raises:
            EntityNotFoundError: If the record does not exist
            ConcurrencyError: If the stored status or version differs
        """

    @abstractmethod
    async def query_user_challenges(
        self,
        user_id: str | None = None,
        challenge_id: str | None = None,
        statuses: list[UserChallengeStatus] | None = None,
        credit_pending: bool = False,
        limit: int = MAX_QUERY_LIMIT,
    ) -> list[UserChallenge]:
        """Query participation records, ordered by join time.

        Args:
            credit_pending: Only completed records whose ledger credit has
                not been confirmed
        """

    # ===========================================
    # SUBMISSIONS
    # ===========================================

    @abstractmethod
    async def add_submission(self, submission: ChallengeSubmission) -> ChallengeSubmission:
        """Persist an immutable submission."""

    @abstractmethod
    async def list_submissions(
        self,
        user_id: str,
        challenge_id: str,
    ) -> list[ChallengeSubmission]:
        """List submissions for a participation, oldest first."""

    # ===========================================
    # TEMPLATES
    # ===========================================

    @abstractmethod
    async def get_template(self, template_id: str) -> ChallengeTemplate | None:
        """Fetch a template by id."""

    @abstractmethod
    async def list_templates(self, active_only: bool = True) -> list[ChallengeTemplate]:
        """List templates, ordered by id."""

    @abstractmethod
    async def put_template(self, template: ChallengeTemplate) -> ChallengeTemplate:
        """Create or replace a template."""
