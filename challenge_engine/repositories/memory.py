"""In-memory challenge store.

Documents are deep-copied on every read and write so callers can never
mutate stored state behind the store's back. No method awaits between
reading and writing, which makes each call atomic on a single event loop.
"""

from datetime import datetime

from challenge_engine.challenges.schemas import (
    Challenge,
    ChallengeSubmission,
    ChallengeTemplate,
    UserChallenge,
    make_user_challenge_id,
)
from challenge_engine.repositories.base import (
    MAX_QUERY_LIMIT,
    ChallengeCounter,
    ChallengeStore,
)
from challenge_engine.repositories.exceptions import (
    ConcurrencyError,
    DuplicateEntityError,
    EntityNotFoundError,
)
from challenge_engine.shared.schemas.base import ChallengeStatus, UserChallengeStatus


class InMemoryChallengeStore(ChallengeStore):
    """Dictionary-backed store used by tests and local runs."""

    def __init__(self) -> None:
        self._challenges: dict[str, Challenge] = {}
        self._user_challenges: dict[str, UserChallenge] = {}
        self._submissions: dict[str, ChallengeSubmission] = {}
        self._templates: dict[str, ChallengeTemplate] = {}

    # ===========================================
    # CHALLENGES
    # ===========================================

    async def get_challenge(self, challenge_id: str) -> Challenge | None:
        challenge = self._challenges.get(challenge_id)
        return challenge.model_copy(deep=True) if challenge else None

    async def create_challenge(self, challenge: Challenge) -> Challenge:
        if challenge.id in self._challenges:
            raise DuplicateEntityError("Challenge", challenge.id)
        self._challenges[challenge.id] = challenge.model_copy(deep=True)
        return challenge.model_copy(deep=True)

    async def put_challenge(self, challenge: Challenge) -> Challenge:
        self._challenges[challenge.id] = challenge.model_copy(deep=True)
        return challenge.model_copy(deep=True)

    async def compare_and_set_challenge(
        self,
        challenge: Challenge,
        expected_status: ChallengeStatus,
    ) -> Challenge:
        stored = self._challenges.get(challenge.id)
        if stored is None:
            raise EntityNotFoundError("Challenge", challenge.id)
        # Counters are owned by increment_challenge_counter
        updated = challenge.model_copy(
            update={
                "participant_count": stored.participant_count,
                "completion_count": stored.completion_count,
            },
            deep=True,
        )
        if stored.status != expected_status:
            if stored == updated:
                return stored.model_copy(deep=True)
            raise ConcurrencyError(
                "Challenge", challenge.id, expected_status.value, stored.status.value
            )
        self._challenges[challenge.id] = updated
        return updated.model_copy(deep=True)

    async def increment_challenge_counter(
        self,
        challenge_id: str,
        field: ChallengeCounter,
        amount: int = 1,
    ) -> int:
        stored = self._challenges.get(challenge_id)
        if stored is None:
            raise EntityNotFoundError("Challenge", challenge_id)
        value = getattr(stored, field) + amount
        self._challenges[challenge_id] = stored.model_copy(update={field: value})
        return value

    async def query_challenges(
        self,
        status: ChallengeStatus | None = None,
        template_id: str | None = None,
        due_before: datetime | None = None,
        ends_before: datetime | None = None,
        limit: int = MAX_QUERY_LIMIT,
    ) -> list[Challenge]:
        results = []
        for challenge in sorted(self._challenges.values(), key=lambda c: c.id):
            if status is not None and challenge.status != status:
                continue
            if template_id is not None and challenge.template_id != template_id:
                continue
            if due_before is not None and (
                challenge.start_date is None or challenge.start_date > due_before
            ):
                continue
            if ends_before is not None and (
                challenge.end_date is None or challenge.end_date > ends_before
            ):
                continue
            results.append(challenge.model_copy(deep=True))
            if len(results) >= limit:
                break
        return results

    # ===========================================
    # USER CHALLENGES
    # ===========================================

    async def get_user_challenge(
        self,
        user_id: str,
        challenge_id: str,
    ) -> UserChallenge | None:
        record = self._user_challenges.get(make_user_challenge_id(user_id, challenge_id))
        return record.model_copy(deep=True) if record else None

    async def create_user_challenge(self, record: UserChallenge) -> UserChallenge:
        if record.id in self._user_challenges:
            raise DuplicateEntityError("UserChallenge", record.id)
        self._user_challenges[record.id] = record.model_copy(deep=True)
        return record.model_copy(deep=True)

    async def put_user_challenge(self, record: UserChallenge) -> UserChallenge:
        self._user_challenges[record.id] = record.model_copy(deep=True)
        return record.model_copy(deep=True)

    async def compare_and_set_user_challenge(
        self,
        record: UserChallenge,
        expected_status: UserChallengeStatus,
    ) -> UserChallenge:
        stored = self._user_challenges.get(record.id)
        if stored is None:
            raise EntityNotFoundError("UserChallenge", record.id)
        written = record.model_copy(update={"version": record.version + 1}, deep=True)
        if stored.status != expected_status or stored.version != record.version:
            if stored == written:
                return stored.model_copy(deep=True)
            raise ConcurrencyError(
                "UserChallenge",
                record.id,
                expected_status.value,
                stored.status.value,
                expected_version=record.version,
                actual_version=stored.version,
            )
        self._user_challenges[record.id] = written
        return written.model_copy(deep=True)

    async def query_user_challenges(
        self,
        user_id: str | None = None,
        challenge_id: str | None = None,
        statuses: list[UserChallengeStatus] | None = None,
        credit_pending: bool = False,
        limit: int = MAX_QUERY_LIMIT,
    ) -> list[UserChallenge]:
        records = sorted(
            self._user_challenges.values(), key=lambda r: (r.joined_at, r.id)
        )
        results = []
        for record in records:
            if user_id is not None and record.user_id != user_id:
                continue
            if challenge_id is not None and record.challenge_id != challenge_id:
                continue
            if statuses is not None and record.status not in statuses:
                continue
            if credit_pending and not record.credit_pending:
                continue
            results.append(record.model_copy(deep=True))
            if len(results) >= limit:
                break
        return results

    # ===========================================
    # SUBMISSIONS
    # ===========================================

    async def add_submission(self, submission: ChallengeSubmission) -> ChallengeSubmission:
        if submission.id in self._submissions:
            raise DuplicateEntityError("ChallengeSubmission", submission.id)
        self._submissions[submission.id] = submission
        return submission

    async def list_submissions(
        self,
        user_id: str,
        challenge_id: str,
    ) -> list[ChallengeSubmission]:
        return sorted(
            (
                s
                for s in self._submissions.values()
                if s.user_id == user_id and s.challenge_id == challenge_id
            ),
            key=lambda s: (s.created_at, s.id),
        )

    # ===========================================
    # TEMPLATES
    # ===========================================

    async def get_template(self, template_id: str) -> ChallengeTemplate | None:
        template = self._templates.get(template_id)
        return template.model_copy(deep=True) if template else None

    async def list_templates(self, active_only: bool = True) -> list[ChallengeTemplate]:
        return [
            t.model_copy(deep=True)
            for t in sorted(self._templates.values(), key=lambda t: t.id)
            if t.is_active or not active_only
        ]

    async def put_template(self, template: ChallengeTemplate) -> ChallengeTemplate:
        self._templates[template.id] = template.model_copy(deep=True)
        return template.model_copy(deep=True)
