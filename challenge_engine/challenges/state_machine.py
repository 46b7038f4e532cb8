"""Challenge and participation lifecycle state machines.

Challenge:     draft → scheduled → active → completed → archived
               Any non-archived challenge can be force-archived.
Participation: joined → in_progress → submitted → (pending_review →) completed
               Any non-terminal record can → abandoned; pending_review can → failed;
               joined/in_progress → failed when the challenge expires.

Every status change in the engine goes through this module.
"""

from datetime import datetime

from challenge_engine.challenges.exceptions import ChallengeNotFound, InvalidTransition
from challenge_engine.challenges.schemas import Challenge, UserChallenge
from challenge_engine.repositories.base import ChallengeStore
from challenge_engine.shared.schemas.base import (
    ChallengeStatus,
    SubmissionType,
    UserChallengeStatus,
)
from challenge_engine.shared.utils.datetime_utils import utcnow
from challenge_engine.shared.utils.logging import get_logger

logger = get_logger(__name__)


CHALLENGE_TRANSITIONS: dict[ChallengeStatus, list[ChallengeStatus]] = {
    ChallengeStatus.DRAFT: [ChallengeStatus.SCHEDULED, ChallengeStatus.ARCHIVED],
    ChallengeStatus.SCHEDULED: [ChallengeStatus.ACTIVE, ChallengeStatus.ARCHIVED],
    ChallengeStatus.ACTIVE: [ChallengeStatus.COMPLETED, ChallengeStatus.ARCHIVED],
    ChallengeStatus.COMPLETED: [ChallengeStatus.ARCHIVED],
    ChallengeStatus.ARCHIVED: [],  # immutable
}

USER_CHALLENGE_TRANSITIONS: dict[UserChallengeStatus, list[UserChallengeStatus]] = {
    UserChallengeStatus.JOINED: [
        UserChallengeStatus.IN_PROGRESS,
        UserChallengeStatus.ABANDONED,
        UserChallengeStatus.FAILED,
    ],
    UserChallengeStatus.IN_PROGRESS: [
        UserChallengeStatus.SUBMITTED,
        UserChallengeStatus.ABANDONED,
        UserChallengeStatus.FAILED,
    ],
    UserChallengeStatus.SUBMITTED: [
        UserChallengeStatus.PENDING_REVIEW,
        UserChallengeStatus.COMPLETED,
        UserChallengeStatus.ABANDONED,
    ],
    UserChallengeStatus.PENDING_REVIEW: [
        UserChallengeStatus.COMPLETED,
        UserChallengeStatus.FAILED,
        UserChallengeStatus.ABANDONED,
    ],
    UserChallengeStatus.COMPLETED: [],
    UserChallengeStatus.ABANDONED: [],
    UserChallengeStatus.FAILED: [],
}

# Timestamp set when a record enters the status
_STATUS_TIMESTAMPS: dict[UserChallengeStatus, str] = {
    UserChallengeStatus.SUBMITTED: "submitted_at",
    UserChallengeStatus.COMPLETED: "completed_at",
    UserChallengeStatus.ABANDONED: "abandoned_at",
    UserChallengeStatus.FAILED: "failed_at",
}

# Submission types accepted per participation status
_SUBMISSION_TARGETS: dict[SubmissionType, UserChallengeStatus] = {
    SubmissionType.PROGRESS_UPDATE: UserChallengeStatus.IN_PROGRESS,
    SubmissionType.FINAL_SUBMISSION: UserChallengeStatus.SUBMITTED,
}
_SUBMITTABLE: frozenset[UserChallengeStatus] = frozenset(
    {UserChallengeStatus.JOINED, UserChallengeStatus.IN_PROGRESS}
)


def can_transition_challenge(current: ChallengeStatus, target: ChallengeStatus) -> bool:
    """Check if a challenge status change is in the transition table."""
    return target in CHALLENGE_TRANSITIONS.get(current, [])


def can_transition_user_challenge(
    current: UserChallengeStatus,
    target: UserChallengeStatus,
) -> bool:
    """Check if a participation status change is in the transition table."""
    return target in USER_CHALLENGE_TRANSITIONS.get(current, [])


def validate_challenge_transition(
    challenge: Challenge,
    target: ChallengeStatus,
    now: datetime,
    manual: bool = False,
) -> None:
    """Validate a challenge transition including its time guard.

    Args:
        challenge: Challenge as currently stored
        target: Requested status
        now: Reference time for the guards
        manual: Administrative completion before ``end_date``

    Raises:
        InvalidTransition: If the table or a guard forbids the change
    """
    current = challenge.status
    if not can_transition_challenge(current, target):
        raise InvalidTransition(
            "challenge",
            challenge.id,
            current.value,
            target.value,
            allowed=[s.value for s in CHALLENGE_TRANSITIONS.get(current, [])],
        )

    reason = None
    if target == ChallengeStatus.SCHEDULED:
        if challenge.start_date is None:
            reason = "start_date is not set"
        elif challenge.start_date <= now:
            reason = "start_date must be in the future"
    elif target == ChallengeStatus.ACTIVE:
        if challenge.start_date is not None and challenge.start_date > now:
            reason = "start_date has not been reached"
    elif target == ChallengeStatus.COMPLETED and not manual:
        if challenge.end_date is None or challenge.end_date > now:
            reason = "end_date has not been reached"

    if reason:
        raise InvalidTransition(
            "challenge", challenge.id, current.value, target.value, reason=reason
        )


def validate_user_challenge_transition(
    record: UserChallenge,
    target: UserChallengeStatus,
) -> None:
    """Validate a participation transition, raising InvalidTransition if invalid."""
    if not can_transition_user_challenge(record.status, target):
        raise InvalidTransition(
            "user_challenge",
            record.id,
            record.status.value,
            target.value,
            allowed=[s.value for s in USER_CHALLENGE_TRANSITIONS.get(record.status, [])],
        )


def submission_target(
    record: UserChallenge,
    submission_type: SubmissionType,
) -> UserChallengeStatus:
    """Status a submission of ``submission_type`` moves the record towards.

    Raises:
        InvalidTransition: If the record no longer accepts submissions
    """
    target = _SUBMISSION_TARGETS[submission_type]
    if record.status not in _SUBMITTABLE:
        raise InvalidTransition(
            "user_challenge",
            record.id,
            record.status.value,
            target.value,
            reason=f"{submission_type.value} not accepted in status '{record.status.value}'",
        )
    return target


class StateMachine:
    """Applies validated transitions through conditional store writes.

    Each write is a compare-and-set against the status that was read, so
    two racing transitions of the same document cannot both succeed.
    """

    def __init__(self, store: ChallengeStore) -> None:
        self.store = store

    async def transition_challenge(
        self,
        challenge_id: str,
        target: ChallengeStatus,
        now: datetime | None = None,
        manual: bool = False,
    ) -> Challenge:
        """Move a stored challenge to ``target``.

        Raises:
            ChallengeNotFound: If the challenge does not exist
            InvalidTransition: If the change is not allowed
            ConcurrencyError: If another writer changed the status first
        """
        now = now or utcnow()
        challenge = await self.store.get_challenge(challenge_id)
        if challenge is None:
            raise ChallengeNotFound(challenge_id)
        return await self.apply_challenge(challenge, target, now, manual=manual)

    async def apply_challenge(
        self,
        challenge: Challenge,
        target: ChallengeStatus,
        now: datetime,
        manual: bool = False,
    ) -> Challenge:
        """Move an already-read challenge to ``target``."""
        validate_challenge_transition(challenge, target, now, manual=manual)

        if target == ChallengeStatus.ARCHIVED and challenge.status != ChallengeStatus.COMPLETED:
            logger.warning(
                "challenge_force_archived",
                challenge_id=challenge.id,
                from_status=challenge.status.value,
            )

        updated = challenge.model_copy(update={"status": target, "updated_at": now})
        saved = await self.store.compare_and_set_challenge(updated, challenge.status)
        logger.info(
            "challenge_transitioned",
            challenge_id=challenge.id,
            from_status=challenge.status.value,
            to_status=target.value,
        )
        return saved

    async def apply_user_challenge(
        self,
        record: UserChallenge,
        path: list[UserChallengeStatus],
        now: datetime,
        **updates: object,
    ) -> UserChallenge:
        """Move an already-read participation record along ``path``.

        Every step of ``path`` is validated, but only the final status is
        written, in a single conditional write together with ``updates``.
        Entry timestamps of every status passed through are set.
        """
        if not path:
            raise ValueError("path must contain at least one status")

        changes: dict[str, object] = {"last_activity_at": now, "updated_at": now}
        step = record
        for target in path:
            validate_user_challenge_transition(step, target)
            timestamp_field = _STATUS_TIMESTAMPS.get(target)
            if timestamp_field:
                changes[timestamp_field] = now
            step = step.model_copy(update={"status": target})

        changes.update(updates)
        changes["status"] = path[-1]
        updated = record.model_copy(update=changes)
        saved = await self.store.compare_and_set_user_challenge(updated, record.status)
        logger.info(
            "user_challenge_transitioned",
            user_id=record.user_id,
            challenge_id=record.challenge_id,
            from_status=record.status.value,
            to_status=path[-1].value,
            via=[s.value for s in path[:-1]],
        )
        return saved
