"""ChallengeService: catalog administration, participation and submissions."""

from datetime import datetime
from typing import Any
from uuid import uuid4

from challenge_engine.challenges.exceptions import (
    AlreadyJoined,
    ChallengeFull,
    ChallengeNotFound,
    ChallengeNotJoinable,
    InvalidTransition,
    NotParticipating,
)
from challenge_engine.challenges.rewards import RewardAward, calculate_reward
from challenge_engine.challenges.schemas import (
    Challenge,
    ChallengeFilters,
    ChallengeSubmission,
    CreateChallengeRequest,
    ReviewRequest,
    SubmissionRequest,
    UserChallenge,
    UserChallengeProgress,
    UserChallengeStats,
)
from challenge_engine.challenges.state_machine import StateMachine, submission_target
from challenge_engine.config import EngineSettings
from challenge_engine.progression.service import ProgressionService
from challenge_engine.repositories.base import ChallengeStore
from challenge_engine.repositories.exceptions import (
    ConcurrencyError,
    DuplicateEntityError,
    StoreUnavailable,
)
from challenge_engine.shared.clients.ledger_client import RewardLedger
from challenge_engine.shared.clients.link_resolver import LinkResolver
from challenge_engine.shared.clients.notification_client import NotificationDispatcher
from challenge_engine.shared.schemas.base import (
    ChallengeStatus,
    ChallengeType,
    SubmissionType,
    UserChallengeStatus,
)
from challenge_engine.shared.utils.datetime_utils import minutes_between, utcnow
from challenge_engine.shared.utils.logging import get_logger

logger = get_logger(__name__)

_OPEN_PARTICIPATION = [UserChallengeStatus.JOINED, UserChallengeStatus.IN_PROGRESS]

# Reads and writes of one progress update before a conflict is surfaced
PROGRESS_WRITE_ATTEMPTS = 3


class ReviewPolicy:
    """Decides which challenge types need a reviewer before completion."""

    def __init__(self, review_required: frozenset[ChallengeType]) -> None:
        self.review_required = review_required

    @classmethod
    def from_settings(cls, settings: EngineSettings) -> "ReviewPolicy":
        return cls(settings.review_required)

    def requires_review(self, challenge_type: ChallengeType) -> bool:
        return challenge_type in self.review_required


def next_progress_milestone(record: UserChallenge) -> str | None:
    """Next progress checkpoint for a participation, None once completed."""
    if record.status == UserChallengeStatus.COMPLETED:
        return None
    percentage = record.progress_percentage
    if percentage < 25:
        return "25% completion"
    if percentage < 50:
        return "50% completion"
    if percentage < 75:
        return "75% completion"
    return "Challenge completion"


class ChallengeService:
    """Manages challenges and user participation through the state machine."""

    def __init__(
        self,
        store: ChallengeStore,
        progression: ProgressionService,
        ledger: RewardLedger,
        notifier: NotificationDispatcher,
        link_resolver: LinkResolver,
        review_policy: ReviewPolicy,
    ) -> None:
        self.store = store
        self.progression = progression
        self.ledger = ledger
        self.notifier = notifier
        self.link_resolver = link_resolver
        self.review_policy = review_policy
        self.state_machine = StateMachine(store)

    # ===========================================
    # CATALOG
    # ===========================================

    async def create_challenge(
        self,
        data: CreateChallengeRequest,
        now: datetime | None = None,
    ) -> Challenge:
        """Create a new challenge in 'draft' status."""
        now = now or utcnow()
        challenge = Challenge(
            **data.model_dump(exclude={"id"}),
            id=data.id or uuid4().hex,
            status=ChallengeStatus.DRAFT,
            created_at=now,
            updated_at=now,
        )
        created = await self.store.create_challenge(challenge)
        logger.info(
            "challenge_created",
            challenge_id=created.id,
            tier=created.tier.value,
            type=created.type.value,
        )
        return created

    async def get_challenge(self, challenge_id: str) -> Challenge:
        challenge = await self.store.get_challenge(challenge_id)
        if challenge is None:
            raise ChallengeNotFound(challenge_id)
        return challenge

    async def list_challenges(self, filters: ChallengeFilters) -> list[Challenge]:
        """List challenges matching ``filters``, ordered by id."""
        status = filters.status[0] if filters.status and len(filters.status) == 1 else None
        challenges = await self.store.query_challenges(status=status)

        def matches(challenge: Challenge) -> bool:
            return (
                (filters.status is None or challenge.status in filters.status)
                and (filters.category is None or challenge.category in filters.category)
                and (filters.difficulty is None or challenge.difficulty in filters.difficulty)
                and (filters.type is None or challenge.type in filters.type)
                and (filters.tier is None or challenge.tier in filters.tier)
                and (filters.series_id is None or challenge.series_id == filters.series_id)
            )

        matching = [c for c in challenges if matches(c)]
        return matching[filters.offset : filters.offset + filters.limit]

    async def schedule_challenge(self, challenge_id: str, now: datetime | None = None) -> Challenge:
        return await self.state_machine.transition_challenge(
            challenge_id, ChallengeStatus.SCHEDULED, now
        )

    async def complete_challenge(self, challenge_id: str, now: datetime | None = None) -> Challenge:
        """Manually complete an active challenge and fail its open participations."""
        now = now or utcnow()
        challenge = await self.state_machine.transition_challenge(
            challenge_id, ChallengeStatus.COMPLETED, now, manual=True
        )
        await self.fail_open_participations(challenge, now)
        return challenge

    async def archive_challenge(self, challenge_id: str, now: datetime | None = None) -> Challenge:
        return await self.state_machine.transition_challenge(
            challenge_id, ChallengeStatus.ARCHIVED, now
        )

    async def fail_open_participations(
        self,
        challenge: Challenge,
        now: datetime,
    ) -> tuple[list[str], list[str]]:
        """Move joined/in_progress records of an ended challenge to 'failed'.

        Returns:
            (failed record ids, ids that could not be transitioned)
        """
        records = await self.store.query_user_challenges(
            challenge_id=challenge.id,
            statuses=_OPEN_PARTICIPATION,
        )
        transitioned: list[str] = []
        errors: list[str] = []
        for record in records:
            try:
                await self.state_machine.apply_user_challenge(
                    record, [UserChallengeStatus.FAILED], now
                )
            except (ConcurrencyError, InvalidTransition):
                # Moved on concurrently (submitted or abandoned); nothing to expire
                logger.info("participation_expiry_skipped", user_challenge_id=record.id)
                continue
            except StoreUnavailable:
                logger.error("participation_expiry_failed", user_challenge_id=record.id)
                errors.append(record.id)
                continue
            transitioned.append(record.id)
            await self.notify(
                record.user_id,
                "challenge_failed",
                {"challenge_id": challenge.id, "challenge_title": challenge.title},
            )
        return transitioned, errors

    # ===========================================
    # PARTICIPATION
    # ===========================================

    async def join_challenge(
        self,
        user_id: str,
        challenge_id: str,
        now: datetime | None = None,
    ) -> UserChallenge:
        """Join an active challenge. Tiers never gate joining.

        Raises:
            ChallengeNotFound: Unknown challenge
            AlreadyJoined: A record already exists (including a lost race)
            ChallengeNotJoinable: Challenge is not 'active'
            ChallengeFull: ``max_participants`` reached
        """
        now = now or utcnow()
        challenge = await self.get_challenge(challenge_id)

        if await self.store.get_user_challenge(user_id, challenge_id) is not None:
            raise AlreadyJoined(user_id, challenge_id)
        if challenge.status != ChallengeStatus.ACTIVE:
            raise ChallengeNotJoinable(challenge_id, challenge.status.value)
        if challenge.is_full:
            raise ChallengeFull(challenge_id, challenge.max_participants or 0)

        record = UserChallenge(
            user_id=user_id,
            challenge_id=challenge_id,
            status=UserChallengeStatus.JOINED,
            progress=0,
            max_progress=challenge.max_progress,
            joined_at=now,
            last_activity_at=now,
            updated_at=now,
        )
        try:
            record = await self.store.create_user_challenge(record)
        except DuplicateEntityError:
            raise AlreadyJoined(user_id, challenge_id) from None

        participants = await self.store.increment_challenge_counter(
            challenge_id, "participant_count"
        )
        logger.info(
            "challenge_joined",
            user_id=user_id,
            challenge_id=challenge_id,
            participant_count=participants,
        )
        await self.notify(
            user_id,
            "challenge_started",
            {"challenge_id": challenge_id, "challenge_title": challenge.title},
        )
        return record

    async def record_submission(
        self,
        user_id: str,
        challenge_id: str,
        data: SubmissionRequest,
        now: datetime | None = None,
    ) -> UserChallenge:
        """Record a progress update or a final submission.

        A final submission from 'joined' passes through 'in_progress'. When no
        review is required the record reaches 'completed' in the same
        conditional write that stores its rewards.

        Raises:
            NotParticipating: No record for ``(user_id, challenge_id)``
            ChallengeNotJoinable: Challenge is not 'active'
            InvalidTransition: Record is terminal or does not accept the submission
            ConcurrencyError: Another write changed the record first
        """
        now = now or utcnow()
        record = await self.store.get_user_challenge(user_id, challenge_id)
        if record is None:
            raise NotParticipating(user_id, challenge_id)
        challenge = await self.get_challenge(challenge_id)
        if challenge.status != ChallengeStatus.ACTIVE:
            raise ChallengeNotJoinable(challenge_id, challenge.status.value)

        target = submission_target(record, data.submission_type)
        is_progress = data.submission_type == SubmissionType.PROGRESS_UPDATE

        submission = ChallengeSubmission(
            id=uuid4().hex,
            user_id=user_id,
            challenge_id=challenge_id,
            content=data.content,
            evidence_links=await self.link_resolver.resolve_links(data.evidence_urls),
            submission_type=data.submission_type,
            progress_increment=data.progress_increment if is_progress else 0,
            difficulty_rating=None if is_progress else data.difficulty_rating,
            created_at=now,
        )
        await self.store.add_submission(submission)

        if is_progress:
            return await self._record_progress(challenge, record, submission, now)

        submissions = [*record.submissions, submission.id]
        path = [UserChallengeStatus.IN_PROGRESS] if record.status == UserChallengeStatus.JOINED else []
        path.append(target)

        if self.review_policy.requires_review(challenge.type):
            path.append(UserChallengeStatus.PENDING_REVIEW)
            saved = await self.state_machine.apply_user_challenge(
                record, path, now, submissions=submissions
            )
            await self.notify(
                user_id,
                "challenge_submitted",
                {"challenge_id": challenge_id, "challenge_title": challenge.title},
            )
            return saved

        path.append(UserChallengeStatus.COMPLETED)
        return await self._complete(
            challenge,
            record,
            path,
            now,
            difficulty_rating=data.difficulty_rating,
            submissions=submissions,
        )

    async def _record_progress(
        self,
        challenge: Challenge,
        record: UserChallenge,
        submission: ChallengeSubmission,
        now: datetime,
    ) -> UserChallenge:
        """Append a progress submission to the record.

        A write that loses to another progress update on the same record is
        re-applied on a fresh read, so concurrent updates all count.
        """
        attempt = 1
        while True:
            progress = min(record.progress + submission.progress_increment, record.max_progress)
            submissions = [*record.submissions, submission.id]
            try:
                if record.status == UserChallengeStatus.JOINED:
                    saved = await self.state_machine.apply_user_challenge(
                        record,
                        [UserChallengeStatus.IN_PROGRESS],
                        now,
                        progress=progress,
                        submissions=submissions,
                    )
                else:
                    updated = record.model_copy(
                        update={
                            "progress": progress,
                            "submissions": submissions,
                            "last_activity_at": now,
                            "updated_at": now,
                        }
                    )
                    saved = await self.store.compare_and_set_user_challenge(updated, record.status)
                break
            except ConcurrencyError:
                if attempt >= PROGRESS_WRITE_ATTEMPTS:
                    raise
                attempt += 1
                logger.info(
                    "challenge_progress_conflict",
                    user_challenge_id=record.id,
                    attempt=attempt,
                )
                fresh = await self.store.get_user_challenge(record.user_id, record.challenge_id)
                if fresh is None:
                    raise NotParticipating(record.user_id, record.challenge_id) from None
                submission_target(fresh, SubmissionType.PROGRESS_UPDATE)
                record = fresh

        logger.info(
            "challenge_progress_recorded",
            user_id=record.user_id,
            challenge_id=record.challenge_id,
            progress=saved.progress,
            max_progress=saved.max_progress,
        )
        await self.notify(
            record.user_id,
            "challenge_progress",
            {
                "challenge_id": challenge.id,
                "challenge_title": challenge.title,
                "progress": saved.progress,
                "max_progress": saved.max_progress,
            },
        )
        return saved

    async def review_submission(
        self,
        user_id: str,
        challenge_id: str,
        data: ReviewRequest,
        now: datetime | None = None,
    ) -> UserChallenge:
        """Approve (complete with rewards) or reject (fail) a pending submission.

        An approval's ``quality_score`` feeds the quality bonus; the
        participant's difficulty rating comes from their final submission.
        """
        now = now or utcnow()
        record = await self.store.get_user_challenge(user_id, challenge_id)
        if record is None:
            raise NotParticipating(user_id, challenge_id)
        target = UserChallengeStatus.COMPLETED if data.approved else UserChallengeStatus.FAILED
        if record.status != UserChallengeStatus.PENDING_REVIEW:
            raise InvalidTransition(
                "user_challenge",
                record.id,
                record.status.value,
                target.value,
                reason="only submissions pending review can be reviewed",
            )
        challenge = await self.get_challenge(challenge_id)

        logger.info(
            "submission_reviewed",
            user_id=user_id,
            challenge_id=challenge_id,
            reviewer_id=data.reviewer_id,
            approved=data.approved,
            quality_score=data.quality_score,
        )
        if data.approved:
            return await self._complete(
                challenge,
                record,
                [target],
                now,
                quality_score=data.quality_score,
                difficulty_rating=await self._final_difficulty_rating(record),
            )

        saved = await self.state_machine.apply_user_challenge(record, [target], now)
        await self.notify(
            user_id,
            "challenge_failed",
            {"challenge_id": challenge_id, "challenge_title": challenge.title},
        )
        return saved

    async def abandon_challenge(
        self,
        user_id: str,
        challenge_id: str,
        now: datetime | None = None,
    ) -> UserChallenge:
        """Abandon a non-terminal participation. The record is retained."""
        now = now or utcnow()
        record = await self.store.get_user_challenge(user_id, challenge_id)
        if record is None:
            raise NotParticipating(user_id, challenge_id)
        return await self.state_machine.apply_user_challenge(
            record, [UserChallengeStatus.ABANDONED], now
        )

    # ===========================================
    # COMPLETION
    # ===========================================

    async def _complete(
        self,
        challenge: Challenge,
        record: UserChallenge,
        path: list[UserChallengeStatus],
        now: datetime,
        quality_score: int | None = None,
        difficulty_rating: int | None = None,
        **updates: Any,
    ) -> UserChallenge:
        """Write the completion and its rewards in one conditional write.

        Only the writer that wins the compare-and-set credits the ledger.
        """
        completion_minutes = minutes_between(record.joined_at, now)
        profile = await self.progression.get_user_progression_profile(record.user_id)
        standing = profile.standing(challenge.tier)
        award = calculate_reward(
            challenge,
            user_id=record.user_id,
            user_challenge_id=record.id,
            eligible_for_bonus=standing.eligible_for_bonus,
            bonus_multiplier=standing.bonus_multiplier,
            completion_time_minutes=completion_minutes,
            quality_score=quality_score,
            difficulty_rating=difficulty_rating,
            first_attempt=await self._is_first_attempt(challenge, record),
        )

        saved = await self.state_machine.apply_user_challenge(
            record,
            path,
            now,
            progress=record.max_progress,
            completion_time_minutes=completion_minutes,
            xp_earned=award.total,
            badges_earned=set(award.badges),
            reward_breakdown=award.breakdown(),
            **updates,
        )
        return await self._after_completion(challenge, saved, award, now)

    async def _is_first_attempt(self, challenge: Challenge, record: UserChallenge) -> bool:
        """True for the user's only participation across a recurring template's instances."""
        if challenge.template_id is None:
            return False
        instances = await self.store.query_challenges(template_id=challenge.template_id)
        instance_ids = {c.id for c in instances}
        records = await self.store.query_user_challenges(user_id=record.user_id)
        return sum(1 for r in records if r.challenge_id in instance_ids) == 1

    async def _final_difficulty_rating(self, record: UserChallenge) -> int | None:
        submissions = await self.store.list_submissions(record.user_id, record.challenge_id)
        finals = [s for s in submissions if s.submission_type == SubmissionType.FINAL_SUBMISSION]
        return finals[-1].difficulty_rating if finals else None

    async def _after_completion(
        self,
        challenge: Challenge,
        record: UserChallenge,
        award: RewardAward,
        now: datetime,
    ) -> UserChallenge:
        """Side effects of a committed completion. Failures never undo it."""
        try:
            await self.store.increment_challenge_counter(challenge.id, "completion_count")
        except StoreUnavailable:
            logger.error("completion_count_increment_failed", challenge_id=challenge.id)

        record = await self._deliver_credit(record, award, now) or record

        logger.info(
            "challenge_completed",
            user_id=record.user_id,
            challenge_id=challenge.id,
            xp_earned=award.total,
            bonus_xp=award.bonus_xp,
            badges=sorted(award.badges),
        )
        await self.notify(
            record.user_id,
            "challenge_completed",
            {
                "challenge_id": challenge.id,
                "challenge_title": challenge.title,
                "xp": award.total,
                "special_rewards": [r.type for r in award.special_rewards],
            },
        )
        return record

    async def _deliver_credit(
        self,
        record: UserChallenge,
        award: RewardAward,
        now: datetime,
    ) -> UserChallenge | None:
        """Credit the ledger, then mark the record credited.

        Returns the record as marked, the unmarked record when only the
        mark failed, or None when the ledger call failed. An unmarked
        record stays pending and is credited again by ``redeliver_credit``.
        """
        try:
            await self.ledger.credit(award)
        except Exception:
            logger.exception(
                "ledger_credit_failed",
                user_challenge_id=record.id,
                xp=award.total,
            )
            return None

        try:
            return await self.store.compare_and_set_user_challenge(
                record.model_copy(update={"reward_credited_at": now}),
                UserChallengeStatus.COMPLETED,
            )
        except (ConcurrencyError, StoreUnavailable):
            logger.warning("ledger_credit_mark_failed", user_challenge_id=record.id)
            return record

    async def redeliver_credit(self, record: UserChallenge, now: datetime | None = None) -> bool:
        """Credit a completed record whose credit was never confirmed.

        Returns:
            False if the ledger call failed again
        """
        now = now or utcnow()
        delivered = await self._deliver_credit(record, RewardAward.from_record(record), now)
        if delivered is None:
            return False
        logger.info("ledger_credit_redelivered", user_challenge_id=record.id, xp=record.xp_earned)
        return True

    # ===========================================
    # READ SIDE
    # ===========================================

    async def get_user_challenge(self, user_id: str, challenge_id: str) -> UserChallenge:
        record = await self.store.get_user_challenge(user_id, challenge_id)
        if record is None:
            raise NotParticipating(user_id, challenge_id)
        return record

    async def list_user_challenges(
        self,
        user_id: str,
        statuses: list[UserChallengeStatus] | None = None,
    ) -> list[UserChallenge]:
        return await self.store.query_user_challenges(user_id=user_id, statuses=statuses)

    async def list_submissions(self, user_id: str, challenge_id: str) -> list[ChallengeSubmission]:
        await self.get_user_challenge(user_id, challenge_id)
        return await self.store.list_submissions(user_id, challenge_id)

    async def get_user_challenge_progress(
        self,
        user_id: str,
        challenge_id: str,
    ) -> UserChallengeProgress:
        record = await self.get_user_challenge(user_id, challenge_id)
        return UserChallengeProgress(
            user_challenge=record,
            progress_percentage=round(record.progress_percentage, 2),
            next_milestone=next_progress_milestone(record),
        )

    async def get_user_challenge_stats(self, user_id: str) -> UserChallengeStats:
        """Aggregate participation statistics for ``user_id``."""
        records = await self.store.query_user_challenges(user_id=user_id)

        def count(*statuses: UserChallengeStatus) -> int:
            return sum(1 for r in records if r.status in statuses)

        completed = [r for r in records if r.status == UserChallengeStatus.COMPLETED]
        durations = [
            r.completion_time_minutes for r in completed if r.completion_time_minutes is not None
        ]
        return UserChallengeStats(
            user_id=user_id,
            total_joined=len(records),
            total_active=count(
                UserChallengeStatus.JOINED,
                UserChallengeStatus.IN_PROGRESS,
                UserChallengeStatus.SUBMITTED,
                UserChallengeStatus.PENDING_REVIEW,
            ),
            total_completed=len(completed),
            total_abandoned=count(UserChallengeStatus.ABANDONED),
            total_failed=count(UserChallengeStatus.FAILED),
            total_xp_earned=sum(r.xp_earned or 0 for r in completed),
            average_completion_minutes=(
                round(sum(durations) / len(durations), 2) if durations else 0.0
            ),
            completion_rate=round(len(completed) / len(records), 4) if records else 0.0,
        )

    # ===========================================
    # HELPERS
    # ===========================================

    async def notify(self, user_id: str, event_type: str, data: dict[str, Any]) -> None:
        """Send a notification. Failures are logged, never raised."""
        try:
            await self.notifier.notify(user_id, event_type, data)
        except Exception:
            logger.exception("notification_failed", user_id=user_id, event_type=event_type)
