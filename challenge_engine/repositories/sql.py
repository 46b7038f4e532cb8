"""SQLAlchemy implementation of the challenge store.

Conditional writes are single ``UPDATE ... WHERE status = :expected``
statements (plus ``AND version = :read`` for participation records); the
row count decides whether the caller won. When it is zero and the stored
row already equals the intended write, a retried attempt whose first try
committed is reported as the success it was. Driver-level
connectivity failures surface as ``StoreUnavailable`` and are retried
through ``StoreGuard``.
"""

from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any, TypeVar

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from challenge_engine.challenges.schemas import (
    Challenge,
    ChallengeSubmission,
    ChallengeTemplate,
    UserChallenge,
    make_user_challenge_id,
)
from challenge_engine.infrastructure.database.models import (
    ChallengeRow,
    ChallengeSubmissionRow,
    ChallengeTemplateRow,
    UserChallengeRow,
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
    StoreUnavailable,
)
from challenge_engine.repositories.resilience import RetryConfig, StoreGuard
from challenge_engine.shared.schemas.base import (
    BaseSchema,
    ChallengeStatus,
    UserChallengeStatus,
)
from challenge_engine.shared.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

_COUNTERS = ("participant_count", "completion_count")


def _row_values(model: BaseSchema, exclude: set[str] | None = None) -> dict[str, Any]:
    """Column values for ``model``: JSON-compatible, datetimes kept native."""
    values = model.model_dump(mode="json", exclude=exclude)
    for key in values:
        raw = getattr(model, key)
        if isinstance(raw, datetime):
            values[key] = raw
    return values


def _challenge_values(challenge: Challenge) -> dict[str, Any]:
    values = _row_values(challenge)
    values["rewards"]["badges"] = sorted(challenge.rewards.badges)
    return values


def _user_challenge_values(record: UserChallenge) -> dict[str, Any]:
    values = _row_values(record)
    if record.badges_earned is not None:
        values["badges_earned"] = sorted(record.badges_earned)
    return values


class SqlChallengeStore(ChallengeStore):
    """Challenge store backed by PostgreSQL through SQLAlchemy async."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        retry_config: RetryConfig | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._guard = StoreGuard(type(self).__name__, retry_config)

    async def _run(self, operation: Callable[[AsyncSession], Awaitable[T]]) -> T:
        """Run ``operation`` in its own session with retry and circuit breaking."""

        async def guarded() -> T:
            try:
                async with self._session_factory() as session:
                    return await operation(session)
            except (OperationalError, InterfaceError, PoolTimeoutError, OSError) as e:
                raise StoreUnavailable("Challenge store unavailable", original_error=e) from e

        return await self._guard.run(guarded)

    # ===========================================
    # CHALLENGES
    # ===========================================

    async def get_challenge(self, challenge_id: str) -> Challenge | None:
        async def op(session: AsyncSession) -> Challenge | None:
            row = await session.get(ChallengeRow, challenge_id)
            return Challenge.model_validate(row) if row else None

        return await self._run(op)

    async def create_challenge(self, challenge: Challenge) -> Challenge:
        async def op(session: AsyncSession) -> Challenge:
            stmt = (
                insert(ChallengeRow)
                .values(**_challenge_values(challenge))
                .on_conflict_do_nothing(index_elements=["id"])
            )
            result = await session.execute(stmt)
            await session.commit()
            if result.rowcount == 0:
                raise DuplicateEntityError("Challenge", challenge.id)
            return challenge

        return await self._run(op)

    async def put_challenge(self, challenge: Challenge) -> Challenge:
        async def op(session: AsyncSession) -> Challenge:
            values = _challenge_values(challenge)
            stmt = (
                insert(ChallengeRow)
                .values(**values)
                .on_conflict_do_update(index_elements=["id"], set_=values)
            )
            await session.execute(stmt)
            await session.commit()
            return challenge

        return await self._run(op)

    async def compare_and_set_challenge(
        self,
        challenge: Challenge,
        expected_status: ChallengeStatus,
    ) -> Challenge:
        async def op(session: AsyncSession) -> Challenge:
            values = _challenge_values(challenge)
            for counter in _COUNTERS:
                values.pop(counter)
            values.pop("id")
            stmt = (
                update(ChallengeRow)
                .where(
                    ChallengeRow.id == challenge.id,
                    ChallengeRow.status == expected_status.value,
                )
                .values(**values)
            )
            result = await session.execute(stmt)
            if result.rowcount == 0:
                await session.rollback()
                row = await session.get(ChallengeRow, challenge.id, populate_existing=True)
                if row is None:
                    raise EntityNotFoundError("Challenge", challenge.id)
                stored = Challenge.model_validate(row)
                if stored.model_dump(exclude=set(_COUNTERS)) == challenge.model_dump(
                    exclude=set(_COUNTERS)
                ):
                    logger.info("store_cas_replayed", entity_type="Challenge", entity_id=challenge.id)
                    return stored
                logger.info(
                    "store_cas_conflict",
                    entity_type="Challenge",
                    entity_id=challenge.id,
                    expected_status=expected_status.value,
                    actual_status=stored.status.value,
                )
                raise ConcurrencyError(
                    "Challenge", challenge.id, expected_status.value, stored.status.value
                )
            await session.commit()
            row = await session.get(ChallengeRow, challenge.id, populate_existing=True)
            return Challenge.model_validate(row)

        return await self._run(op)

    async def increment_challenge_counter(
        self,
        challenge_id: str,
        field: ChallengeCounter,
        amount: int = 1,
    ) -> int:
        if field not in _COUNTERS:
            raise ValueError(f"Unknown counter '{field}'")
        column = getattr(ChallengeRow, field)

        async def op(session: AsyncSession) -> int:
            stmt = (
                update(ChallengeRow)
                .where(ChallengeRow.id == challenge_id)
                .values({column: column + amount})
                .returning(column)
            )
            value = (await session.execute(stmt)).scalar_one_or_none()
            if value is None:
                await session.rollback()
                raise EntityNotFoundError("Challenge", challenge_id)
            await session.commit()
            return value

        return await self._run(op)

    async def query_challenges(
        self,
        status: ChallengeStatus | None = None,
        template_id: str | None = None,
        due_before: datetime | None = None,
        ends_before: datetime | None = None,
        limit: int = MAX_QUERY_LIMIT,
    ) -> list[Challenge]:
        query = select(ChallengeRow)
        if status is not None:
            query = query.where(ChallengeRow.status == status.value)
        if template_id is not None:
            query = query.where(ChallengeRow.template_id == template_id)
        if due_before is not None:
            query = query.where(ChallengeRow.start_date <= due_before)
        if ends_before is not None:
            query = query.where(ChallengeRow.end_date <= ends_before)
        query = query.order_by(ChallengeRow.id).limit(min(limit, MAX_QUERY_LIMIT))

        async def op(session: AsyncSession) -> list[Challenge]:
            rows = (await session.execute(query)).scalars().all()
            return [Challenge.model_validate(row) for row in rows]

        return await self._run(op)

    # ===========================================
    # USER CHALLENGES
    # ===========================================

    async def get_user_challenge(
        self,
        user_id: str,
        challenge_id: str,
    ) -> UserChallenge | None:
        async def op(session: AsyncSession) -> UserChallenge | None:
            row = await session.get(
                UserChallengeRow, make_user_challenge_id(user_id, challenge_id)
            )
            return UserChallenge.model_validate(row) if row else None

        return await self._run(op)

    async def create_user_challenge(self, record: UserChallenge) -> UserChallenge:
        async def op(session: AsyncSession) -> UserChallenge:
            # No conflict target: either the id or (user_id, challenge_id) may clash
            stmt = (
                insert(UserChallengeRow)
                .values(**_user_challenge_values(record))
                .on_conflict_do_nothing()
            )
            result = await session.execute(stmt)
            await session.commit()
            if result.rowcount == 0:
                raise DuplicateEntityError("UserChallenge", record.id)
            return record

        return await self._run(op)

    async def put_user_challenge(self, record: UserChallenge) -> UserChallenge:
        async def op(session: AsyncSession) -> UserChallenge:
            values = _user_challenge_values(record)
            stmt = (
                insert(UserChallengeRow)
                .values(**values)
                .on_conflict_do_update(index_elements=["id"], set_=values)
            )
            await session.execute(stmt)
            await session.commit()
            return record

        return await self._run(op)

    async def compare_and_set_user_challenge(
        self,
        record: UserChallenge,
        expected_status: UserChallengeStatus,
    ) -> UserChallenge:
        written = record.model_copy(update={"version": record.version + 1})

        async def op(session: AsyncSession) -> UserChallenge:
            values = _user_challenge_values(written)
            values.pop("id")
            stmt = (
                update(UserChallengeRow)
                .where(
                    UserChallengeRow.id == record.id,
                    UserChallengeRow.status == expected_status.value,
                    UserChallengeRow.version == record.version,
                )
                .values(**values)
            )
            result = await session.execute(stmt)
            if result.rowcount == 0:
                await session.rollback()
                row = await session.get(UserChallengeRow, record.id, populate_existing=True)
                if row is None:
                    raise EntityNotFoundError("UserChallenge", record.id)
                stored = UserChallenge.model_validate(row)
                # A retried call whose first attempt committed finds its own write
                if stored.model_dump() == written.model_dump():
                    logger.info("store_cas_replayed", entity_type="UserChallenge", entity_id=record.id)
                    return stored
                logger.info(
                    "store_cas_conflict",
                    entity_type="UserChallenge",
                    entity_id=record.id,
                    expected_status=expected_status.value,
                    actual_status=stored.status.value,
                    expected_version=record.version,
                    actual_version=stored.version,
                )
                raise ConcurrencyError(
                    "UserChallenge",
                    record.id,
                    expected_status.value,
                    stored.status.value,
                    expected_version=record.version,
                    actual_version=stored.version,
                )
            await session.commit()
            return written

        return await self._run(op)

    async def query_user_challenges(
        self,
        user_id: str | None = None,
        challenge_id: str | None = None,
        statuses: list[UserChallengeStatus] | None = None,
        credit_pending: bool = False,
        limit: int = MAX_QUERY_LIMIT,
    ) -> list[UserChallenge]:
        query = select(UserChallengeRow)
        if user_id is not None:
            query = query.where(UserChallengeRow.user_id == user_id)
        if challenge_id is not None:
            query = query.where(UserChallengeRow.challenge_id == challenge_id)
        if statuses is not None:
            query = query.where(UserChallengeRow.status.in_([s.value for s in statuses]))
        if credit_pending:
            query = query.where(
                UserChallengeRow.status == UserChallengeStatus.COMPLETED.value,
                UserChallengeRow.reward_credited_at.is_(None),
            )
        query = query.order_by(UserChallengeRow.joined_at, UserChallengeRow.id).limit(
            min(limit, MAX_QUERY_LIMIT)
        )

        async def op(session: AsyncSession) -> list[UserChallenge]:
            rows = (await session.execute(query)).scalars().all()
            return [UserChallenge.model_validate(row) for row in rows]

        return await self._run(op)

    # ===========================================
    # SUBMISSIONS
    # ===========================================

    async def add_submission(self, submission: ChallengeSubmission) -> ChallengeSubmission:
        async def op(session: AsyncSession) -> ChallengeSubmission:
            stmt = (
                insert(ChallengeSubmissionRow)
                .values(**_row_values(submission))
                .on_conflict_do_nothing(index_elements=["id"])
            )
            result = await session.execute(stmt)
            await session.commit()
            if result.rowcount == 0:
                raise DuplicateEntityError("ChallengeSubmission", submission.id)
            return submission

        return await self._run(op)

    async def list_submissions(
        self,
        user_id: str,
        challenge_id: str,
    ) -> list[ChallengeSubmission]:
        query = (
            select(ChallengeSubmissionRow)
            .where(
                ChallengeSubmissionRow.user_id == user_id,
                ChallengeSubmissionRow.challenge_id == challenge_id,
            )
            .order_by(ChallengeSubmissionRow.created_at, ChallengeSubmissionRow.id)
        )

        async def op(session: AsyncSession) -> list[ChallengeSubmission]:
            rows = (await session.execute(query)).scalars().all()
            return [ChallengeSubmission.model_validate(row) for row in rows]

        return await self._run(op)

    # ===========================================
    # TEMPLATES
    # ===========================================

    async def get_template(self, template_id: str) -> ChallengeTemplate | None:
        async def op(session: AsyncSession) -> ChallengeTemplate | None:
            row = await session.get(ChallengeTemplateRow, template_id)
            return ChallengeTemplate.model_validate(row) if row else None

        return await self._run(op)

    async def list_templates(self, active_only: bool = True) -> list[ChallengeTemplate]:
        query = select(ChallengeTemplateRow).order_by(ChallengeTemplateRow.id)
        if active_only:
            query = query.where(ChallengeTemplateRow.is_active.is_(True))

        async def op(session: AsyncSession) -> list[ChallengeTemplate]:
            rows = (await session.execute(query)).scalars().all()
            return [ChallengeTemplate.model_validate(row) for row in rows]

        return await self._run(op)

    async def put_template(self, template: ChallengeTemplate) -> ChallengeTemplate:
        async def op(session: AsyncSession) -> ChallengeTemplate:
            values = _row_values(template)
            values["rewards"]["badges"] = sorted(template.rewards.badges)
            stmt = (
                insert(ChallengeTemplateRow)
                .values(**values)
                .on_conflict_do_update(index_elements=["id"], set_=values)
            )
            await session.execute(stmt)
            await session.commit()
            return template

        return await self._run(op)
