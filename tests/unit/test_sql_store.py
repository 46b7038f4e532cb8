"""Unit tests for SqlChallengeStore against a mocked async session."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from challenge_engine.repositories.exceptions import (
    ConcurrencyError,
    DuplicateEntityError,
    EntityNotFoundError,
    StoreUnavailable,
)
from challenge_engine.repositories.resilience import RetryConfig
from challenge_engine.repositories.sql import SqlChallengeStore, _user_challenge_values
from challenge_engine.shared.schemas.base import ChallengeStatus, UserChallengeStatus
from tests.factories import ChallengeFactory, UserChallengeFactory


@pytest.fixture
def session() -> AsyncMock:
    session = AsyncMock()
    session.execute = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.scalar = AsyncMock()
    session.get = AsyncMock()
    return session


@pytest.fixture
def sql_store(session) -> SqlChallengeStore:
    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=session)
    context.__aexit__ = AsyncMock(return_value=None)
    factory = MagicMock(return_value=context)
    return SqlChallengeStore(factory, retry_config=RetryConfig(max_retries=1, base_delay=0))


def _result(rowcount: int = 1, scalar=None) -> MagicMock:
    result = MagicMock()
    result.rowcount = rowcount
    result.scalar_one_or_none.return_value = scalar
    return result


class TestConditionalWrites:
    """Tests for compare-and-set and insert-if-absent."""

    @pytest.mark.asyncio
    async def test_cas_wins(self, sql_store, session):
        record = UserChallengeFactory.create(status=UserChallengeStatus.IN_PROGRESS, version=2)
        session.execute.return_value = _result(rowcount=1)

        saved = await sql_store.compare_and_set_user_challenge(record, UserChallengeStatus.JOINED)

        assert saved == record.model_copy(update={"version": 3})
        session.commit.assert_awaited_once()
        session.rollback.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cas_is_conditional_on_status_and_version(self, sql_store, session):
        session.execute.return_value = _result(rowcount=1)

        await sql_store.compare_and_set_user_challenge(
            UserChallengeFactory.create(), UserChallengeStatus.JOINED
        )

        statement = str(session.execute.await_args.args[0])
        assert "user_challenges.status = " in statement
        assert "user_challenges.version = " in statement

    @pytest.mark.asyncio
    async def test_cas_loses(self, sql_store, session):
        record = UserChallengeFactory.create(status=UserChallengeStatus.IN_PROGRESS)
        session.execute.return_value = _result(rowcount=0)
        session.get.return_value = record.model_copy(
            update={"status": UserChallengeStatus.ABANDONED, "version": 1}
        )

        with pytest.raises(ConcurrencyError) as exc_info:
            await sql_store.compare_and_set_user_challenge(record, UserChallengeStatus.JOINED)

        assert exc_info.value.details["actual_status"] == "abandoned"
        session.rollback.assert_awaited_once()
        session.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cas_loses_on_stale_version(self, sql_store, session):
        record = UserChallengeFactory.create(
            status=UserChallengeStatus.IN_PROGRESS, progress=1, max_progress=5
        )
        session.execute.return_value = _result(rowcount=0)
        session.get.return_value = record.model_copy(update={"progress": 2, "version": 1})

        with pytest.raises(ConcurrencyError) as exc_info:
            await sql_store.compare_and_set_user_challenge(
                record.model_copy(update={"progress": 3}), UserChallengeStatus.IN_PROGRESS
            )

        assert exc_info.value.expected_version == 0
        assert exc_info.value.actual_version == 1

    @pytest.mark.asyncio
    async def test_cas_missing_document(self, sql_store, session):
        record = UserChallengeFactory.create()
        session.execute.return_value = _result(rowcount=0)
        session.get.return_value = None

        with pytest.raises(EntityNotFoundError):
            await sql_store.compare_and_set_user_challenge(record, UserChallengeStatus.JOINED)

    @pytest.mark.asyncio
    async def test_retry_after_committed_write_reports_success(self, sql_store, session):
        record = UserChallengeFactory.create(status=UserChallengeStatus.COMPLETED, xp_earned=100)
        written = record.model_copy(update={"version": 1})
        session.execute.side_effect = [_result(rowcount=1), _result(rowcount=0)]
        session.commit.side_effect = [OSError("connection reset"), None]
        session.get.return_value = written

        saved = await sql_store.compare_and_set_user_challenge(
            record, UserChallengeStatus.PENDING_REVIEW
        )

        assert saved == written
        assert session.execute.await_count == 2

    @pytest.mark.asyncio
    async def test_challenge_retry_after_committed_write_reports_success(self, sql_store, session):
        challenge = ChallengeFactory.create(id="c1", status=ChallengeStatus.ACTIVE)
        stored = challenge.model_copy(update={"participant_count": 4})
        session.execute.return_value = _result(rowcount=0)
        session.get.return_value = stored

        saved = await sql_store.compare_and_set_challenge(challenge, ChallengeStatus.SCHEDULED)

        assert saved.status == ChallengeStatus.ACTIVE
        assert saved.participant_count == 4
        session.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_challenge_cas_loses(self, sql_store, session):
        challenge = ChallengeFactory.create(id="c1", status=ChallengeStatus.ACTIVE)
        session.execute.return_value = _result(rowcount=0)
        session.get.return_value = challenge.model_copy(update={"status": ChallengeStatus.ARCHIVED})

        with pytest.raises(ConcurrencyError) as exc_info:
            await sql_store.compare_and_set_challenge(challenge, ChallengeStatus.SCHEDULED)

        assert exc_info.value.actual_status == "archived"

    @pytest.mark.asyncio
    async def test_create_duplicate(self, sql_store, session):
        session.execute.return_value = _result(rowcount=0)
        with pytest.raises(DuplicateEntityError):
            await sql_store.create_challenge(ChallengeFactory.create(id="c1"))

    @pytest.mark.asyncio
    async def test_create_user_challenge(self, sql_store, session):
        record = UserChallengeFactory.create()
        session.execute.return_value = _result(rowcount=1)
        assert await sql_store.create_user_challenge(record) == record


class TestCounters:
    @pytest.mark.asyncio
    async def test_increment_returns_new_value(self, sql_store, session):
        session.execute.return_value = _result(scalar=7)
        assert await sql_store.increment_challenge_counter("c1", "participant_count") == 7

    @pytest.mark.asyncio
    async def test_increment_missing_challenge(self, sql_store, session):
        session.execute.return_value = _result(scalar=None)
        with pytest.raises(EntityNotFoundError):
            await sql_store.increment_challenge_counter("c1", "completion_count")

    @pytest.mark.asyncio
    async def test_unknown_counter(self, sql_store):
        with pytest.raises(ValueError):
            await sql_store.increment_challenge_counter("c1", "title")


class TestAvailability:
    """Driver failures surface as StoreUnavailable after retries."""

    @pytest.mark.asyncio
    async def test_operational_error_retried_then_raised(self, sql_store, session):
        session.get.side_effect = OperationalError("SELECT", {}, ConnectionRefusedError())

        with pytest.raises(StoreUnavailable):
            await sql_store.get_challenge("c1")

        assert session.get.await_count == 2

    @pytest.mark.asyncio
    async def test_transient_error_recovers(self, sql_store, session):
        session.get.side_effect = [OperationalError("SELECT", {}, ConnectionRefusedError()), None]
        assert await sql_store.get_challenge("c1") is None

    @pytest.mark.asyncio
    async def test_conflicts_are_not_retried(self, sql_store, session):
        session.execute.return_value = _result(rowcount=0)
        session.get.return_value = UserChallengeFactory.create(status=UserChallengeStatus.COMPLETED)

        with pytest.raises(ConcurrencyError):
            await sql_store.compare_and_set_user_challenge(
                UserChallengeFactory.create(), UserChallengeStatus.JOINED
            )

        assert session.execute.await_count == 1


def test_user_challenge_values_are_json_ready():
    record = UserChallengeFactory.create(badges_earned={"b", "a"})
    values = _user_challenge_values(record)
    assert values["id"] == record.id
    assert values["badges_earned"] == ["a", "b"]
    assert values["status"] == "joined"
    assert values["joined_at"] == record.joined_at
