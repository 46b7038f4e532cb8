"""Unit tests for the lifecycle jobs and recurring windows."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from challenge_engine.challenges.recurrence import build_instance, instance_id, next_window
from challenge_engine.challenges.schemas import RewardBreakdown
from challenge_engine.dependencies import build_container
from challenge_engine.repositories.exceptions import StoreUnavailable
from challenge_engine.repositories.memory import InMemoryChallengeStore
from challenge_engine.shared.clients.ledger_client import LoggingRewardLedger
from challenge_engine.shared.clients.link_resolver import NullLinkResolver
from challenge_engine.shared.clients.notification_client import LoggingNotificationDispatcher
from challenge_engine.shared.schemas.base import (
    ChallengeStatus,
    RecurrenceRule,
    UserChallengeStatus,
)
from tests.factories import T0, ChallengeFactory, TemplateFactory, UserChallengeFactory


class _FailingStore(InMemoryChallengeStore):
    """Raises StoreUnavailable for writes to the listed document ids."""

    def __init__(self, failing_ids=(), fail_queries=False):
        super().__init__()
        self.failing_ids = set(failing_ids)
        self.fail_queries = fail_queries

    async def compare_and_set_challenge(self, challenge, expected_status):
        if challenge.id in self.failing_ids:
            raise StoreUnavailable("write timed out")
        return await super().compare_and_set_challenge(challenge, expected_status)

    async def compare_and_set_user_challenge(self, record, expected_status):
        if record.id in self.failing_ids:
            raise StoreUnavailable("write timed out")
        return await super().compare_and_set_user_challenge(record, expected_status)

    async def query_challenges(self, *args, **kwargs):
        if self.fail_queries:
            raise StoreUnavailable("query timed out")
        return await super().query_challenges(*args, **kwargs)


class _DownLedger(LoggingRewardLedger):
    async def credit(self, award):
        raise RuntimeError("ledger down")


def _jobs(settings, store, notifier=None, ledger=None):
    container = build_container(
        settings,
        store=store,
        ledger=ledger or LoggingRewardLedger(),
        notifier=notifier or LoggingNotificationDispatcher(),
        link_resolver=NullLinkResolver(),
    )
    return container.jobs


# ---------------------------------------------------------------------------
# Recurrence windows
# ---------------------------------------------------------------------------


class TestNextWindow:
    def test_daily(self):
        start, end = next_window(RecurrenceRule.DAILY, T0)
        assert start == datetime(2026, 3, 3, tzinfo=timezone.utc)
        assert end == datetime(2026, 3, 4, tzinfo=timezone.utc)

    def test_weekly_from_monday_is_next_monday(self):
        start, end = next_window(RecurrenceRule.WEEKLY, T0)
        assert start == datetime(2026, 3, 9, tzinfo=timezone.utc)
        assert end - start == timedelta(days=7)

    def test_weekly_from_sunday(self):
        start, _ = next_window(RecurrenceRule.WEEKLY, datetime(2026, 3, 8, 23, 59, tzinfo=timezone.utc))
        assert start == datetime(2026, 3, 9, tzinfo=timezone.utc)

    def test_monthly_rolls_over_year(self):
        start, end = next_window(
            RecurrenceRule.MONTHLY, datetime(2026, 12, 15, tzinfo=timezone.utc)
        )
        assert start == datetime(2027, 1, 1, tzinfo=timezone.utc)
        assert end == datetime(2027, 2, 1, tzinfo=timezone.utc)

    def test_instance_is_draft_copy_of_template(self):
        template = TemplateFactory.create(max_progress=3, tags=["sketch"])
        start, end = next_window(RecurrenceRule.DAILY, T0)

        instance = build_instance(template, start, end, T0)

        assert instance.id == instance_id("daily-sketch", start) == "daily-sketch-20260303"
        assert instance.status == ChallengeStatus.DRAFT
        assert instance.template_id == "daily-sketch"
        assert instance.max_progress == 3
        assert instance.created_by == "scheduler"


# ---------------------------------------------------------------------------
# Activate
# ---------------------------------------------------------------------------


class TestActivateJob:
    """Tests for ChallengeScheduler.activate."""

    @pytest.mark.asyncio
    async def test_activates_due_challenges_once(self, jobs, store):
        await store.put_challenge(
            ChallengeFactory.create(id="due", status=ChallengeStatus.SCHEDULED, start_date=T0)
        )
        await store.put_challenge(
            ChallengeFactory.create(
                id="later",
                status=ChallengeStatus.SCHEDULED,
                start_date=T0 + timedelta(hours=1),
            )
        )

        first = await jobs.activate(now=T0)
        second = await jobs.activate(now=T0)

        assert first.transitioned == ["due"]
        assert second.transitioned == []
        assert (await store.get_challenge("due")).status == ChallengeStatus.ACTIVE
        assert (await store.get_challenge("later")).status == ChallengeStatus.SCHEDULED

    @pytest.mark.asyncio
    async def test_failure_isolated_per_challenge(self, settings):
        store = _FailingStore(failing_ids={"a"})
        for cid in ("a", "b"):
            await store.put_challenge(
                ChallengeFactory.create(id=cid, status=ChallengeStatus.SCHEDULED, start_date=T0)
            )

        report = await _jobs(settings, store).activate(now=T0)

        assert report.failed == ["a"]
        assert report.transitioned == ["b"]

    @pytest.mark.asyncio
    async def test_candidate_query_failure_propagates(self, settings):
        with pytest.raises(StoreUnavailable):
            await _jobs(settings, _FailingStore(fail_queries=True)).activate(now=T0)

    @pytest.mark.asyncio
    async def test_new_instance_announced_to_earlier_participants(self, settings):
        store = InMemoryChallengeStore()
        notifier = LoggingNotificationDispatcher()
        await store.put_challenge(
            ChallengeFactory.create(
                id="daily-sketch-20260302",
                status=ChallengeStatus.COMPLETED,
                template_id="daily-sketch",
            )
        )
        await store.put_user_challenge(
            UserChallengeFactory.create(user_id="u1", challenge_id="daily-sketch-20260302")
        )
        await store.put_challenge(
            ChallengeFactory.create(
                id="daily-sketch-20260303",
                status=ChallengeStatus.SCHEDULED,
                start_date=T0,
                template_id="daily-sketch",
            )
        )

        await _jobs(settings, store, notifier).activate(now=T0)

        announced = [n for n in notifier.sent if n.event_type == "new_challenge_available"]
        assert [n.user_id for n in announced] == ["u1"]
        assert announced[0].data["challenge_id"] == "daily-sketch-20260303"


# ---------------------------------------------------------------------------
# Complete
# ---------------------------------------------------------------------------


class TestCompleteJob:
    """Tests for ChallengeScheduler.complete."""

    @pytest.mark.asyncio
    async def test_ended_challenge_fails_open_participations(self, jobs, store):
        await store.put_challenge(ChallengeFactory.create(id="c1", end_date=T0))
        await store.put_user_challenge(
            UserChallengeFactory.create(user_id="joined", challenge_id="c1")
        )
        await store.put_user_challenge(
            UserChallengeFactory.create(
                user_id="working", challenge_id="c1", status=UserChallengeStatus.IN_PROGRESS
            )
        )
        await store.put_user_challenge(
            UserChallengeFactory.create(
                user_id="done", challenge_id="c1", status=UserChallengeStatus.COMPLETED
            )
        )
        await store.put_user_challenge(
            UserChallengeFactory.create(
                user_id="waiting", challenge_id="c1", status=UserChallengeStatus.PENDING_REVIEW
            )
        )

        report = await jobs.complete(now=T0)

        assert (await store.get_challenge("c1")).status == ChallengeStatus.COMPLETED
        statuses = {
            r.user_id: r.status for r in await store.query_user_challenges(challenge_id="c1")
        }
        assert statuses == {
            "joined": UserChallengeStatus.FAILED,
            "working": UserChallengeStatus.FAILED,
            "done": UserChallengeStatus.COMPLETED,
            "waiting": UserChallengeStatus.PENDING_REVIEW,
        }
        assert "c1" in report.transitioned
        assert "joined_c1" in report.transitioned

    @pytest.mark.asyncio
    async def test_scheduled_challenge_runs_its_whole_window(self, jobs, store):
        await store.put_challenge(
            ChallengeFactory.create(
                id="c1",
                status=ChallengeStatus.SCHEDULED,
                start_date=T0,
                end_date=T0 + timedelta(days=7),
            )
        )
        await store.put_user_challenge(UserChallengeFactory.create(user_id="u1", challenge_id="c1"))

        await jobs.activate(now=T0 + timedelta(hours=1))
        assert (await store.get_challenge("c1")).status == ChallengeStatus.ACTIVE

        await jobs.complete(now=T0 + timedelta(days=8))
        assert (await store.get_challenge("c1")).status == ChallengeStatus.COMPLETED
        assert (await store.get_user_challenge("u1", "c1")).status == UserChallengeStatus.FAILED

    @pytest.mark.asyncio
    async def test_running_challenge_untouched(self, jobs, store):
        await store.put_challenge(ChallengeFactory.create(id="c1", end_date=T0 + timedelta(seconds=1)))
        report = await jobs.complete(now=T0)
        assert report.transitioned == []
        assert (await store.get_challenge("c1")).status == ChallengeStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_idempotent(self, jobs, store):
        await store.put_challenge(ChallengeFactory.create(id="c1", end_date=T0))
        await jobs.complete(now=T0)
        second = await jobs.complete(now=T0 + timedelta(hours=1))
        assert second.transitioned == []
        assert second.failed == []

    @pytest.mark.asyncio
    async def test_participation_failure_retried_next_tick(self, settings):
        store = _FailingStore(failing_ids={"u1_c1"})
        await store.put_challenge(ChallengeFactory.create(id="c1", end_date=T0))
        await store.put_user_challenge(UserChallengeFactory.create(user_id="u1", challenge_id="c1"))
        await store.put_user_challenge(UserChallengeFactory.create(user_id="u2", challenge_id="c1"))
        jobs = _jobs(settings, store)

        first = await jobs.complete(now=T0)

        assert set(first.failed) == {"u1_c1", "c1"}
        assert first.transitioned == ["u2_c1"]
        assert (await store.get_challenge("c1")).status == ChallengeStatus.ACTIVE

        store.failing_ids.clear()
        second = await jobs.complete(now=T0 + timedelta(hours=1))

        assert second.failed == []
        assert (await store.get_challenge("c1")).status == ChallengeStatus.COMPLETED
        assert (await store.get_user_challenge("u1", "c1")).status == UserChallengeStatus.FAILED


# ---------------------------------------------------------------------------
# Materialize recurring
# ---------------------------------------------------------------------------


class TestMaterializeJob:
    """Tests for ChallengeScheduler.materialize_recurring."""

    @pytest.mark.asyncio
    async def test_creates_and_schedules_next_instance(self, jobs, store):
        await store.put_template(TemplateFactory.create())

        report = await jobs.materialize_recurring(now=T0)

        assert report.created == ["daily-sketch-20260303"]
        instance = await store.get_challenge("daily-sketch-20260303")
        assert instance.status == ChallengeStatus.SCHEDULED
        assert instance.start_date == datetime(2026, 3, 3, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_skips_while_instance_unexpired(self, jobs, store):
        await store.put_template(TemplateFactory.create())
        await jobs.materialize_recurring(now=T0)

        report = await jobs.materialize_recurring(now=T0 + timedelta(hours=1))

        assert report.created == []
        assert report.skipped == ["daily-sketch"]
        assert len(await store.query_challenges(template_id="daily-sketch")) == 1

    @pytest.mark.asyncio
    async def test_next_instance_after_expiry(self, jobs, store):
        await store.put_template(TemplateFactory.create())
        await jobs.materialize_recurring(now=T0)
        later = datetime(2026, 3, 4, 0, 30, tzinfo=timezone.utc)
        await jobs.activate(now=later)
        await jobs.complete(now=later)

        report = await jobs.materialize_recurring(now=later)

        assert report.created == ["daily-sketch-20260305"]

    @pytest.mark.asyncio
    async def test_stranded_draft_is_scheduled(self, jobs, store):
        template = TemplateFactory.create()
        await store.put_template(template)
        start, end = next_window(RecurrenceRule.DAILY, T0)
        await store.put_challenge(build_instance(template, start, end, T0))

        report = await jobs.materialize_recurring(now=T0)

        assert report.transitioned == ["daily-sketch-20260303"]
        assert report.created == []
        instance = await store.get_challenge("daily-sketch-20260303")
        assert instance.status == ChallengeStatus.SCHEDULED

    @pytest.mark.asyncio
    async def test_ignores_inactive_and_one_off_templates(self, jobs, store):
        await store.put_template(TemplateFactory.create(id="retired", is_active=False))
        await store.put_template(TemplateFactory.create(id="one-off", recurrence=None))

        report = await jobs.materialize_recurring(now=T0)

        assert report.created == []
        assert await store.query_challenges() == []


# ---------------------------------------------------------------------------
# Ledger credit redelivery
# ---------------------------------------------------------------------------


def _completed(user_id: str, **kwargs):
    return UserChallengeFactory.create(
        user_id=user_id,
        challenge_id="c1",
        status=UserChallengeStatus.COMPLETED,
        completed_at=T0,
        xp_earned=125,
        badges_earned={"early_bird"},
        reward_breakdown=RewardBreakdown(base=100, tier_mult=1.0, bonus_mult=1.0, early_bonus=25),
        **kwargs,
    )


class TestRedeliverCreditsJob:
    """Tests for re-sending unconfirmed ledger credits."""

    @pytest.mark.asyncio
    async def test_redelivers_only_pending_credits(self, settings, store, ledger):
        await store.put_user_challenge(_completed("u1"))
        await store.put_user_challenge(_completed("u2", reward_credited_at=T0))
        await store.put_user_challenge(
            UserChallengeFactory.create(
                user_id="u3", challenge_id="c1", status=UserChallengeStatus.PENDING_REVIEW
            )
        )
        jobs = _jobs(settings, store, ledger=ledger)

        report = await jobs.redeliver_credits(now=T0 + timedelta(hours=1))

        assert report.credited == ["u1_c1"]
        assert report.failed == []
        award = ledger.credits["u1_c1"]
        assert award.total == 125
        assert award.early_bonus == 25
        assert award.badges == frozenset({"early_bird"})
        stored = await store.get_user_challenge("u1", "c1")
        assert stored.reward_credited_at == T0 + timedelta(hours=1)

    @pytest.mark.asyncio
    async def test_ledger_still_down_keeps_credit_pending(self, settings, store):
        await store.put_user_challenge(_completed("u1"))
        jobs = _jobs(settings, store, ledger=_DownLedger())

        report = await jobs.redeliver_credits(now=T0)

        assert report.failed == ["u1_c1"]
        assert (await store.get_user_challenge("u1", "c1")).credit_pending

    @pytest.mark.asyncio
    async def test_record_without_reward_is_reported(self, settings, store):
        await store.put_user_challenge(
            UserChallengeFactory.create(
                user_id="u1", challenge_id="c1", status=UserChallengeStatus.COMPLETED
            )
        )
        jobs = _jobs(settings, store)

        report = await jobs.redeliver_credits(now=T0)

        assert report.failed == ["u1_c1"]
        assert report.credited == []
