"""ChallengeScheduler: automatic lifecycle transitions based on timestamps.

Four independent, idempotent jobs, each called by the periodic scheduler:

* **activate**: scheduled challenges whose ``start_date`` has passed -> active.
* **complete**: active challenges whose ``end_date`` has passed -> completed;
  their joined/in_progress participations -> failed.
* **materialize_recurring**: create and schedule the next instance of every
  recurring template that has no unexpired instance.
* **redeliver_credits**: re-send the ledger credit of completed
  participations the ledger has not confirmed (at-least-once delivery).

A failure on one challenge is logged and counted; the job carries on. A
failure to load the candidate set propagates and aborts the tick.
"""

from __future__ import annotations

from datetime import datetime

from challenge_engine.challenges.exceptions import InvalidTransition
from challenge_engine.challenges.recurrence import build_instance, next_window
from challenge_engine.challenges.schemas import Challenge, ChallengeTemplate, JobReport
from challenge_engine.challenges.service import ChallengeService
from challenge_engine.repositories.base import ChallengeStore
from challenge_engine.repositories.exceptions import ConcurrencyError, DuplicateEntityError
from challenge_engine.shared.schemas.base import ChallengeStatus, RecurrenceRule
from challenge_engine.shared.utils.datetime_utils import utcnow
from challenge_engine.shared.utils.logging import get_logger

logger = get_logger(__name__)

_EXPIRED = (ChallengeStatus.COMPLETED, ChallengeStatus.ARCHIVED)


class ChallengeScheduler:
    """Time-driven challenge transitions."""

    def __init__(self, store: ChallengeStore, service: ChallengeService) -> None:
        self.store = store
        self.service = service
        self.state_machine = service.state_machine

    # ===========================================
    # ACTIVATE
    # ===========================================

    async def activate(self, now: datetime | None = None) -> JobReport:
        """Activate scheduled challenges whose start date has been reached."""
        now = now or utcnow()
        report = JobReport(job="activate")

        due = await self.store.query_challenges(
            status=ChallengeStatus.SCHEDULED,
            due_before=now,
        )
        for challenge in due:
            try:
                activated = await self.state_machine.apply_challenge(
                    challenge, ChallengeStatus.ACTIVE, now
                )
            except (ConcurrencyError, InvalidTransition):
                report.skipped.append(challenge.id)
                continue
            except Exception:
                logger.exception("scheduler_activate_failed", challenge_id=challenge.id)
                report.failed.append(challenge.id)
                continue
            report.transitioned.append(challenge.id)
            if activated.template_id:
                await self._announce(activated)

        self._log_report(report)
        return report

    async def _announce(self, challenge: Challenge) -> None:
        """Tell participants of earlier instances that a new one is open."""
        try:
            siblings = await self.store.query_challenges(template_id=challenge.template_id)
            user_ids: set[str] = set()
            for sibling in siblings:
                if sibling.id == challenge.id:
                    continue
                records = await self.store.query_user_challenges(challenge_id=sibling.id)
                user_ids.update(r.user_id for r in records)
        except Exception:
            logger.exception("new_challenge_announcement_failed", challenge_id=challenge.id)
            return

        for user_id in sorted(user_ids):
            await self.service.notify(
                user_id,
                "new_challenge_available",
                {"challenge_id": challenge.id, "challenge_title": challenge.title},
            )

    # ===========================================
    # COMPLETE
    # ===========================================

    async def complete(self, now: datetime | None = None) -> JobReport:
        """Complete active challenges past their end date and fail open participations.

        Open participations are failed before the challenge is completed, so a
        tick that fails half way is picked up again by the next one. A second
        sweep after completion catches joins that raced the first.
        """
        now = now or utcnow()
        report = JobReport(job="complete")

        ended = await self.store.query_challenges(
            status=ChallengeStatus.ACTIVE,
            ends_before=now,
        )
        for challenge in ended:
            try:
                failed, errors = await self.service.fail_open_participations(challenge, now)
                if errors:
                    report.transitioned.extend(failed)
                    report.failed.extend(errors)
                    report.failed.append(challenge.id)
                    continue
                await self.state_machine.apply_challenge(challenge, ChallengeStatus.COMPLETED, now)
                late, late_errors = await self.service.fail_open_participations(challenge, now)
            except (ConcurrencyError, InvalidTransition):
                report.skipped.append(challenge.id)
                continue
            except Exception:
                logger.exception("scheduler_complete_failed", challenge_id=challenge.id)
                report.failed.append(challenge.id)
                continue
            report.transitioned.append(challenge.id)
            report.transitioned.extend(failed + late)
            report.failed.extend(late_errors)

        self._log_report(report)
        return report

    # ===========================================
    # MATERIALIZE RECURRING
    # ===========================================

    async def materialize_recurring(self, now: datetime | None = None) -> JobReport:
        """Create and schedule the next instance of each recurring template."""
        now = now or utcnow()
        report = JobReport(job="materialize_recurring")

        templates = await self.store.list_templates(active_only=True)
        for template in templates:
            if template.recurrence is None:
                continue
            try:
                await self._materialize(template, template.recurrence, now, report)
            except Exception:
                logger.exception("scheduler_materialize_failed", template_id=template.id)
                report.failed.append(template.id)

        self._log_report(report)
        return report

    async def _materialize(
        self,
        template: ChallengeTemplate,
        rule: RecurrenceRule,
        now: datetime,
        report: JobReport,
    ) -> None:
        instances = await self.store.query_challenges(template_id=template.id)
        unexpired = [
            i
            for i in instances
            if i.status not in _EXPIRED and i.end_date is not None and i.end_date > now
        ]

        # Draft left behind by a tick that created but did not schedule it
        stranded = [
            i
            for i in unexpired
            if i.status == ChallengeStatus.DRAFT and i.start_date is not None and i.start_date > now
        ]
        if stranded:
            await self.state_machine.apply_challenge(stranded[0], ChallengeStatus.SCHEDULED, now)
            report.transitioned.append(stranded[0].id)
            return
        if unexpired:
            report.skipped.append(template.id)
            return

        start, end = next_window(rule, now)
        instance = build_instance(template, start, end, now)
        try:
            await self.store.create_challenge(instance)
        except DuplicateEntityError:
            report.skipped.append(instance.id)
            return
        await self.state_machine.apply_challenge(instance, ChallengeStatus.SCHEDULED, now)
        report.created.append(instance.id)
        logger.info(
            "recurring_challenge_materialized",
            template_id=template.id,
            challenge_id=instance.id,
            start_date=start.isoformat(),
        )

    # ===========================================
    # REDELIVER CREDITS
    # ===========================================

    async def redeliver_credits(self, now: datetime | None = None) -> JobReport:
        """Re-send ledger credits for completions the ledger has not confirmed."""
        now = now or utcnow()
        report = JobReport(job="redeliver_credits")

        pending = await self.store.query_user_challenges(credit_pending=True)
        for record in pending:
            try:
                delivered = await self.service.redeliver_credit(record, now)
            except Exception:
                logger.exception("scheduler_credit_redelivery_failed", user_challenge_id=record.id)
                report.failed.append(record.id)
                continue
            if delivered:
                report.credited.append(record.id)
            else:
                report.failed.append(record.id)

        self._log_report(report)
        return report

    # ===========================================
    # HELPERS
    # ===========================================

    def _log_report(self, report: JobReport) -> None:
        logger.info(
            "scheduler_job_finished",
            job=report.job,
            transitioned=len(report.transitioned),
            created=len(report.created),
            credited=len(report.credited),
            skipped=len(report.skipped),
            failed=len(report.failed),
        )


__all__ = ["ChallengeScheduler"]
