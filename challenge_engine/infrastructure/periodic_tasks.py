"""Periodic background tasks.

Each registered task is a no-arg async coroutine wrapping one
``ChallengeScheduler`` job, registered with the ``PeriodicScheduler`` in
``challenge_engine.main``.
"""

from __future__ import annotations

from typing import Any, Callable, Coroutine

from challenge_engine.challenges.scheduler import ChallengeScheduler
from challenge_engine.challenges.schemas import JobReport
from challenge_engine.config import EngineSettings
from challenge_engine.infrastructure.scheduler import PeriodicScheduler
from challenge_engine.shared.utils.logging import get_logger

logger = get_logger(__name__)

ACTIVATE_JOB = "activate_challenges"
COMPLETE_JOB = "complete_challenges"
MATERIALIZE_JOB = "materialize_recurring_challenges"
CREDIT_JOB = "redeliver_ledger_credits"


def _task(
    name: str,
    job: Callable[[], Coroutine[Any, Any, JobReport]],
) -> Callable[[], Coroutine[Any, Any, JobReport]]:
    async def run() -> JobReport:
        report = await job()
        if report.failed:
            logger.warning("periodic_job_partial_failure", task=name, failed=report.failed)
        return report

    run.__name__ = name
    return run


def register_challenge_jobs(
    periodic: PeriodicScheduler,
    jobs: ChallengeScheduler,
    settings: EngineSettings,
) -> None:
    """Register the lifecycle and credit redelivery jobs at their configured intervals."""
    periodic.register(
        ACTIVATE_JOB,
        settings.activate_interval_seconds,
        _task(ACTIVATE_JOB, jobs.activate),
    )
    periodic.register(
        COMPLETE_JOB,
        settings.complete_interval_seconds,
        _task(COMPLETE_JOB, jobs.complete),
    )
    periodic.register(
        MATERIALIZE_JOB,
        settings.materialize_interval_seconds,
        _task(MATERIALIZE_JOB, jobs.materialize_recurring),
    )
    periodic.register(
        CREDIT_JOB,
        settings.credit_redelivery_interval_seconds,
        _task(CREDIT_JOB, jobs.redeliver_credits),
    )
