"""Component wiring and FastAPI dependencies."""

from dataclasses import dataclass

from fastapi import Request

from challenge_engine.challenges.scheduler import ChallengeScheduler
from challenge_engine.challenges.service import ChallengeService, ReviewPolicy
from challenge_engine.config import EngineSettings
from challenge_engine.infrastructure.periodic_tasks import register_challenge_jobs
from challenge_engine.infrastructure.scheduler import PeriodicScheduler
from challenge_engine.progression.service import ProgressionService
from challenge_engine.recommendations.service import RecommendationService
from challenge_engine.repositories.base import ChallengeStore
from challenge_engine.repositories.resilience import RetryConfig
from challenge_engine.shared.clients.ledger_client import (
    HttpRewardLedger,
    LoggingRewardLedger,
    RewardLedger,
)
from challenge_engine.shared.clients.link_resolver import (
    HttpLinkResolver,
    LinkResolver,
    NullLinkResolver,
)
from challenge_engine.shared.clients.notification_client import (
    LoggingNotificationDispatcher,
    NotificationDispatcher,
)


@dataclass
class EngineContainer:
    """Every long-lived component of the engine."""

    settings: EngineSettings
    store: ChallengeStore
    ledger: RewardLedger
    notifier: NotificationDispatcher
    link_resolver: LinkResolver
    progression: ProgressionService
    challenges: ChallengeService
    recommendations: RecommendationService
    jobs: ChallengeScheduler
    periodic: PeriodicScheduler
    uses_database: bool = False


def build_store(settings: EngineSettings) -> ChallengeStore:
    """SQL store for the configured database."""
    from challenge_engine.infrastructure.database.session import get_session_factory
    from challenge_engine.repositories.sql import SqlChallengeStore

    return SqlChallengeStore(
        get_session_factory(settings),
        retry_config=RetryConfig(
            max_retries=settings.store_max_retries,
            base_delay=settings.store_retry_base_delay,
        ),
    )


def build_container(
    settings: EngineSettings,
    store: ChallengeStore | None = None,
    ledger: RewardLedger | None = None,
    notifier: NotificationDispatcher | None = None,
    link_resolver: LinkResolver | None = None,
) -> EngineContainer:
    """Wire the engine. Unset collaborators come from ``settings``."""
    uses_database = store is None
    if uses_database:
        store = build_store(settings)
    if ledger is None:
        ledger = (
            HttpRewardLedger(settings.ledger_base_url, settings.http_timeout_seconds)
            if settings.ledger_base_url
            else LoggingRewardLedger()
        )
    if notifier is None:
        notifier = LoggingNotificationDispatcher()
    if link_resolver is None:
        link_resolver = (
            HttpLinkResolver(settings.link_resolver_base_url, settings.http_timeout_seconds)
            if settings.link_resolver_base_url
            else NullLinkResolver()
        )

    progression = ProgressionService(store, ledger, cache_size=settings.progression_cache_size)
    challenges = ChallengeService(
        store=store,
        progression=progression,
        ledger=ledger,
        notifier=notifier,
        link_resolver=link_resolver,
        review_policy=ReviewPolicy.from_settings(settings),
    )
    jobs = ChallengeScheduler(store, challenges)
    periodic = PeriodicScheduler(tick_deadline=settings.tick_deadline_seconds)
    register_challenge_jobs(periodic, jobs, settings)

    return EngineContainer(
        settings=settings,
        store=store,
        ledger=ledger,
        notifier=notifier,
        link_resolver=link_resolver,
        progression=progression,
        challenges=challenges,
        recommendations=RecommendationService(store, settings.recommendation_limit),
        jobs=jobs,
        periodic=periodic,
        uses_database=uses_database,
    )


def get_container(request: Request) -> EngineContainer:
    return request.app.state.container


def get_challenge_service(request: Request) -> ChallengeService:
    return get_container(request).challenges


def get_progression_service(request: Request) -> ProgressionService:
    return get_container(request).progression


def get_recommendation_service(request: Request) -> RecommendationService:
    return get_container(request).recommendations
